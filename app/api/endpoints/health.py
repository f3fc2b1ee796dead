from fastapi import APIRouter

router = APIRouter(tags=["Health"])

ENDPOINTS = ["/send", "/incoming", "/status", "/onboard", "/onboard/qr"]


@router.get("/")
@router.get("/health")
def health_check():
    return {
        "status": "ok",
        "message": "WhatsApp Bridge API is running",
        "endpoints": ENDPOINTS,
    }
