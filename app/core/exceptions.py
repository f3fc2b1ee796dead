from __future__ import annotations

from typing import Any, Dict, List, Optional


class RelayError(Exception):
    """Base dos erros do bridge; cada subclasse carrega o status HTTP que o endpoint devolve."""

    status_code: int = 500
    code: str = "relay_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"error": self.message, "code": self.code}
        detail.update({k: v for k, v in self.context.items() if v is not None})
        return detail


class ValidationFailed(RelayError):
    status_code = 400
    code = "validation_failed"

    def __init__(self, message: str, required: Optional[List[str]] = None, **context: Any):
        super().__init__(message, required=required, **context)


class CredentialsNotConfigured(RelayError):
    status_code = 401
    code = "credentials_not_configured"


class TenantUnresolved(RelayError):
    status_code = 400
    code = "tenant_unresolved"


class InvalidMediaType(RelayError):
    status_code = 400
    code = "invalid_media_type"


class UpstreamError(RelayError):
    """Resposta 4xx/5xx (ou falha de conexão) de uma API externa."""

    status_code = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None, body: Any = None, **context: Any):
        super().__init__(message, upstream_status=upstream_status, body=body, **context)
        self.upstream_status = upstream_status
        self.body = body


class ProviderSendFailed(UpstreamError):
    code = "provider_send_failed"


class CrmCallFailed(UpstreamError):
    code = "crm_call_failed"


class StoreUnavailable(RelayError):
    status_code = 503
    code = "store_unavailable"
