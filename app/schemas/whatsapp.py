from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelIn(BaseModel):
    # GHL e Ultramsg mandam camelCase; aceitamos os dois
    model_config = ConfigDict(populate_by_name=True)


# ---------- Requests ----------

class SendIn(_CamelIn):
    phone: Optional[str] = None
    sub_account_id: Optional[str] = Field(None, alias="subAccountId")
    message: Optional[str] = None
    media_url: Optional[str] = Field(None, alias="mediaUrl")
    media_type: Optional[str] = Field(None, alias="mediaType", examples=["image"])
    location_id: Optional[str] = Field(None, alias="locationId")


class OnboardIn(_CamelIn):
    sub_account_id: Optional[str] = Field(None, alias="subAccountId")
    instance_id: Optional[str] = Field(None, alias="instanceId")
    api_token: Optional[str] = Field(None, alias="apiToken")


# ---------- Normalized webhook records ----------

class MediaItem(BaseModel):
    url: str
    type: str = "media"


class IncomingMessage(BaseModel):
    phone: str
    text: Optional[str] = None
    media: List[MediaItem] = Field(default_factory=list)
    instance_id: Optional[str] = None
    reference_id: Optional[str] = None
    message_id: Optional[str] = None


class StatusEvent(BaseModel):
    message_id: str
    status: str
    ack_code: Any = None
    instance_id: Optional[str] = None
    reference_id: Optional[str] = None


# ---------- Results ----------

class ProviderCredentials(BaseModel):
    instance_id: str
    api_token: str


class SendResult(BaseModel):
    sub_account_id: str
    reference_id: str
    provider_response: Dict[str, Any]
    provider_message_id: Optional[str] = None
    crm_message_id: Optional[str] = None
