from pydantic import BaseModel, Field
from typing import Any, Dict, Literal, Optional


class InstallRequest(BaseModel):
    sender: str
    credentials: Dict[str, Any]


class CertificateModel(BaseModel):
    pubkey: str
    valid_until: int
    signature: str


class EnvelopeModel(BaseModel):
    op_code: int
    replay_counter: int
    valid_until: int
    payload: Dict[str, Any] = Field(default_factory=dict)
    primary_signature: Optional[str] = None
    secondary_signature: Optional[str] = None
    device_id: Optional[int] = None
    certificate: Optional[CertificateModel] = None


class SubmitRequest(BaseModel):
    request: EnvelopeModel
    origin: Literal["external", "internal"] = "external"
    sender: Optional[str] = None


class FeeEstimateRequest(BaseModel):
    forward_message: Dict[str, Any]
    output_message_count: int = Field(ge=0)
    extended_action_count: int = Field(default=0, ge=0)
