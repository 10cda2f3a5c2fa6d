# connection code models — doctor-issued codes that link a patient to a doctor
# codes are single-use, expire after 24 hours, and are kept after use for tracing

from typing import Optional
from pydantic import BaseModel, Field
from datetime import datetime


class ConnectionCode(BaseModel):
    """a connection code as persisted in the code store"""

    code: str
    doctor_id: str
    created_at: datetime
    expires_at: datetime
    used: bool = False
    used_at: Optional[datetime] = None
    used_by: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_redeemable(self, now: datetime) -> bool:
        return not self.used and not self.is_expired(now)

    def to_document(self) -> dict:
        return self.model_dump()

    @classmethod
    def from_document(cls, doc: dict) -> "ConnectionCode":
        return cls(
            code=doc["code"],
            doctor_id=doc["doctor_id"],
            created_at=doc["created_at"],
            expires_at=doc["expires_at"],
            used=doc.get("used", False),
            used_at=doc.get("used_at"),
            used_by=doc.get("used_by"),
        )


class ConnectionCodeResponse(BaseModel):
    code: str = Field(..., description="connection code, e.g. DOC-7K2X9Q-4821")
    doctor_id: str = Field(..., alias="doctorId")
    created_at: datetime = Field(..., alias="createdAt")
    expires_at: datetime = Field(..., alias="expiresAt")
    used: bool = False
    used_at: Optional[datetime] = Field(None, alias="usedAt")
    used_by: Optional[str] = Field(None, alias="usedBy")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_record(cls, record: ConnectionCode) -> "ConnectionCodeResponse":
        return cls(**record.model_dump())


class ConnectionCodeCreate(BaseModel):
    """response returned when a doctor generates a new connection code"""
    code: str
    uri: str = Field(..., description="connection uri encoded in the qr image")
    expires_at: datetime = Field(..., alias="expiresAt")
    message: str = "Share this code or QR image with your patient. It expires in 24 hours."

    model_config = {"populate_by_name": True}


class RedeemRequest(BaseModel):
    code: str = Field(..., min_length=1, description="connection code typed by the patient")


class RedemptionResponse(BaseModel):
    """outcome of a redemption or assignment retry"""
    state: str
    reason: Optional[str] = None
    message: str
    code: Optional[str] = None
    doctor_id: Optional[str] = Field(None, alias="doctorId")

    model_config = {"populate_by_name": True}
