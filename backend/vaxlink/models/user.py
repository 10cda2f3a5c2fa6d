# user models — session context, doctor, and patient schemas
# mirrors the frontend User, Doctor, Patient types

from typing import Optional, Literal
from pydantic import BaseModel, Field


Role = Literal["doctor", "patient"]


class SessionContext(BaseModel):
    """authenticated identity handed explicitly to services that act on behalf of a user"""
    user_id: str
    role: Role
    name: str = ""

    model_config = {"frozen": True}


# user responses

class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    role: Role
    phone: Optional[str] = None
    created_at: str = Field(..., alias="createdAt")

    model_config = {"populate_by_name": True}


class DoctorResponse(UserResponse):
    role: Literal["doctor"] = "doctor"
    license: str = ""
    specialization: str = ""
    clinic: str = ""

    model_config = {"populate_by_name": True}

    @classmethod
    def from_document(cls, doc: dict) -> "DoctorResponse":
        return cls(
            id=str(doc["_id"]),
            email=doc.get("email", ""),
            name=doc.get("name", ""),
            phone=doc.get("phone"),
            createdAt=doc.get("created_at", ""),
            license=doc.get("license", ""),
            specialization=doc.get("specialization", ""),
            clinic=doc.get("clinic", ""),
        )


class PatientResponse(UserResponse):
    role: Literal["patient"] = "patient"
    date_of_birth: Optional[str] = Field(None, alias="dateOfBirth")
    parent_name: Optional[str] = Field(None, alias="parentName")
    parent_phone: Optional[str] = Field(None, alias="parentPhone")
    doctor_id: Optional[str] = Field(None, alias="doctorId")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_document(cls, doc: dict) -> "PatientResponse":
        return cls(
            id=str(doc["_id"]),
            email=doc.get("email", ""),
            name=doc.get("name", ""),
            phone=doc.get("phone"),
            createdAt=doc.get("created_at", ""),
            dateOfBirth=doc.get("date_of_birth"),
            parentName=doc.get("parent_name"),
            parentPhone=doc.get("parent_phone"),
            doctorId=doc.get("doctor_id"),
        )
