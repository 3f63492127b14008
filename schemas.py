"""
Request schemas for the community issue reporting API.

Each model describes one JSON request body. The closed vocabularies
(report status, priority, role, notification type) are declared here as
Literal types so unknown values never reach the stores.
"""

import json
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

Role = Literal['resident', 'admin', 'staff']
ReportStatus = Literal['pending', 'in-progress', 'resolved', 'rejected']
Priority = Literal['low', 'medium', 'high', 'critical']
NotificationType = Literal['info', 'success', 'warning', 'error', 'update']
VerificationDecision = Literal['approved', 'rejected']


# ---------- Accounts ----------

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Full name")
    email: str = Field(..., min_length=1, description="Email address, unique per account as typed")
    password: str = Field(..., min_length=1)
    role: Role = Field(..., description="Role of the account")
    verificationInfo: Optional[str] = Field(None, description="Credentials submitted by admin applicants")
    avatar: Optional[str] = None
    phone: Optional[str] = None
    barangay: Optional[str] = Field(None, description="Barangay the user belongs to")


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class VerifyRequest(BaseModel):
    userId: int
    status: VerificationDecision
    notes: str = Field(..., description="Reviewer notes, sent to the user on rejection")


class VerificationRequest(BaseModel):
    userId: int
    verificationInfo: str = Field(..., min_length=1)


class UserUpdate(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    barangay: Optional[str] = None
    avatar: Optional[str] = None
    password: Optional[str] = None


class UserDelete(BaseModel):
    id: int


# ---------- Reports ----------

def _parse_images(value):
    # Legacy clients send the image list as a JSON-encoded string
    if isinstance(value, str):
        try:
            value = json.loads(value) if value.strip() else []
        except ValueError:
            raise ValueError("images must be a list of URLs")
        if not isinstance(value, list):
            raise ValueError("images must be a list of URLs")
    return value


class ReportCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1, description="Issue category, e.g. Road Damage")
    location: str = Field(..., min_length=1, description="Street address or landmark")
    status: ReportStatus = 'pending'
    priority: Priority = 'low'
    reporter_id: Optional[int] = None
    assigned_to: Optional[int] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    images: Optional[Union[List[str], str]] = Field(None, description="Image URLs, in display order")

    @field_validator('images')
    @classmethod
    def normalise_images(cls, value):
        return _parse_images(value)


class ReportUpdate(BaseModel):
    id: Optional[int] = None
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = Field(None, min_length=1)
    location: Optional[str] = Field(None, min_length=1)
    status: Optional[ReportStatus] = None
    priority: Optional[Priority] = None
    reporter_id: Optional[int] = None
    assigned_to: Optional[int] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    images: Optional[List[str]] = None


class ReportDelete(BaseModel):
    id: int


class CommentCreate(BaseModel):
    user_id: int
    text: str = Field(..., min_length=1)


# ---------- Notifications ----------

class NotificationUpdate(BaseModel):
    is_read: bool = True
