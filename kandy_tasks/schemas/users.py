from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List

from ..models.enums import Role, UserStatus


class UserCreate(BaseModel):
    full_name: str
    email: EmailStr
    phone: str
    role: Role
    password: str = Field(min_length=6)
    skills: Optional[List[str]] = None
    certifications: Optional[List[str]] = None
    employee_code: Optional[str] = None


class UserUpdate(BaseModel):
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    role: Optional[Role] = None
    skills: Optional[List[str]] = None
    certifications: Optional[List[str]] = None
    employee_code: Optional[str] = None


class UserStatusUpdate(BaseModel):
    status: UserStatus


class PasswordResetRequest(BaseModel):
    new_password: str = Field(min_length=6)
