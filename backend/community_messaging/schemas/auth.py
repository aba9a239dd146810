from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from community_messaging.security.sanitizer import InputSanitizer


class RegisterIn(BaseModel):
    """Registration request."""
    model_config = ConfigDict(extra='forbid')

    username: str = Field(
        min_length=3,
        max_length=64,
        pattern=r'^[a-zA-Z0-9_\-]+$',
        description="Username (3-64 alphanumeric/dash/underscore)"
    )
    email: EmailStr
    password: str = Field(
        min_length=12,
        max_length=128,
        description="Password (12+ chars, uppercase, lowercase, digit, special char)"
    )

    @field_validator('username')
    @classmethod
    def validate_username(cls, v: str) -> str:
        return InputSanitizer.sanitize_string(v, max_length=64)

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        if not re.search(r'[A-Z]', v):
            raise ValueError('Password must contain uppercase letter')
        if not re.search(r'[a-z]', v):
            raise ValueError('Password must contain lowercase letter')
        if not re.search(r'\d', v):
            raise ValueError('Password must contain digit')
        if not re.search(r'[!@#$%^&*()\-_=+\[\]{};:\'\"<>,.?/]', v):
            raise ValueError('Password must contain special character')
        return v


class LoginIn(BaseModel):
    model_config = ConfigDict(extra='forbid')

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)

    @field_validator('password')
    @classmethod
    def validate_password_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('Password cannot be empty')
        return v


class TokenOut(BaseModel):
    model_config = ConfigDict(extra='forbid')

    access_token: str
    token_type: str = "bearer"


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    role: str
    has_membership_badge: bool
    created_at: datetime
