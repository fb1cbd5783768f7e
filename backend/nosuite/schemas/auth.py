"""
Pydantic schemas for bootstrap and authentication requests
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class Device(BaseModel):
    """A client device registered on an account"""

    id: str = Field(..., min_length=1, max_length=128, description="Client-generated device identifier")
    is_mobile: bool = Field(False, description="Whether the user agent is a mobile browser")
    browser: str = Field("unknown", description="Browser family parsed from the user agent")
    platform: str = Field("unknown", description="Operating system parsed from the user agent")


class TokenData(BaseModel):
    """Content of a bearer token once decrypted"""

    email: str
    scope: str
    device: Optional[Device] = None
    hashed_password: str
    exp: int = Field(..., description="Expiry, epoch milliseconds")


class NfcKeyRequest(BaseModel):
    admin_device_id: str = Field(..., description="Pre-shared admin device identifier")


class StartRequest(BaseModel):
    physical_key_hex: str = Field(..., min_length=2, description="Physical key, hex encoded")
    admin_password: str = Field(..., min_length=1)
    admin_device_id: str


class EmailRequest(BaseModel):
    email: str = Field(..., examples=["ann@example.com"])

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        """Basic shape check, the value is also used as a directory name"""
        v = v.strip()
        if not v or "@" not in v:
            raise ValueError("Invalid email")
        return v


class AuthRequest(EmailRequest):
    password: str = Field(..., min_length=1)
    name: Optional[str] = Field(None, max_length=255, description="Display name, used on sign up")
    device_id: Optional[str] = Field(None, description="Falls back to the X-Device-Id header")


class TokenRequest(BaseModel):
    token: Optional[str] = Field(None, description="Falls back to the Authorization header")
    device_id: Optional[str] = None


class ChangePasswordRequest(TokenRequest):
    password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    token: str


class AccountInfo(BaseModel):
    email: str
    name: Optional[str] = None
    shared: bool = Field(False, description="True when the token was delegated to an app")
