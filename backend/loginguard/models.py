from typing import Optional

from pydantic import BaseModel, Field


class LoginPayload(BaseModel):
    username: str = Field(min_length=1, max_length=128)
    password: str = Field(min_length=1, max_length=128)
    captcha_token: Optional[str] = Field(default=None, max_length=4096)
    remember_me: bool = False


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ChallengeInfo(BaseModel):
    provider: str
    site_key: str
    field: str


class LoginFormResponse(BaseModel):
    captcha_required: bool
    challenge: Optional[ChallengeInfo] = None
