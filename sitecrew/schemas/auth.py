from pydantic import BaseModel
from typing import Optional, List


class LoginRequest(BaseModel):
    identifier: str  # username or email
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class MeResponse(BaseModel):
    id: str
    username: str
    email: str
    roles: List[str] = []
    employee_id: Optional[str] = None
    employee_name: Optional[str] = None
