"""Login endpoint issuing session cookies."""

from fastapi import APIRouter, Response
from pydantic import BaseModel, Field, field_validator

from usagegate.app.api.dependencies import PingServiceDep
from usagegate.app.core.config import settings
from usagegate.app.db.dependencies import SessionDep

router = APIRouter(tags=["auth"])


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=1024)

    @field_validator("username")
    @classmethod
    def normalize_username(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("username cannot be empty")
        return v


class LoginResponse(BaseModel):
    message: str
    sessionID: str


@router.post("/login", response_model=LoginResponse)
async def login(
    data: LoginRequest,
    response: Response,
    session: SessionDep,
    service: PingServiceDep,
) -> LoginResponse:
    """Check credentials, open a session and set the session cookie."""
    token = await service.authenticate(session, data.username, data.password)

    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_cookie_max_age,
        path="/",
        domain=settings.session_cookie_domain,
        secure=settings.session_cookie_secure,
        httponly=True,
    )
    return LoginResponse(message="Log in successfully!", sessionID=token)
