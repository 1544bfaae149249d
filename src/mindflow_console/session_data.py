# src/mindflow_console/session_data.py

import enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class SessionStatus(str, enum.Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    FAILED = "failed"
    # Operator logged out explicitly; automatic sign-in is suppressed
    SIGNED_OUT = "signed_out"


class PersistedSessionRecord(BaseModel):
    """
    Durable mirror of the operator session.
    Each field is stored under its own key; None means the key is absent.
    """
    selected_base_url: Optional[str] = None
    token: Optional[str] = None
    token_owner_base_url: Optional[str] = None


class SessionSnapshot(BaseModel):
    """
    Immutable view of the in-memory session handed to panels and the UI.
    """
    model_config = ConfigDict(frozen=True)

    selected_base_url: Optional[str] = None
    token: Optional[str] = None
    token_owner_base_url: Optional[str] = None
    status: SessionStatus = SessionStatus.IDLE
    last_error: Optional[str] = None

    @property
    def has_token(self) -> bool:
        return bool(self.token and self.token.strip())

    @property
    def is_ready(self) -> bool:
        return self.status == SessionStatus.READY


class Credentials(BaseModel):
    user_name_or_email: str
    password: str

    def to_payload(self) -> dict:
        return {"userNameOrEmail": self.user_name_or_email, "password": self.password}


def mask_token(token: Optional[str]) -> str:
    if not token:
        return "<none>"
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"
