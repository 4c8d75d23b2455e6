from __future__ import annotations

import enum
import time
from typing import Optional

from pydantic import BaseModel, Field


class LoginState(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    WAITING_LOGIN_METHOD = "WAITING_LOGIN_METHOD"
    WAITING_ACCOUNT = "WAITING_ACCOUNT"
    WAITING_PASSWORD = "WAITING_PASSWORD"
    LOGGING_IN = "LOGGING_IN"
    LOGGED_IN = "LOGGED_IN"
    LOGIN_FAILED = "LOGIN_FAILED"


class LoginMethod(str, enum.Enum):
    PHONE_VERIFY_CODE = "1"
    ACCOUNT_PASSWORD = "2"
    QR_SCAN = "3"

    @property
    def label(self) -> str:
        return _METHOD_LABELS[self]

    @classmethod
    def from_choice(cls, text: str) -> Optional["LoginMethod"]:
        choice = text.strip()
        for method in cls:
            if method.value == choice:
                return method
        return None


_METHOD_LABELS = {
    LoginMethod.PHONE_VERIFY_CODE: "Phone number + verification code",
    LoginMethod.ACCOUNT_PASSWORD: "Account + password",
    LoginMethod.QR_SCAN: "QR code scan",
}


class LoginFailureReason(str, enum.Enum):
    WRONG_CREDENTIALS = "wrong_credentials"
    FORM_NOT_FOUND = "form_not_found"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class LoginOutcome(BaseModel):
    success: bool
    reason: Optional[LoginFailureReason] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls) -> "LoginOutcome":
        return cls(success=True)

    @classmethod
    def failed(cls, reason: LoginFailureReason, message: str | None = None) -> "LoginOutcome":
        return cls(success=False, reason=reason, message=message)


class LoginSession(BaseModel):
    provider_id: str
    account_id: str
    conversation_id: str
    state: LoginState = LoginState.NOT_STARTED
    method: Optional[LoginMethod] = None
    account: Optional[str] = None
    password: Optional[str] = None
    last_error: Optional[str] = None
    updated_at: float = Field(default_factory=time.time)

    @property
    def is_active(self) -> bool:
        """
        True while the conversation is still a login dialog.
        """
        return self.state not in (LoginState.NOT_STARTED, LoginState.LOGGED_IN)

    def clear_credentials(self) -> None:
        self.account = None
        self.password = None


__all__ = [
    "LoginState",
    "LoginMethod",
    "LoginFailureReason",
    "LoginOutcome",
    "LoginSession",
]
