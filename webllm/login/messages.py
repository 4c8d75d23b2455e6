"""
Text of the chat-driven login dialog.
"""

from __future__ import annotations

from .state import LoginFailureReason, LoginMethod


def method_prompt(provider_name: str) -> str:
    lines = [f"You are not logged in to {provider_name}. Choose a login method:", ""]
    for method in LoginMethod:
        lines.append(f"{method.value}. {method.label}")
    lines += ["", "Reply with the number (1, 2 or 3) of the method to use."]
    return "\n".join(lines)


def invalid_choice(provider_name: str) -> str:
    return "That is not a valid choice.\n\n" + method_prompt(provider_name)


def method_not_supported(method: LoginMethod, provider_name: str) -> str:
    return f"{method.label} is not supported yet.\n\n" + method_prompt(provider_name)


ASK_ACCOUNT = "Enter the account (email, phone number or user name) to log in with."
ASK_PASSWORD = "Enter the password for this account."
REJECT_ACCOUNT = "That does not look like an account name.\n\n" + ASK_ACCOUNT
REJECT_PASSWORD = "The password cannot be empty or a menu number.\n\n" + ASK_PASSWORD

LOGGED_IN = "Login succeeded. Start a new conversation to chat."
ALREADY_LOGGED_IN = "This account is already logged in. Start a new conversation to chat."


def login_check_ok(provider_name: str, account_id: str) -> str:
    return f"{provider_name} account '{account_id}' is logged in."


_FAILURE_TEXT = {
    LoginFailureReason.WRONG_CREDENTIALS: "The account or password is incorrect.",
    LoginFailureReason.FORM_NOT_FOUND: "The login form could not be found on the site.",
    LoginFailureReason.TIMEOUT: "The site did not confirm the login in time.",
    LoginFailureReason.UNKNOWN: "Login failed for an unknown reason.",
}


def login_failed(reason: LoginFailureReason, detail: str | None, provider_name: str) -> str:
    text = _FAILURE_TEXT.get(reason, _FAILURE_TEXT[LoginFailureReason.UNKNOWN])
    if detail:
        text = f"{text} ({detail})"
    return f"Login failed: {text}\n\n" + method_prompt(provider_name)


__all__ = [
    "method_prompt",
    "invalid_choice",
    "method_not_supported",
    "login_failed",
    "ASK_ACCOUNT",
    "ASK_PASSWORD",
    "REJECT_ACCOUNT",
    "REJECT_PASSWORD",
    "LOGGED_IN",
    "ALREADY_LOGGED_IN",
    "login_check_ok",
]
