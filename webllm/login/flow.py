"""
Chat-driven login dialog.

When a provider account is not authenticated, the conversation turns into a
small menu: pick a method, type the account, type the password. Each user
turn advances the dialog by at most one step, and the new state is stored
before the reply goes out so a restart resumes where the user left off.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ..logging_config import logger
from . import messages
from .state import LoginFailureReason, LoginMethod, LoginOutcome, LoginSession, LoginState
from .store import LoginSessionStore

CredentialSubmitter = Callable[[str, str], Awaitable[LoginOutcome]]

_METHOD_SELECTORS = {method.value for method in LoginMethod}


@dataclass(frozen=True)
class LoginReply:
    text: str
    conversation_id: str
    state: LoginState


def _is_rejected_field_value(text: str) -> bool:
    value = text.strip()
    return not value or value in _METHOD_SELECTORS


class LoginFlow:
    def __init__(
        self,
        store: LoginSessionStore,
        *,
        provider_id: str,
        provider_name: str,
        account_id: str,
        submit: CredentialSubmitter,
    ) -> None:
        self.store = store
        self.provider_id = provider_id
        self.provider_name = provider_name
        self.account_id = account_id
        self._submit_credentials = submit

    def _reply(self, session: LoginSession, text: str) -> LoginReply:
        return LoginReply(text=text, conversation_id=session.conversation_id, state=session.state)

    async def _move(self, session: LoginSession, state: LoginState) -> None:
        logger.info(
            "Login dialog %s/%s/%s: %s -> %s",
            self.provider_id,
            self.account_id,
            session.conversation_id,
            session.state.value,
            state.value,
        )
        session.state = state
        await self.store.save(session)

    async def start(self, conversation_id: str) -> LoginReply:
        """
        Enter the dialog for a conversation after a failed authentication check.
        """
        async with self.store.lock(self.provider_id, self.account_id, conversation_id):
            session = await self.store.get_or_create(
                self.provider_id, self.account_id, conversation_id
            )
            session.method = None
            session.last_error = None
            session.clear_credentials()
            await self._move(session, LoginState.WAITING_LOGIN_METHOD)
            return self._reply(session, messages.method_prompt(self.provider_name))

    async def handle(self, conversation_id: str, user_input: str) -> LoginReply:
        async with self.store.lock(self.provider_id, self.account_id, conversation_id):
            session = await self.store.get_or_create(
                self.provider_id, self.account_id, conversation_id
            )
            state = session.state

            if state is LoginState.LOGGED_IN:
                return self._reply(session, messages.ALREADY_LOGGED_IN)

            if state is LoginState.LOGGING_IN:
                if session.account and session.password:
                    logger.info("Retrying interrupted login for %s/%s", self.provider_id, self.account_id)
                    return await self._submit(session)
                await self._move(session, LoginState.WAITING_LOGIN_METHOD)
                return self._reply(session, messages.method_prompt(self.provider_name))

            if state is LoginState.WAITING_ACCOUNT:
                return await self._on_account(session, user_input)

            if state is LoginState.WAITING_PASSWORD:
                return await self._on_password(session, user_input)

            # NOT_STARTED, WAITING_LOGIN_METHOD and LOGIN_FAILED all expect a menu choice.
            return await self._on_method(session, user_input)

    async def _on_method(self, session: LoginSession, user_input: str) -> LoginReply:
        method = LoginMethod.from_choice(user_input)
        if method is LoginMethod.ACCOUNT_PASSWORD:
            session.method = method
            session.last_error = None
            await self._move(session, LoginState.WAITING_ACCOUNT)
            return self._reply(session, messages.ASK_ACCOUNT)

        if method is not None:
            text = messages.method_not_supported(method, self.provider_name)
        else:
            text = messages.invalid_choice(self.provider_name)
        await self._move(session, LoginState.WAITING_LOGIN_METHOD)
        return self._reply(session, text)

    async def _on_account(self, session: LoginSession, user_input: str) -> LoginReply:
        if _is_rejected_field_value(user_input):
            await self.store.save(session)
            return self._reply(session, messages.REJECT_ACCOUNT)
        session.account = user_input.strip()
        await self._move(session, LoginState.WAITING_PASSWORD)
        return self._reply(session, messages.ASK_PASSWORD)

    async def _on_password(self, session: LoginSession, user_input: str) -> LoginReply:
        if _is_rejected_field_value(user_input):
            await self.store.save(session)
            return self._reply(session, messages.REJECT_PASSWORD)
        session.password = user_input.strip()
        await self._move(session, LoginState.LOGGING_IN)
        return await self._submit(session)

    async def _submit(self, session: LoginSession) -> LoginReply:
        try:
            outcome = await self._submit_credentials(session.account or "", session.password or "")
        except Exception as exc:
            logger.exception("Credential submission failed for %s/%s", self.provider_id, self.account_id)
            outcome = LoginOutcome.failed(LoginFailureReason.UNKNOWN, str(exc) or None)

        session.clear_credentials()
        if outcome.success:
            session.last_error = None
            await self._move(session, LoginState.LOGGED_IN)
            return self._reply(session, messages.LOGGED_IN)

        reason = outcome.reason or LoginFailureReason.UNKNOWN
        session.method = None
        session.last_error = outcome.message or reason.value
        await self._move(session, LoginState.LOGIN_FAILED)
        return self._reply(
            session, messages.login_failed(reason, outcome.message, self.provider_name)
        )


__all__ = ["CredentialSubmitter", "LoginFlow", "LoginReply"]
