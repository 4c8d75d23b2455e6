"""
Turn orchestration.

`prepare_turn` does everything that can fail with a plain HTTP error
(validation, provider lookup, busy check, page resolution, authentication,
sending the message) before any response byte is written. The returned
turn then streams the reply and releases the provider permit exactly once,
whichever way the stream ends.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import replace
from typing import Any

from .accounts import AccountDirectory
from .auth import AuthenticatedAPIKey
from .browser.faults import is_dead_session_error
from .browser.session_pool import LOGIN_SLOT, SessionPool
from .commands import ParsedMessage, help_text, parse_commands
from .continuity import (
    ConversationHandle,
    embed_conversation_id,
    format_system_message,
    new_login_conversation_id,
    resolve_handle,
)
from .errors import (
    GatewayError,
    InvalidRequest,
    LoginRequired,
    ProviderBusy,
    SessionUnavailable,
    internal_error_payload,
)
from .gate import (
    RELEASE_CANCELLED,
    RELEASE_COMPLETED,
    RELEASE_ERROR,
    RELEASE_LOGIN_REPLY,
    RELEASE_TIMEOUT,
    GateTicket,
    ProviderGate,
)
from .logging_config import bind_turn, logger
from .login import messages
from .login.flow import LoginFlow, LoginReply
from .login.state import LoginOutcome, LoginState
from .login.store import LoginSessionStore, LoginStatusStore
from .providers.base import ModelSpec, WebChatProvider
from .providers.registry import ProviderRegistry
from .schemas import ChatCompletionRequest
from .streaming.encoder import ChunkEncoder, collect_completion
from .streaming.reconciler import END_TIMEOUT, ReconcilerTiming, StreamEvent, StreamReconciler


def _login_required(provider: WebChatProvider, account_id: str) -> LoginRequired:
    return LoginRequired(
        f"{provider.name} account '{account_id}' is not logged in; "
        "log in through the browser profile first",
        details={"provider": provider.id, "account": account_id},
    )


class TurnStream:
    """
    SSE frames of a prepared turn. Closing the stream releases the permit
    whether or not iteration ever started, so a client that disconnects
    before the first body byte still frees the provider.
    """

    def __init__(self, turn: "PreparedTurn") -> None:
        self.turn = turn
        self._frames: AsyncIterator[bytes] | None = None
        self._closed = False

    def __aiter__(self) -> "TurnStream":
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StopAsyncIteration
        if self._frames is None:
            self._frames = self.turn._frames()
        return await self._frames.__anext__()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._frames is not None:
                await self._frames.aclose()
        finally:
            self.turn.release(RELEASE_CANCELLED)

    def __del__(self) -> None:
        # Last resort for a response object dropped without being sent.
        self.turn.release(RELEASE_CANCELLED)


class PreparedTurn:
    """
    A turn that has passed preflight and holds the provider permit. Replies
    that never touch the browser run without one (`ticket` is None).
    """

    def __init__(self, *, ticket: GateTicket | None, model: str, provider_id: str) -> None:
        self.ticket = ticket
        self.model = model
        self.provider_id = provider_id
        self.conversation_id: str | None = None

    async def events(self) -> AsyncIterator[StreamEvent]:
        raise NotImplementedError
        yield  # pragma: no cover

    def success_reason(self) -> str:
        return RELEASE_COMPLETED

    def release(self, reason: str) -> bool:
        if self.ticket is None:
            return False
        return self.ticket.release(reason)

    def stream_sse(self) -> TurnStream:
        """
        OpenAI SSE frames for the whole reply, ending with `[DONE]`. An error
        after streaming started becomes an error frame.
        """
        return TurnStream(self)

    async def _frames(self) -> AsyncIterator[bytes]:
        encoder = ChunkEncoder(self.model)
        reason = RELEASE_CANCELLED
        try:
            try:
                async for event in self.events():
                    yield encoder.event(event)
                yield encoder.finish()
                reason = self.success_reason()
            except GatewayError as exc:
                logger.warning("Turn on %s failed mid-stream: %s", self.provider_id, exc)
                reason = RELEASE_ERROR
                yield encoder.error(exc.to_payload())
            except Exception as exc:
                logger.exception("Unexpected error while streaming from %s", self.provider_id)
                reason = RELEASE_ERROR
                yield encoder.error(internal_error_payload(f"Streaming failed: {exc}"))
            yield encoder.done()
        finally:
            self.release(reason)

    async def complete(self) -> dict[str, Any]:
        reason = RELEASE_CANCELLED
        try:
            result = await collect_completion(self.events(), self.model)
            reason = self.success_reason()
            return result
        except Exception:
            reason = RELEASE_ERROR
            raise
        finally:
            self.release(reason)


class SystemReplyTurn(PreparedTurn):
    """
    Reply written by the gateway itself; no model output is involved.
    """

    def __init__(self, *, text: str, conversation_id: str | None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.text = text
        self.conversation_id = conversation_id

    def success_reason(self) -> str:
        return RELEASE_LOGIN_REPLY

    async def events(self) -> AsyncIterator[StreamEvent]:
        text = format_system_message(self.text)
        if self.conversation_id:
            text += embed_conversation_id(self.conversation_id)
        yield StreamEvent("answer", text)


class LoginTurn(SystemReplyTurn):
    """
    One step of the login dialog.
    """

    def __init__(self, *, reply: LoginReply, **kwargs: Any) -> None:
        super().__init__(text=reply.text, conversation_id=reply.conversation_id, **kwargs)
        self.reply = reply


class CommandTurn(SystemReplyTurn):
    """
    Answer to a message made only of in-chat commands.
    """


class ChatTurn(PreparedTurn):
    def __init__(
        self,
        *,
        reconciler: StreamReconciler,
        pool: SessionPool,
        account_id: str,
        slot: str,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.reconciler = reconciler
        self.pool = pool
        self.account_id = account_id
        self.slot = slot

    def success_reason(self) -> str:
        if self.reconciler.end_reason == END_TIMEOUT:
            return RELEASE_TIMEOUT
        return RELEASE_COMPLETED

    async def events(self) -> AsyncIterator[StreamEvent]:
        started = time.monotonic()
        try:
            async for event in self.reconciler.events():
                yield event
        except Exception:
            await self.pool.discard_page(self.provider_id, self.account_id, self.slot)
            raise
        self.conversation_id = self.reconciler.conversation_id
        bind_turn(self.provider_id, self.account_id, self.conversation_id)
        if self.reconciler.page_lost:
            await self.pool.discard_page(self.provider_id, self.account_id, self.slot)
        elif self.conversation_id:
            # New chats only get their URL once the first reply exists.
            self.pool.remember_url(
                self.provider_id,
                self.account_id,
                self.slot,
                self.reconciler.observer.current_url(),
            )
        logger.info(
            "Turn on %s finished: reason=%s answer=%s chars thinking=%s chars in %.1fs",
            self.provider_id,
            self.reconciler.end_reason,
            len(self.reconciler.acc.answer),
            len(self.reconciler.acc.thinking),
            time.monotonic() - started,
        )


class TurnOrchestrator:
    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        pool: SessionPool,
        gate: ProviderGate,
        accounts: AccountDirectory,
        login_store: LoginSessionStore,
        status_store: LoginStatusStore,
        timing: ReconcilerTiming | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.pool = pool
        self.gate = gate
        self.accounts = accounts
        self.login_store = login_store
        self.status_store = status_store
        self.timing = timing
        self._sleep = sleep

    # ---- preflight ------------------------------------------------------

    def _validate(self, request: ChatCompletionRequest) -> str:
        if not request.model or not request.model.strip():
            raise InvalidRequest("'model' is required")
        if not request.messages:
            raise InvalidRequest("'messages' must contain at least one message")
        text = request.latest_user_text()
        if not text.strip():
            raise InvalidRequest("The last user message is empty")
        return text

    def _resolve_provider(self, request: ChatCompletionRequest) -> tuple[WebChatProvider, ModelSpec]:
        provider = self.registry.get_by_model(request.model)
        model = provider.model(request.model) if provider is not None else None
        if provider is None or model is None:
            raise InvalidRequest(
                f"Unknown model '{request.model}'",
                details={"available": self.registry.model_ids()},
            )
        return provider, model

    def _login_flow(self, provider: WebChatProvider, account_id: str) -> LoginFlow:
        async def _submit(account: str, password: str) -> LoginOutcome:
            page = await self.pool.login_page(provider, account_id)
            outcome = await provider.submit_login(page, account, password)
            if outcome.success:
                await self.status_store.record(provider.id, account_id, True)
            return outcome

        return LoginFlow(
            self.login_store,
            provider_id=provider.id,
            provider_name=provider.name,
            account_id=account_id,
            submit=_submit,
        )

    async def _active_login_dialog(
        self, provider: WebChatProvider, account_id: str, handle: ConversationHandle
    ) -> bool:
        if not handle.opaque_id:
            return False
        session = await self.login_store.get(provider.id, account_id, handle.opaque_id)
        if session is None:
            return False
        if session.is_active:
            return True
        # A finished synthetic dialog keeps answering; a real conversation
        # that was interrupted by a login goes back to chatting.
        return session.state is LoginState.LOGGED_IN and handle.is_login

    async def prepare_turn(
        self, request: ChatCompletionRequest, api_key: AuthenticatedAPIKey
    ) -> PreparedTurn:
        user_text = self._validate(request)
        provider, model = self._resolve_provider(request)
        account_id = api_key.account_for(provider.id) or self.accounts.default_account(provider.id)
        bind_turn(provider.id, account_id)

        parsed = parse_commands(user_text)
        if parsed.command_only and not parsed.needs_browser:
            logger.info("Answering commands %s for %s", [c.name for c in parsed.commands], provider.id)
            handle = resolve_handle(request.messages, request.conversation_id)
            return CommandTurn(
                text=self._help_text(parsed),
                conversation_id=handle.opaque_id,
                ticket=None,
                model=request.model,
                provider_id=provider.id,
            )

        ticket = self.gate.try_acquire(provider.id, account_id)
        if ticket is None:
            raise ProviderBusy(provider.id)

        try:
            return await self._prepare_locked(
                request, provider, model, account_id, user_text, ticket, parsed
            )
        except asyncio.CancelledError:
            ticket.release(RELEASE_CANCELLED)
            raise
        except BaseException:
            ticket.release(RELEASE_ERROR)
            raise

    async def _prepare_locked(
        self,
        request: ChatCompletionRequest,
        provider: WebChatProvider,
        model: ModelSpec,
        account_id: str,
        user_text: str,
        ticket: GateTicket,
        parsed: ParsedMessage,
    ) -> PreparedTurn:
        handle = resolve_handle(request.messages, request.conversation_id)
        bind_turn(provider.id, account_id, handle.opaque_id)
        common = {"ticket": ticket, "model": request.model, "provider_id": provider.id}
        logger.info(
            "Turn for %s/%s model=%s conversation=%s new=%s",
            provider.id,
            account_id,
            model.id,
            handle.opaque_id,
            handle.is_new,
        )

        if parsed.command_only:
            return await self._run_login_command(provider, account_id, handle, parsed, common)

        if await self._active_login_dialog(provider, account_id, handle):
            reply = await self._login_flow(provider, account_id).handle(handle.opaque_id, user_text)
            return LoginTurn(reply=reply, **common)

        page = await self.pool.resolve_page(provider, account_id, handle, slot=model.id)
        try:
            authenticated = await provider.check_authenticated(page)
        except Exception as exc:
            raise await self._page_failure(provider, account_id, model.id, exc) from exc
        await self.status_store.record(provider.id, account_id, authenticated)

        if not authenticated:
            if not provider.supports_chat_login:
                raise _login_required(provider, account_id)
            conversation_id = handle.opaque_id or new_login_conversation_id()
            reply = await self._login_flow(provider, account_id).start(conversation_id)
            return LoginTurn(reply=reply, **common)

        try:
            observer = await provider.drive_turn(
                page,
                model,
                user_text,
                is_new=handle.is_new,
                web_search=request.web_search,
            )
        except Exception as exc:
            raise await self._page_failure(provider, account_id, model.id, exc) from exc

        reconciler = StreamReconciler(
            observer,
            provider.classifier(),
            locator_to_id=provider.conversation_id_from_url,
            timing=self.timing,
            sleep=self._sleep,
        )
        return ChatTurn(
            reconciler=reconciler,
            pool=self.pool,
            account_id=account_id,
            slot=model.id,
            **common,
        )

    # ---- commands -------------------------------------------------------

    @staticmethod
    def _help_text(parsed: ParsedMessage) -> str:
        return "\n\n".join(help_text(command.argument) for command in parsed.named("help"))

    async def _run_login_command(
        self,
        provider: WebChatProvider,
        account_id: str,
        handle: ConversationHandle,
        parsed: ParsedMessage,
        common: dict[str, Any],
    ) -> PreparedTurn:
        """
        `/login`: check the account on the dedicated login page and open the
        login dialog when it is signed out.
        """
        prefix = self._help_text(parsed)
        try:
            page = await self.pool.login_page(provider, account_id)
            authenticated = await provider.check_authenticated(page)
        except Exception as exc:
            raise await self._page_failure(provider, account_id, LOGIN_SLOT, exc) from exc
        await self.status_store.record(provider.id, account_id, authenticated)

        if authenticated:
            text = messages.login_check_ok(provider.name, account_id)
            return CommandTurn(
                text=f"{prefix}\n\n{text}" if prefix else text,
                conversation_id=handle.opaque_id,
                **common,
            )
        if not provider.supports_chat_login:
            raise _login_required(provider, account_id)

        conversation_id = handle.opaque_id or new_login_conversation_id()
        reply = await self._login_flow(provider, account_id).start(conversation_id)
        if prefix:
            reply = replace(reply, text=f"{prefix}\n\n{reply.text}")
        return LoginTurn(reply=reply, **common)

    async def _page_failure(
        self, provider: WebChatProvider, account_id: str, slot: str, exc: Exception
    ) -> GatewayError:
        """
        Tear down a page that failed before streaming began and translate the
        failure into a gateway error.
        """
        await self.pool.discard_page(provider.id, account_id, slot)
        if isinstance(exc, GatewayError):
            return exc
        if is_dead_session_error(exc):
            return SessionUnavailable(
                f"{provider.name} page was lost while sending the message",
                details={"provider": provider.id, "reason": str(exc)},
            )
        logger.warning("Failed to drive %s: %s", provider.id, exc, exc_info=True)
        return GatewayError(f"Failed to drive {provider.name}: {exc}")

    # ---- overview -------------------------------------------------------

    async def provider_overview(self) -> list[dict[str, Any]]:
        overview = []
        for provider in self.registry.all():
            account_ids = [a.id for a in self.accounts.accounts_for(provider.id)] or [
                self.accounts.default_account(provider.id)
            ]
            statuses = []
            for account_id in account_ids:
                status = await self.status_store.get(provider.id, account_id) or {}
                statuses.append(
                    {
                        "account_id": account_id,
                        "logged_in": status.get("logged_in"),
                        "checked_at": status.get("checked_at"),
                    }
                )
            overview.append(
                {
                    "id": provider.id,
                    "name": provider.name,
                    "models": provider.supported_models(),
                    "supports_chat_login": provider.supports_chat_login,
                    "busy": self.gate.is_busy(provider.id),
                    "accounts": statuses,
                }
            )
        return overview

    async def close(self) -> None:
        await self.pool.close()


__all__ = [
    "TurnStream",
    "PreparedTurn",
    "SystemReplyTurn",
    "LoginTurn",
    "CommandTurn",
    "ChatTurn",
    "TurnOrchestrator",
]
