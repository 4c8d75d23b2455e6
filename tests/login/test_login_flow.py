import pytest

from fakes import InMemoryRedis

from webllm.login import messages
from webllm.login.flow import LoginFlow
from webllm.login.state import LoginFailureReason, LoginOutcome, LoginState
from webllm.login.store import LoginSessionStore

CONVERSATION = "login-0001"


class ScriptedSubmitter:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def __call__(self, account, password):
        self.calls.append((account, password))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _flow(store, submit):
    return LoginFlow(
        store,
        provider_id="deepseek",
        provider_name="DeepSeek",
        account_id="default",
        submit=submit,
    )


@pytest.fixture()
def store():
    return LoginSessionStore(InMemoryRedis(), ttl_seconds=60)


async def _state(store):
    session = await store.get("deepseek", "default", CONVERSATION)
    return session.state


@pytest.mark.asyncio
async def test_start_asks_for_method(store):
    reply = await _flow(store, ScriptedSubmitter()).start(CONVERSATION)

    assert reply.state is LoginState.WAITING_LOGIN_METHOD
    assert reply.conversation_id == CONVERSATION
    assert "1. " in reply.text and "2. " in reply.text and "3. " in reply.text
    assert await _state(store) is LoginState.WAITING_LOGIN_METHOD


@pytest.mark.asyncio
async def test_full_password_login(store):
    submit = ScriptedSubmitter(LoginOutcome.ok())
    flow = _flow(store, submit)
    await flow.start(CONVERSATION)

    assert (await flow.handle(CONVERSATION, "2")).text == messages.ASK_ACCOUNT
    assert (await flow.handle(CONVERSATION, "alice@example.com")).text == messages.ASK_PASSWORD
    reply = await flow.handle(CONVERSATION, "s3cret")

    assert reply.state is LoginState.LOGGED_IN
    assert reply.text == messages.LOGGED_IN
    assert submit.calls == [("alice@example.com", "s3cret")]

    session = await store.get("deepseek", "default", CONVERSATION)
    assert session.account is None and session.password is None

    again = await flow.handle(CONVERSATION, "hello")
    assert again.text == messages.ALREADY_LOGGED_IN


@pytest.mark.asyncio
async def test_method_selector_does_not_skip_pending_account(store):
    flow = _flow(store, ScriptedSubmitter())
    await flow.start(CONVERSATION)
    await flow.handle(CONVERSATION, "2")

    reply = await flow.handle(CONVERSATION, "2")

    assert reply.state is LoginState.WAITING_ACCOUNT
    assert reply.text == messages.REJECT_ACCOUNT
    assert await _state(store) is LoginState.WAITING_ACCOUNT


@pytest.mark.asyncio
@pytest.mark.parametrize("value", ["1", "3", "   "])
async def test_password_rejects_selectors_and_blanks(store, value):
    submit = ScriptedSubmitter()
    flow = _flow(store, submit)
    await flow.start(CONVERSATION)
    await flow.handle(CONVERSATION, "2")
    await flow.handle(CONVERSATION, "alice")

    reply = await flow.handle(CONVERSATION, value)

    assert reply.state is LoginState.WAITING_PASSWORD
    assert reply.text == messages.REJECT_PASSWORD
    assert submit.calls == []


@pytest.mark.asyncio
async def test_unsupported_and_invalid_choices_stay_on_menu(store):
    flow = _flow(store, ScriptedSubmitter())
    await flow.start(CONVERSATION)

    unsupported = await flow.handle(CONVERSATION, "1")
    invalid = await flow.handle(CONVERSATION, "my password")

    assert unsupported.state is LoginState.WAITING_LOGIN_METHOD
    assert "not supported" in unsupported.text
    assert invalid.state is LoginState.WAITING_LOGIN_METHOD
    assert invalid.text.startswith("That is not a valid choice.")


@pytest.mark.asyncio
async def test_failed_login_returns_to_method_selection(store):
    submit = ScriptedSubmitter(
        LoginOutcome.failed(LoginFailureReason.WRONG_CREDENTIALS, "密码错误"),
        LoginOutcome.ok(),
    )
    flow = _flow(store, submit)
    await flow.start(CONVERSATION)
    await flow.handle(CONVERSATION, "2")
    await flow.handle(CONVERSATION, "alice")

    failed = await flow.handle(CONVERSATION, "wrong")

    assert failed.state is LoginState.LOGIN_FAILED
    assert "incorrect" in failed.text and "密码错误" in failed.text
    session = await store.get("deepseek", "default", CONVERSATION)
    assert session.last_error == "密码错误"
    assert session.password is None

    assert (await flow.handle(CONVERSATION, "2")).state is LoginState.WAITING_ACCOUNT
    await flow.handle(CONVERSATION, "alice")
    assert (await flow.handle(CONVERSATION, "right")).state is LoginState.LOGGED_IN


@pytest.mark.asyncio
async def test_submitter_exception_is_reported_as_failure(store):
    flow = _flow(store, ScriptedSubmitter(RuntimeError("page crashed")))
    await flow.start(CONVERSATION)
    await flow.handle(CONVERSATION, "2")
    await flow.handle(CONVERSATION, "alice")

    reply = await flow.handle(CONVERSATION, "pw")

    assert reply.state is LoginState.LOGIN_FAILED
    assert "unknown reason" in reply.text


@pytest.mark.asyncio
async def test_interrupted_login_is_retried(store):
    submit = ScriptedSubmitter(LoginOutcome.ok())
    flow = _flow(store, submit)
    session = await store.get_or_create("deepseek", "default", CONVERSATION)
    session.state = LoginState.LOGGING_IN
    session.account = "alice"
    session.password = "pw"
    await store.save(session)

    reply = await flow.handle(CONVERSATION, "anything")

    assert reply.state is LoginState.LOGGED_IN
    assert submit.calls == [("alice", "pw")]


@pytest.mark.asyncio
async def test_interrupted_login_without_credentials_restarts(store):
    flow = _flow(store, ScriptedSubmitter())
    session = await store.get_or_create("deepseek", "default", CONVERSATION)
    session.state = LoginState.LOGGING_IN
    await store.save(session)

    reply = await flow.handle(CONVERSATION, "anything")

    assert reply.state is LoginState.WAITING_LOGIN_METHOD
