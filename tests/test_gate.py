import threading

from webllm.gate import (
    RELEASE_CANCELLED,
    RELEASE_COMPLETED,
    RELEASE_ERROR,
    RELEASE_TIMEOUT,
    ProviderGate,
)


def test_second_acquire_is_rejected_until_release():
    gate = ProviderGate()
    ticket = gate.try_acquire("deepseek")
    assert ticket is not None
    assert gate.is_busy("deepseek")
    assert gate.try_acquire("deepseek") is None

    assert ticket.release(RELEASE_COMPLETED) is True
    assert not gate.is_busy("deepseek")
    again = gate.try_acquire("deepseek")
    assert again is not None
    again.release()


def test_providers_do_not_block_each_other():
    gate = ProviderGate()
    first = gate.try_acquire("deepseek")
    second = gate.try_acquire("openai")
    assert first is not None and second is not None
    first.release()
    second.release()


def test_release_is_effective_exactly_once():
    gate = ProviderGate()
    ticket = gate.try_acquire("openai")

    results = [
        ticket.release(reason)
        for reason in (RELEASE_ERROR, RELEASE_COMPLETED, RELEASE_CANCELLED, RELEASE_TIMEOUT)
    ]

    assert results == [True, False, False, False]
    assert ticket.released
    assert ticket.release_reason == RELEASE_ERROR
    assert gate.release_counts["openai"] == 1


def test_concurrent_releases_free_the_permit_once():
    gate = ProviderGate()
    ticket = gate.try_acquire("gemini")
    outcomes: list[bool] = []
    barrier = threading.Barrier(8)

    def _release(reason: str) -> None:
        barrier.wait()
        outcomes.append(ticket.release(reason))

    threads = [
        threading.Thread(target=_release, args=(RELEASE_CANCELLED if i % 2 else RELEASE_COMPLETED,))
        for i in range(8)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count(True) == 1
    assert gate.release_counts["gemini"] == 1
    assert not gate.is_busy("gemini")


def test_per_account_gate_isolates_accounts():
    gate = ProviderGate(per_account=True)
    alice = gate.try_acquire("deepseek", "alice")
    bob = gate.try_acquire("deepseek", "bob")
    assert alice is not None and bob is not None
    assert gate.try_acquire("deepseek", "alice") is None
    assert gate.is_busy("deepseek")

    alice.release()
    bob.release()
    assert not gate.is_busy("deepseek")


def test_shared_gate_ignores_account():
    gate = ProviderGate()
    ticket = gate.try_acquire("deepseek", "alice")
    assert gate.try_acquire("deepseek", "bob") is None
    ticket.release()
