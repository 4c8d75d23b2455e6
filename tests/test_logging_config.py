import asyncio
import datetime
import logging

import pytest

from webllm.logging_config import (
    DailyAreaFileHandler,
    TurnContextFilter,
    bind_turn,
    current_turn,
    infer_log_area,
)


def _record(name="webllm", pathname="/srv/app/webllm/orchestrator.py", msg="hello"):
    return logging.LogRecord(name, logging.INFO, pathname, 1, msg, None, None)


@pytest.mark.parametrize(
    "name,pathname,area",
    [
        ("webllm", "/srv/app/webllm/browser/session_pool.py", "browser"),
        ("webllm", "/srv/app/webllm/streaming/reconciler.py", "streaming"),
        ("webllm", "/srv/app/webllm/login/flow.py", "login"),
        ("webllm", "/srv/app/webllm/providers/deepseek.py", "providers"),
        ("webllm", "/srv/app/webllm/routes.py", "http"),
        ("webllm", "/srv/app/webllm/orchestrator.py", "turns"),
        ("webllm", "/srv/app/webllm/accounts.py", "app"),
        ("playwright._impl._connection", "/site-packages/playwright/_impl/_connection.py", "browser"),
        ("uvicorn.access", "/site-packages/uvicorn/protocols/http/h11_impl.py", "access"),
        ("uvicorn.error", "/site-packages/uvicorn/server.py", "server"),
    ],
)
def test_infer_log_area(name, pathname, area):
    assert infer_log_area(_record(name, pathname)) == area


def test_turn_context_is_scoped_to_the_task():
    async def _serve(provider_id, conversation_id):
        bind_turn(provider_id, "alice", conversation_id)
        await asyncio.sleep(0)
        return current_turn()

    async def _main():
        return await asyncio.gather(
            asyncio.create_task(_serve("deepseek", "conv-1")),
            asyncio.create_task(_serve("openai", None)),
        )

    assert asyncio.run(_main()) == ["deepseek/alice/conv-1", "openai/alice/new"]
    assert current_turn() == "-"


def test_filter_tags_records_with_area_and_turn():
    record = _record()
    assert TurnContextFilter().filter(record)
    assert record.area == "turns"
    assert record.turn == "-"


def test_area_handler_writes_per_day_folders_and_prunes(tmp_path):
    days = iter(
        datetime.datetime(2026, 1, day, 12, tzinfo=datetime.timezone.utc) for day in (1, 2, 3)
    )
    now = {"value": next(days)}
    handler = DailyAreaFileHandler(tmp_path, backup_days=2, now_fn=lambda: now["value"])
    handler.setFormatter(logging.Formatter("%(area)s %(message)s"))
    handler.addFilter(TurnContextFilter())

    for _ in range(3):
        record = _record(pathname="/srv/app/webllm/login/flow.py", msg="step")
        if handler.filter(record):
            handler.emit(record)
        now["value"] = next(days, now["value"])
    handler.close()

    folders = sorted(p.name for p in tmp_path.iterdir())
    assert folders == ["2026-01-02", "2026-01-03"]
    assert (tmp_path / "2026-01-03" / "login.log").read_text(encoding="utf-8") == "login step\n"
