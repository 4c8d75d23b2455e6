import contextvars
import datetime
import logging
import shutil
from pathlib import Path
from typing import Callable, TextIO
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .settings import settings

APP_LOGGER_NAME = "webllm"

# Playwright's driver and asyncio log every page call at DEBUG; they only
# follow LOG_LEVEL=DEBUG explicitly and stay at WARNING otherwise.
_BROWSER_LOGGERS = ("playwright", "asyncio", "websockets")

_LOGGING_CONFIGURED = False

# "<provider>/<account>/<conversation>" of the turn being served by the
# current request task; "-" outside of a turn.
_turn_context: contextvars.ContextVar[str] = contextvars.ContextVar(
    "webllm_turn", default="-"
)


def bind_turn(
    provider_id: str,
    account_id: str | None = None,
    conversation_id: str | None = None,
) -> None:
    """
    Tag every later record of the current task with the turn being served.

    Each request runs in its own asyncio task with a copied context, so the
    value never reaches other requests.
    """
    parts = [provider_id, account_id or "-", conversation_id or "new"]
    _turn_context.set("/".join(parts))


def current_turn() -> str:
    return _turn_context.get()


def _resolve_tzinfo(timezone_name: str | None) -> datetime.tzinfo:
    if timezone_name:
        try:
            return ZoneInfo(timezone_name)
        except ZoneInfoNotFoundError:
            pass
    return datetime.datetime.now().astimezone().tzinfo or datetime.timezone.utc


class LocalTimezoneFormatter(logging.Formatter):
    """
    Formatter that renders timestamps in LOG_TIMEZONE, or the host's local
    timezone when that is unset or unknown.
    """

    def __init__(self, *args, timezone_name: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._tzinfo = _resolve_tzinfo(timezone_name)

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        moment = datetime.datetime.fromtimestamp(record.created, tz=self._tzinfo)
        if datefmt:
            return moment.strftime(datefmt)
        return moment.isoformat(timespec="milliseconds")


def infer_log_area(record: logging.LogRecord) -> str:
    """
    Map a record to the file it is written to.

    Application modules share the "webllm" logger, so the call site's path
    decides the area.
    """
    name = record.name or ""
    if name.startswith("uvicorn.access"):
        return "access"
    if name.startswith("uvicorn"):
        return "server"
    if name.startswith(_BROWSER_LOGGERS):
        return "browser"

    path = (record.pathname or "").replace("\\", "/")
    if "/webllm/browser/" in path:
        return "browser"
    if "/webllm/streaming/" in path:
        return "streaming"
    if "/webllm/login/" in path:
        return "login"
    if "/webllm/providers/" in path:
        return "providers"
    if path.endswith(("/webllm/routes.py", "/webllm/auth.py", "/webllm/deps.py")):
        return "http"
    if path.endswith(("/webllm/orchestrator.py", "/webllm/gate.py", "/webllm/commands.py")):
        return "turns"
    return "app"


class TurnContextFilter(logging.Filter):
    """
    Adds `area` and `turn` to every record so one format string serves the
    console and the files.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        if not hasattr(record, "area"):
            record.area = infer_log_area(record)
        if not hasattr(record, "turn"):
            record.turn = current_turn()
        return True


class DailyAreaFileHandler(logging.Handler):
    """
    Writes records to <log_dir>/<YYYY-MM-DD>/<area>.log and keeps at most
    `backup_days` date folders.
    """

    def __init__(
        self,
        log_dir: Path,
        backup_days: int = 7,
        encoding: str = "utf-8",
        timezone_name: str | None = None,
        now_fn: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        super().__init__()
        self.log_dir = log_dir
        self.backup_days = backup_days
        self.encoding = encoding
        self._tzinfo = _resolve_tzinfo(timezone_name)
        self._now_fn = now_fn
        self._day: datetime.date | None = None
        self._streams: dict[str, TextIO] = {}

    def _today(self) -> datetime.date:
        now = self._now_fn() if self._now_fn is not None else datetime.datetime.now(tz=self._tzinfo)
        if now.tzinfo is None:
            now = now.replace(tzinfo=self._tzinfo)
        return now.date()

    def _prune(self) -> None:
        if self.backup_days <= 0:
            return
        dated: list[tuple[datetime.date, Path]] = []
        for folder in self.log_dir.iterdir():
            if not folder.is_dir():
                continue
            try:
                dated.append((datetime.date.fromisoformat(folder.name), folder))
            except ValueError:
                continue
        dated.sort()
        for _, stale in dated[: max(0, len(dated) - self.backup_days)]:
            shutil.rmtree(stale, ignore_errors=True)

    def _close_streams(self) -> None:
        for stream in self._streams.values():
            try:
                stream.close()
            except OSError:
                pass
        self._streams.clear()

    def _stream_for(self, area: str) -> TextIO:
        today = self._today()
        if self._day != today:
            self._close_streams()
            self._day = today
            (self.log_dir / today.isoformat()).mkdir(parents=True, exist_ok=True)
            self._prune()
        stream = self._streams.get(area)
        if stream is None:
            path = self.log_dir / today.isoformat() / f"{area}.log"
            stream = open(path, "a", encoding=self.encoding)
            self._streams[area] = stream
        return stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            area = getattr(record, "area", None) or infer_log_area(record)
            line = self.format(record)
            stream = self._stream_for(area)
            stream.write(line + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        try:
            self._close_streams()
        finally:
            super().close()


def _resolve_level(name: object) -> int:
    if not isinstance(name, str):
        return logging.INFO
    return getattr(logging, name.upper(), logging.INFO)


def setup_logging(log_dir: Path | None = None) -> None:
    """
    Configure process-wide logging once.

    Records are split by area into logs/<YYYY-MM-DD>/<area>.log (browser,
    streaming, login, providers, turns, http, access, server, app) and echoed
    to the console. Each line carries the turn it belongs to.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    level = _resolve_level(settings.log_level)
    formatter = LocalTimezoneFormatter(
        "%(asctime)s [%(levelname)s] [%(area)s] [%(turn)s] %(name)s - %(message)s",
        timezone_name=settings.log_timezone,
    )
    context_filter = TurnContextFilter()

    file_handler = DailyAreaFileHandler(
        log_dir=log_dir or Path("logs"),
        timezone_name=settings.log_timezone,
    )
    file_handler.setFormatter(formatter)
    file_handler.addFilter(context_filter)

    logging.getLogger(APP_LOGGER_NAME).setLevel(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(file_handler)
    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in root_logger.handlers
        if h is not file_handler
    )
    if not has_console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console.addFilter(context_filter)
        root_logger.addHandler(console)

    browser_level = level if level <= logging.DEBUG else logging.WARNING
    for name in _BROWSER_LOGGERS:
        logging.getLogger(name).setLevel(browser_level)

    _LOGGING_CONFIGURED = True


logger = logging.getLogger(APP_LOGGER_NAME)
