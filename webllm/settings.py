import json
from typing import Dict, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Read from OS env and optional .env file in project root.
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Redis stores login dialogs and last-known login status.
    redis_url: str = Field(
        "redis://localhost:6379/0",
        alias="REDIS_URL",
        description="Redis connection URL, e.g. 'redis://redis:6379/0'",
    )

    log_level: str = Field(
        "INFO",
        alias="LOG_LEVEL",
        description="Application log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_timezone: Optional[str] = Field(
        default=None,
        alias="LOG_TIMEZONE",
        description="Timezone name for log timestamps, e.g. 'Asia/Shanghai'. Defaults to system local time.",
    )

    # Browser sessions
    browser_headless: bool = Field(True, alias="BROWSER_HEADLESS")
    browser_user_data_dir: str = Field(
        "./user-data",
        alias="BROWSER_USER_DATA_DIR",
        description="Root directory for persistent browser profiles (one per provider/account)",
    )
    browser_headed_providers_raw: Optional[str] = Field(
        default="gemini,openai",
        alias="BROWSER_HEADED_PROVIDERS",
        description="Comma-separated provider ids that always run with a visible window",
    )
    browser_user_agent: str = Field(
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36",
        alias="BROWSER_USER_AGENT",
    )
    browser_viewport_width: int = Field(1366, alias="BROWSER_VIEWPORT_WIDTH")
    browser_viewport_height: int = Field(768, alias="BROWSER_VIEWPORT_HEIGHT")
    browser_args: List[str] = Field(
        default_factory=lambda: [
            "--disable-blink-features=AutomationControlled",
            "--no-sandbox",
            "--disable-setuid-sandbox",
        ],
        alias="BROWSER_ARGS",
    )

    # Session pool recovery
    session_max_attempts: int = Field(3, alias="SESSION_MAX_ATTEMPTS")
    session_retry_backoff_seconds: float = Field(0.5, alias="SESSION_RETRY_BACKOFF_SECONDS")

    # Response reconciliation
    poll_interval_seconds: float = Field(0.1, alias="POLL_INTERVAL_SECONDS")
    stability_polls: int = Field(
        20,
        alias="STABILITY_POLLS",
        description="Consecutive polls without new text after which a reply is considered complete",
    )
    ui_settle_seconds: float = Field(0.3, alias="UI_SETTLE_SECONDS")
    ui_check_after_quiet_polls: int = Field(50, alias="UI_CHECK_AFTER_QUIET_POLLS")
    reconcile_timeout_seconds: float = Field(120.0, alias="RECONCILE_TIMEOUT_SECONDS")
    transient_retry_pause_seconds: float = Field(0.5, alias="TRANSIENT_RETRY_PAUSE_SECONDS")
    drive_timeout_seconds: float = Field(
        30.0,
        alias="DRIVE_TIMEOUT_SECONDS",
        description="Timeout for individual UI actions (navigation, typing, clicking)",
    )

    login_session_ttl_seconds: int = Field(3600, alias="LOGIN_SESSION_TTL_SECONDS")
    login_wait_seconds: float = Field(
        15.0,
        alias="LOGIN_WAIT_SECONDS",
        description="How long to wait for the site to answer a credential submission",
    )

    # When true, accounts of the same provider may run turns concurrently.
    gate_per_account: bool = Field(False, alias="GATE_PER_ACCOUNT")

    # JSON object: {"<api key>": {"deepseek": "<account id>", ...}}
    api_keys_raw: Optional[str] = Field(
        default=None,
        alias="API_KEYS",
        description="JSON mapping of client API keys to per-provider account ids",
    )

    def headed_providers(self) -> List[str]:
        if not self.browser_headed_providers_raw:
            return []
        return [
            item.strip()
            for item in self.browser_headed_providers_raw.split(",")
            if item.strip()
        ]

    def api_keys(self) -> Dict[str, Dict[str, str]]:
        """
        Parse API_KEYS; an empty or malformed value disables key checks.
        """
        if not self.api_keys_raw:
            return {}
        try:
            data = json.loads(self.api_keys_raw)
        except json.JSONDecodeError:
            return {}
        if not isinstance(data, dict):
            return {}
        result: Dict[str, Dict[str, str]] = {}
        for key, accounts in data.items():
            if isinstance(accounts, dict):
                result[str(key)] = {str(p): str(a) for p, a in accounts.items()}
            else:
                result[str(key)] = {}
        return result


settings = Settings()
