"""
Read-only account directory.

Accounts are managed outside the gateway; the directory only answers which
accounts exist for a provider and which profile folder each one uses. The
file lives at <BROWSER_USER_DATA_DIR>/accounts.json:

    {"deepseek": [{"id": "alice", "name": "Alice"}], "openai": [...]}

Profile folders are laid out as <root>/<provider>/<account id>[/<profile_key>],
so the account id is always part of the path.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

from .logging_config import logger
from .settings import settings

DEFAULT_ACCOUNT_ID = "default"


@dataclass(frozen=True)
class Account:
    provider_id: str
    id: str
    name: str
    profile_key: str | None = None


def _path_segment(value: str) -> str:
    # Percent-encoding is injective, so distinct ids stay distinct folders.
    segment = quote(value, safe="")
    if segment in (".", ".."):
        segment = segment.replace(".", "%2E")
    return segment


class AccountDirectory:
    def __init__(self, root: Path, accounts: dict[str, list[Account]] | None = None):
        self.root = root
        self._accounts = accounts or {}

    @classmethod
    def load(cls, root: Path | None = None) -> "AccountDirectory":
        root = root or Path(settings.browser_user_data_dir)
        path = root / "accounts.json"
        if not path.exists():
            return cls(root)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("Ignoring unreadable account directory %s", path, exc_info=True)
            return cls(root)

        accounts: dict[str, list[Account]] = {}
        for provider_id, entries in (raw or {}).items():
            if not isinstance(entries, list):
                continue
            seen: set[str] = set()
            for entry in entries:
                if not isinstance(entry, dict) or not entry.get("id"):
                    continue
                account_id = str(entry["id"])
                if account_id in seen:
                    logger.warning("Skipping duplicate account %s/%s", provider_id, account_id)
                    continue
                seen.add(account_id)
                profile_key = entry.get("profile_key")
                accounts.setdefault(provider_id, []).append(
                    Account(
                        provider_id=provider_id,
                        id=account_id,
                        name=str(entry.get("name") or account_id),
                        profile_key=str(profile_key) if profile_key else None,
                    )
                )
        return cls(root, accounts)

    def accounts_for(self, provider_id: str) -> list[Account]:
        return list(self._accounts.get(provider_id, []))

    def default_account(self, provider_id: str) -> str:
        accounts = self._accounts.get(provider_id)
        return accounts[0].id if accounts else DEFAULT_ACCOUNT_ID

    def profile_dir(self, provider_id: str, account_id: str | None) -> Path:
        """
        Profile folder for an account. Distinct accounts never share a folder,
        including accounts that are not listed in accounts.json.
        """
        account_id = account_id or DEFAULT_ACCOUNT_ID
        folder = self.root / _path_segment(provider_id) / _path_segment(account_id)
        for account in self._accounts.get(provider_id, []):
            if account.id == account_id and account.profile_key:
                return folder / _path_segment(account.profile_key)
        return folder


__all__ = ["Account", "AccountDirectory", "DEFAULT_ACCOUNT_ID"]
