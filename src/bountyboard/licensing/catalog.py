"""
Catalog of purchasable license keys.

The catalog comes from configuration (``BB_LICENSES``), not the database. It is
parsed once when the app or worker starts and handed to whoever needs it.
Database ``License`` rows record keys that have already been bound to a team.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class LicenseConfig:
    """A single catalog entry."""

    key: str
    max_users: int
    expiry_date: datetime
    notes: str | None = None


def _parse_expiry(raw: Any) -> datetime:
    """Parse an ISO date or datetime; naive values are taken as UTC."""
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, date):
        value = datetime(raw.year, raw.month, raw.day)
    elif isinstance(raw, str):
        value = datetime.fromisoformat(raw.strip())
    else:
        msg = f"Unsupported expiry_date: {raw!r}"
        raise ValueError(msg)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class LicenseCatalog:
    """Immutable lookup table of catalog entries keyed by exact license key."""

    def __init__(self, entries: list[LicenseConfig] | None = None) -> None:
        self._entries: dict[str, LicenseConfig] = {}
        for entry in entries or []:
            self._entries[entry.key] = entry

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    @classmethod
    def from_json(cls, raw: str | None) -> LicenseCatalog:
        """
        Build a catalog from a JSON array of ``{key, max_users, expiry_date, notes?}``.

        Never raises. Missing, malformed or non-array input yields an empty
        catalog; individual malformed entries are skipped.
        """
        if not raw or not raw.strip():
            logger.warning("license_catalog_missing")
            return cls()
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.error("license_catalog_malformed")
            return cls()
        if not isinstance(data, list):
            logger.error("license_catalog_not_array", kind=type(data).__name__)
            return cls()

        entries: list[LicenseConfig] = []
        for index, item in enumerate(data):
            try:
                key = item["key"]
                if not isinstance(key, str):
                    raise TypeError("key must be a string")
                max_users = int(item["max_users"])
                if max_users < 1:
                    raise ValueError("max_users must be positive")
                entries.append(
                    LicenseConfig(
                        key=key,
                        max_users=max_users,
                        expiry_date=_parse_expiry(item["expiry_date"]),
                        notes=item.get("notes"),
                    )
                )
            except (KeyError, TypeError, ValueError, OverflowError) as e:
                logger.warning("license_catalog_entry_skipped", index=index, error=str(e))
        logger.info("license_catalog_loaded", count=len(entries))
        return cls(entries)

    def lookup(self, key: str | None, now: datetime | None = None) -> LicenseConfig | None:
        """
        Resolve a key. Exact and case-sensitive.

        Returns None for empty, unknown or expired keys.
        """
        if not key:
            return None
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = now or datetime.now(timezone.utc)
        if entry.expiry_date < now:
            return None
        return entry


def load_license_catalog(raw: str | None) -> LicenseCatalog:
    """Parse the configured catalog."""
    return LicenseCatalog.from_json(raw)
