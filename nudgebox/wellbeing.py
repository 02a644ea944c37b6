"""
Wellbeing map summaries and friend-link checks.

The map view reads a cached summary that a background task recomputes on an
interval. The task is an asyncio task owned by the app lifespan and is
cancelled on shutdown.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from nudgebox.db import DbClient

logger = logging.getLogger(__name__)

RSA_KEY_HEADER = "-----BEGIN RSA PUBLIC KEY-----"
RSA_KEY_FOOTER = "-----END RSA PUBLIC KEY-----"
MIN_PUB_KEY_LENGTH = 62


@dataclass(frozen=True)
class MapSummary:
    postcodes: list[dict] = field(default_factory=list)
    support_codes: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "mapdata": json.dumps(self.postcodes),
            "supcode": json.dumps(self.support_codes),
        }


class MapSummaryCache:
    def __init__(self, db: DbClient):
        self.db = db
        self._summary = MapSummary()
        self._lock = threading.Lock()

    def refresh(self) -> MapSummary:
        summary = MapSummary(
            postcodes=self.db.postcode_summary(),
            support_codes=self.db.support_code_summary(),
        )
        with self._lock:
            self._summary = summary
        return summary

    def get(self) -> MapSummary:
        with self._lock:
            return self._summary


class PeriodicRefresher:
    """Runs ``cache.refresh`` every ``interval_seconds`` until stopped."""

    def __init__(self, cache: MapSummaryCache, interval_seconds: float = 120.0):
        self.cache = cache
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self.cache.refresh)
            except Exception as exc:
                # Keep serving the previous summary.
                logger.exception("Map summary refresh failed: %s", exc)
            await asyncio.sleep(self.interval_seconds)


def is_valid_friend_link(identifier: str, pub_key: str) -> bool:
    """True if both are present and the key looks like a PEM RSA public key."""
    if not identifier or not pub_key:
        return False
    if len(pub_key) < MIN_PUB_KEY_LENGTH:
        return False
    return pub_key.startswith(RSA_KEY_HEADER) and pub_key.endswith(RSA_KEY_FOOTER)
