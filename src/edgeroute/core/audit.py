"""Append-only audit trail of configuration mutations.

Entries live under the ``audit/`` namespace, keyed by a zero-padded
millisecond timestamp, a per-process sequence number and a random suffix.
Keys are unique and sort in write order, even within one millisecond:

    audit/0001718000000123-00000042-9f2c41ab
"""

from __future__ import annotations

import asyncio
import itertools
import secrets
import time
from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from edgeroute.core.models import AuditEntry, decode_json, encode_model
from edgeroute.errors import StoreError
from edgeroute.store.base import AUDIT_PREFIX, ConfigStore

logger = structlog.get_logger()

MAX_AUDIT_LIMIT = 500
SEQUENCE_MODULUS = 10**8

_sequence = itertools.count()


def _random_suffix() -> str:
    return secrets.token_hex(4)


class AuditLogWriter:
    """Writes and reads audit entries. Never updates or deletes."""

    def __init__(
        self,
        store: ConfigStore,
        *,
        clock: Callable[[], float] = time.time,
        suffix_factory: Callable[[], str] = _random_suffix,
    ) -> None:
        self._store = store
        self._clock = clock
        self._suffix_factory = suffix_factory

    def _key(self, timestamp: float) -> str:
        seq = next(_sequence) % SEQUENCE_MODULUS
        return f"{AUDIT_PREFIX}{int(timestamp * 1000):016d}-{seq:08d}-{self._suffix_factory()}"

    async def append(
        self,
        actor: str,
        action: str,
        *,
        prev_hash: str | None = None,
        new_hash: str | None = None,
        diff_bytes: int | None = None,
        note: str | None = None,
        error: str | None = None,
    ) -> AuditEntry:
        """Write one entry.

        Raises:
            StoreError: If the store rejects the write.
        """
        timestamp = self._clock()
        entry = AuditEntry(
            ts=datetime.fromtimestamp(timestamp, UTC).isoformat(),
            actor=actor,
            action=action,
            prev_hash=prev_hash,
            new_hash=new_hash,
            diff_bytes=diff_bytes,
            note=note,
            error=error,
        )
        await self._store.put(self._key(timestamp), encode_model(entry))
        return entry

    async def try_append(self, actor: str, action: str, **fields: object) -> AuditEntry | None:
        """Best-effort append: store failures are logged, not raised."""
        try:
            return await self.append(actor, action, **fields)
        except StoreError as e:
            logger.error("Audit write failed", action=action, actor=actor, error=str(e))
            return None

    async def list(self, limit: int = 50) -> list[AuditEntry]:
        """Return up to ``limit`` most recent entries, newest first."""
        limit = max(1, min(limit, MAX_AUDIT_LIMIT))
        keys = await self._store.list(AUDIT_PREFIX)
        selected = list(reversed(keys[-limit:]))
        raw_values = await asyncio.gather(*(self._store.get(key) for key in selected))

        entries = []
        for key, raw in zip(selected, raw_values):
            if raw is None:
                continue
            try:
                entries.append(AuditEntry.model_validate(decode_json(raw)))
            except ValueError as e:
                logger.warning("Skipping malformed audit entry", key=key, error=str(e))
        return entries
