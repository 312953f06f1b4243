"""
Penalty guard.

A user is *restricted* while at least one of their penalty records has
``expires_at > now``.  Records expire by timestamp comparison alone; the
penalty sweeper deletes stale rows but correctness never depends on it.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from .entities import PenaltyRecord
from .enums import PenaltyKind
from .exceptions import RestrictedByPenalty
from .ports import PenaltyStore

logger = logging.getLogger(__name__)


def is_restricted(records: Iterable[PenaltyRecord], now: datetime) -> bool:
    return any(record.is_active(now) for record in records)


def latest_active(
    records: Iterable[PenaltyRecord], now: datetime
) -> Optional[PenaltyRecord]:
    active = [r for r in records if r.is_active(now)]
    return max(active, key=lambda r: r.expires_at) if active else None


class PenaltyGuard:
    def __init__(self, store: PenaltyStore):
        self.store = store

    async def is_restricted(self, user_id: str, now: datetime) -> bool:
        return is_restricted(await self.store.list_for_user(user_id), now)

    async def active_penalty(
        self, user_id: str, now: datetime
    ) -> Optional[PenaltyRecord]:
        return latest_active(await self.store.list_for_user(user_id), now)

    async def restricted_among(
        self, user_ids: Iterable[str], now: datetime
    ) -> set[str]:
        records = await self.store.list_for_users(set(user_ids))
        return {r.user_id for r in records if r.is_active(now)}

    async def ensure_not_restricted(
        self, user_id: str, now: datetime, action: str
    ) -> None:
        penalty = await self.active_penalty(user_id, now)
        if penalty is not None:
            raise RestrictedByPenalty(
                f"User {user_id} may not {action} until "
                f"{penalty.expires_at.isoformat()}: {penalty.reason}"
            )

    @staticmethod
    def new_penalty(
        user_id: str,
        *,
        kind: PenaltyKind,
        reason: str,
        duration: timedelta,
        now: datetime,
        ride_id: Optional[str] = None,
    ) -> PenaltyRecord:
        """Build an unsaved record; the ledger commits it with the ride change."""
        return PenaltyRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            reason=reason,
            expires_at=now + duration,
            kind=kind,
            ride_id=ride_id,
            created_at=now,
        )

    async def penalize(
        self,
        user_id: str,
        *,
        kind: PenaltyKind,
        reason: str,
        duration: timedelta,
        now: datetime,
        ride_id: Optional[str] = None,
    ) -> PenaltyRecord:
        record = self.new_penalty(
            user_id, kind=kind, reason=reason, duration=duration, now=now, ride_id=ride_id
        )
        record = await self.store.add(record)
        logger.info(
            "Penalty %s applied to user %s until %s: %s",
            kind.value,
            user_id,
            record.expires_at.astimezone(timezone.utc).isoformat(),
            reason,
        )
        return record
