from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from loguru import logger

from linkscan.storage.backlink_repository import storage_errors
from linkscan.storage.models import QuotaUsage, Subscription
from linkscan.utils.clock import as_utc, next_utc_midnight, utcnow


PLAN_FREE = "free"
PLANS = (PLAN_FREE, "personal", "business", "agency")
STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"


@dataclass
class SubscriptionInfo:
    plan: str = PLAN_FREE
    status: str = STATUS_INACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE


@dataclass
class QuotaReservation:
    ok: bool
    user_id: str
    limit: int
    used_today: int
    reset_at: datetime
    previous_used: int = 0

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used_today, 0)

    def as_dict(self) -> dict:
        return {
            "limit": self.limit,
            "usedToday": self.used_today,
            "remaining": self.remaining,
            "resetAt": self.reset_at.isoformat(),
        }


def compute_plan_limit(plan: Optional[str], status: Optional[str], limits: Dict[str, int]) -> int:
    """Only active paid subscriptions get their plan limit; everything else is free."""
    normalized = (plan or PLAN_FREE).lower()
    if status != STATUS_ACTIVE or normalized == PLAN_FREE:
        return limits[PLAN_FREE]
    return limits.get(normalized, limits[PLAN_FREE])


async def get_subscription(user_id: str) -> SubscriptionInfo:
    """Plan of a user; no row means free and inactive."""
    with storage_errors("load subscription"):
        row = await Subscription.filter(user_id=user_id).first()
    if row is None:
        return SubscriptionInfo()
    return SubscriptionInfo(plan=(row.plan or PLAN_FREE).lower(), status=row.status or STATUS_INACTIVE)


class QuotaLedger:
    """Per-user daily counter of pro scans.

    A slot is reserved before the expensive call and handed back with
    ``rollback`` when that call fails, so failed attempts are never charged.
    """

    def __init__(self, plan_limits: Dict[str, int]):
        self.plan_limits = plan_limits

    async def limit_for(self, user_id: str) -> int:
        subscription = await get_subscription(user_id)
        return compute_plan_limit(subscription.plan, subscription.status, self.plan_limits)

    @staticmethod
    def _effective_used(row: Optional[QuotaUsage], now: datetime) -> int:
        if row is None:
            return 0
        reset_at = as_utc(row.reset_at)
        if reset_at is None or now >= reset_at:
            return 0
        return row.used_today or 0

    async def status(self, user_id: str, limit: int, now: Optional[datetime] = None) -> QuotaReservation:
        now = as_utc(now) if now else utcnow()
        with storage_errors("load quota usage"):
            row = await QuotaUsage.filter(user_id=user_id).first()
        used = self._effective_used(row, now)
        reset_at = as_utc(row.reset_at) if row and used else next_utc_midnight(now)
        return QuotaReservation(
            ok=used < limit,
            user_id=user_id,
            limit=limit,
            used_today=used,
            reset_at=reset_at,
            previous_used=used,
        )

    async def reserve(self, user_id: str, limit: int, now: Optional[datetime] = None) -> QuotaReservation:
        now = as_utc(now) if now else utcnow()
        reset_at = next_utc_midnight(now)

        with storage_errors("reserve quota"):
            row = await QuotaUsage.filter(user_id=user_id).first()
            used = self._effective_used(row, now)

            if used >= limit:
                logger.info(f"[quota] {user_id} at limit ({used}/{limit})")
                return QuotaReservation(False, user_id, limit, used, reset_at, previous_used=used)

            await QuotaUsage.update_or_create(
                user_id=user_id,
                defaults={"used_today": used + 1, "daily_limit": limit, "reset_at": reset_at},
            )

        return QuotaReservation(True, user_id, limit, used + 1, reset_at, previous_used=used)

    async def rollback(self, reservation: QuotaReservation) -> None:
        if not reservation.ok:
            return
        with storage_errors("roll back quota"):
            await QuotaUsage.filter(user_id=reservation.user_id).update(
                used_today=reservation.previous_used
            )
        reservation.used_today = reservation.previous_used
        logger.info(f"[quota] Released slot of {reservation.user_id} ({reservation.previous_used}/{reservation.limit})")
