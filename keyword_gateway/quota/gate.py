"""
Credit / Quota Gate

Checks and updates per-tenant usage counters against plan entitlements.

- Daily query counters reset on the first access after a UTC midnight
- Monthly credit counters reset on the first access after the 1st of a month
- Resets are conditional UPDATEs, so each boundary is crossed exactly once
  and a counter never moves back to an earlier period
- reserve_* perform the check and the increment as one conditional UPDATE;
  check_* followed by increment_* remains available for read-only display
  and for callers that charge after the fact
- Any failure to read counters fails closed
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from keyword_gateway.errors import (
    ConfigurationError,
    FeatureDisabledError,
    GatewayError,
    LimitType,
    QuotaExceededError,
)
from keyword_gateway.models.base import as_naive_utc, utcnow
from keyword_gateway.models.usage import UsageCounter
from keyword_gateway.observability.metrics import record_quota_rejected
from keyword_gateway.quota.plans import (
    PLANS,
    PlanEntitlement,
    PlanFeatures,
    get_entitlements,
    is_unlimited,
    usage_level,
    usage_percentage,
)

logger = logging.getLogger(__name__)


@dataclass
class UsageCheck:
    """Outcome of a quota or feature check. `error` is set whenever allowed is False."""

    allowed: bool
    error: Optional[GatewayError] = None
    remaining_queries: Optional[int] = None
    remaining_credits: Optional[int] = None
    plan_id: Optional[str] = None

    def raise_for_error(self) -> None:
        if not self.allowed and self.error is not None:
            raise self.error


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_month(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def start_of_next_month(moment: datetime) -> datetime:
    first = start_of_month(moment)
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


def daily_reset_due(last_query_reset: datetime, now: datetime) -> bool:
    """True once `now` has crossed a UTC midnight since the last reset."""
    return as_naive_utc(last_query_reset) < start_of_day(as_naive_utc(now))


def monthly_reset_due(credits_reset_at: datetime, now: datetime) -> bool:
    """True once `now` has reached the first of the month after the last reset."""
    return start_of_next_month(as_naive_utc(credits_reset_at)) <= as_naive_utc(now)


class QuotaGate:
    """
    Enforces plan entitlements for tenants.

    Supports:
    - Daily query allowance (queries_per_day)
    - Monthly credit allowance (monthly_credits)
    - Feature flags per plan
    """

    def __init__(
        self,
        config,
        session_factory=None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            config: GatewayConfig instance (default_plan for new tenants)
            session_factory: SQLAlchemy sessionmaker (default: keyword_gateway.database.SessionLocal)
            clock: Returns the current UTC time
        """
        if session_factory is None:
            from keyword_gateway.database import SessionLocal
            session_factory = SessionLocal

        self.config = config
        self.session_factory = session_factory
        self.clock = clock

    def _now(self) -> datetime:
        return as_naive_utc(self.clock())

    # Counter access

    def _get_or_create_counter(self, db: Session, tenant_id: str) -> UsageCounter:
        """
        Load the tenant's counter row, creating it on first use.
        """
        counter = db.execute(
            select(UsageCounter).where(UsageCounter.tenant_id == tenant_id)
        ).scalar_one_or_none()

        if counter is not None:
            return counter

        now = self._now()
        counter = UsageCounter(
            tenant_id=tenant_id,
            plan_id=self.config.default_plan,
            queries_today=0,
            last_query_reset=now,
            credits_used_this_month=0,
            credits_reset_at=now,
        )
        db.add(counter)
        try:
            db.commit()
        except IntegrityError:
            # Another request created the row first
            db.rollback()
            return db.execute(
                select(UsageCounter).where(UsageCounter.tenant_id == tenant_id)
            ).scalar_one()

        db.refresh(counter)
        logger.info(f"Created usage counter for tenant={tenant_id} plan={counter.plan_id}")
        return counter

    def _reset_if_due(self, db: Session, counter: UsageCounter) -> None:
        """
        Apply lazy period resets as conditional UPDATEs.

        Only the first request past a boundary matches the WHERE clause, and
        the boundary timestamp only ever moves forward.
        """
        now = self._now()
        tenant_id = counter.tenant_id
        if not (daily_reset_due(counter.last_query_reset, now) or monthly_reset_due(counter.credits_reset_at, now)):
            return

        daily = db.execute(
            update(UsageCounter)
            .where(
                UsageCounter.tenant_id == tenant_id,
                UsageCounter.last_query_reset < start_of_day(now),
            )
            .values(queries_today=0, last_query_reset=now)
            .execution_options(synchronize_session=False)
        )
        monthly = db.execute(
            update(UsageCounter)
            .where(
                UsageCounter.tenant_id == tenant_id,
                UsageCounter.credits_reset_at < start_of_month(now),
            )
            .values(credits_used_this_month=0, credits_reset_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()

        if daily.rowcount:
            logger.info(f"Reset daily query counter for tenant={tenant_id}")
        if monthly.rowcount:
            logger.info(f"Reset monthly credit counter for tenant={tenant_id}")

    def _load(self, db: Session, tenant_id: str) -> UsageCounter:
        """Counter row with any due resets applied."""
        counter = self._get_or_create_counter(db, tenant_id)
        self._reset_if_due(db, counter)
        db.refresh(counter)
        return counter

    # Messages

    @staticmethod
    def _query_limit_error(entitlement: PlanEntitlement, used: int) -> QuotaExceededError:
        return QuotaExceededError(
            f"Daily query limit exceeded. You have used {used} of {entitlement.queries_per_day} "
            f"queries per day on your {entitlement.plan_name} plan.",
            LimitType.QUERIES_PER_DAY,
            used,
            entitlement.queries_per_day,
        )

    @staticmethod
    def _credit_limit_error(entitlement: PlanEntitlement, used: int, required: int) -> QuotaExceededError:
        remaining = max(0, entitlement.monthly_credits - used)
        return QuotaExceededError(
            f"Insufficient credits. This operation requires {required} credits, but you only have "
            f"{remaining} of {entitlement.monthly_credits} remaining this month on your "
            f"{entitlement.plan_name} plan.",
            LimitType.MONTHLY_CREDITS,
            used,
            entitlement.monthly_credits,
        )

    @staticmethod
    def _reject(tenant_id: str, error: QuotaExceededError) -> UsageCheck:
        logger.info(
            f"event=quota_rejected tenant={tenant_id} limit_type={error.limit_type.value} "
            f"usage={error.current_usage} limit={error.limit}"
        )
        record_quota_rejected(error.limit_type.value, tenant_id)
        return UsageCheck(allowed=False, error=error)

    @staticmethod
    def _unavailable(tenant_id: str, what: str, e: Exception) -> UsageCheck:
        logger.error(f"Failed to read usage counters for tenant={tenant_id} ({what}): {e}")
        return UsageCheck(
            allowed=False,
            error=ConfigurationError(f"Unable to verify {what}. Please try again later."),
        )

    # Checks

    def check_query_limit(self, tenant_id: str) -> UsageCheck:
        """
        Check whether the tenant may run another query today.

        Returns:
            UsageCheck with remaining_queries; fails closed if counters cannot be read
        """
        db = self.session_factory()
        try:
            counter = self._get_or_create_counter(db, tenant_id)
            entitlement = get_entitlements(counter.plan_id)

            if is_unlimited(entitlement.queries_per_day):
                return UsageCheck(allowed=True, plan_id=entitlement.plan_id)

            self._reset_if_due(db, counter)
            db.refresh(counter)
            used = counter.queries_today

            if used >= entitlement.queries_per_day:
                return self._reject(tenant_id, self._query_limit_error(entitlement, used))

            return UsageCheck(
                allowed=True,
                remaining_queries=entitlement.queries_per_day - used,
                plan_id=entitlement.plan_id,
            )

        except SQLAlchemyError as e:
            db.rollback()
            return self._unavailable(tenant_id, "query limits", e)
        finally:
            db.close()

    def check_credit_limit(self, tenant_id: str, required_credits: int) -> UsageCheck:
        """
        Check whether the tenant has `required_credits` left this month.

        Returns:
            UsageCheck with remaining_credits; fails closed if counters cannot be read
        """
        if required_credits < 0:
            raise ValueError("required_credits must be non-negative")

        db = self.session_factory()
        try:
            counter = self._get_or_create_counter(db, tenant_id)
            entitlement = get_entitlements(counter.plan_id)

            if is_unlimited(entitlement.monthly_credits):
                return UsageCheck(allowed=True, plan_id=entitlement.plan_id)

            self._reset_if_due(db, counter)
            db.refresh(counter)
            used = counter.credits_used_this_month

            if used + required_credits > entitlement.monthly_credits:
                return self._reject(tenant_id, self._credit_limit_error(entitlement, used, required_credits))

            return UsageCheck(
                allowed=True,
                remaining_credits=entitlement.monthly_credits - used,
                plan_id=entitlement.plan_id,
            )

        except SQLAlchemyError as e:
            db.rollback()
            return self._unavailable(tenant_id, "credit limits", e)
        finally:
            db.close()

    def check_feature_access(self, tenant_id: str, feature: str) -> UsageCheck:
        """Check whether the tenant's plan includes `feature`."""
        if feature not in PlanFeatures.names():
            return UsageCheck(allowed=False, error=FeatureDisabledError(f"Unknown feature: {feature}", feature))

        db = self.session_factory()
        try:
            counter = self._get_or_create_counter(db, tenant_id)
            entitlement = get_entitlements(counter.plan_id)
        except SQLAlchemyError as e:
            db.rollback()
            return self._unavailable(tenant_id, "feature access", e)
        finally:
            db.close()

        if not entitlement.features.is_enabled(feature):
            logger.info(f"event=feature_disabled tenant={tenant_id} feature={feature} plan={entitlement.plan_id}")
            return UsageCheck(
                allowed=False,
                error=FeatureDisabledError(
                    f"This feature is not available on your {entitlement.plan_name} plan. "
                    f"Please upgrade to access {feature}.",
                    feature,
                ),
                plan_id=entitlement.plan_id,
            )

        return UsageCheck(allowed=True, plan_id=entitlement.plan_id)

    def enforce_query_limit(self, tenant_id: str) -> UsageCheck:
        """check_query_limit that raises the typed error instead of returning it."""
        check = self.check_query_limit(tenant_id)
        check.raise_for_error()
        return check

    def enforce_credit_limit(self, tenant_id: str, required_credits: int) -> UsageCheck:
        check = self.check_credit_limit(tenant_id, required_credits)
        check.raise_for_error()
        return check

    def enforce_feature_access(self, tenant_id: str, feature: str) -> UsageCheck:
        check = self.check_feature_access(tenant_id, feature)
        check.raise_for_error()
        return check

    # Post-operation increments

    def increment_query_count(self, tenant_id: str) -> bool:
        """
        Record one successful query. Call only after the costed operation succeeded.

        Returns:
            True if the counter was updated
        """
        return self._increment(tenant_id, UsageCounter.queries_today, 1, "query count")

    def increment_credit_usage(self, tenant_id: str, credits: int) -> bool:
        """
        Record credits spent by a successful operation.

        Returns:
            True if the counter was updated
        """
        if credits < 0:
            raise ValueError("credits must be non-negative")
        if credits == 0:
            return True
        return self._increment(tenant_id, UsageCounter.credits_used_this_month, credits, "credit usage")

    def _increment(self, tenant_id: str, column, amount: int, what: str) -> bool:
        db = self.session_factory()
        try:
            self._load(db, tenant_id)
            db.execute(
                update(UsageCounter)
                .where(UsageCounter.tenant_id == tenant_id)
                .values({column.key: column + amount})
                .execution_options(synchronize_session=False)
            )
            db.commit()
            logger.info(f"event=usage_incremented tenant={tenant_id} counter={column.key} amount={amount}")
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to increment {what} for tenant={tenant_id}: {e}")
            return False
        finally:
            db.close()

    # Atomic reservations

    def reserve_query(self, tenant_id: str) -> UsageCheck:
        """
        Check the daily limit and take one query in a single conditional UPDATE.

        Concurrent requests for the same tenant cannot push usage past the limit.
        """
        db = self.session_factory()
        try:
            counter = self._load(db, tenant_id)
            entitlement = get_entitlements(counter.plan_id)
            limit = entitlement.queries_per_day

            stmt = update(UsageCounter).where(UsageCounter.tenant_id == tenant_id)
            if not is_unlimited(limit):
                stmt = stmt.where(UsageCounter.queries_today < limit)

            taken = db.execute(
                stmt.values(queries_today=UsageCounter.queries_today + 1)
                .execution_options(synchronize_session=False)
            ).rowcount
            db.commit()
            db.refresh(counter)

            if not taken:
                return self._reject(tenant_id, self._query_limit_error(entitlement, counter.queries_today))

            remaining = None if is_unlimited(limit) else limit - counter.queries_today
            return UsageCheck(allowed=True, remaining_queries=remaining, plan_id=entitlement.plan_id)

        except SQLAlchemyError as e:
            db.rollback()
            return self._unavailable(tenant_id, "query limits", e)
        finally:
            db.close()

    def reserve_credits(self, tenant_id: str, credits: int) -> UsageCheck:
        """Check the monthly credit limit and take `credits` in a single conditional UPDATE."""
        if credits < 0:
            raise ValueError("credits must be non-negative")

        db = self.session_factory()
        try:
            counter = self._load(db, tenant_id)
            entitlement = get_entitlements(counter.plan_id)
            limit = entitlement.monthly_credits

            stmt = update(UsageCounter).where(UsageCounter.tenant_id == tenant_id)
            if not is_unlimited(limit):
                stmt = stmt.where(UsageCounter.credits_used_this_month + credits <= limit)

            taken = db.execute(
                stmt.values(credits_used_this_month=UsageCounter.credits_used_this_month + credits)
                .execution_options(synchronize_session=False)
            ).rowcount
            db.commit()
            db.refresh(counter)

            if not taken:
                return self._reject(
                    tenant_id, self._credit_limit_error(entitlement, counter.credits_used_this_month, credits)
                )

            remaining = None if is_unlimited(limit) else limit - counter.credits_used_this_month
            return UsageCheck(allowed=True, remaining_credits=remaining, plan_id=entitlement.plan_id)

        except SQLAlchemyError as e:
            db.rollback()
            return self._unavailable(tenant_id, "credit limits", e)
        finally:
            db.close()

    def release_query(self, tenant_id: str) -> bool:
        """Refund a query reservation whose operation failed."""
        return self._release(tenant_id, UsageCounter.queries_today, 1)

    def release_credits(self, tenant_id: str, credits: int) -> bool:
        """Refund a credit reservation whose operation failed or was served from cache."""
        if credits <= 0:
            return True
        return self._release(tenant_id, UsageCounter.credits_used_this_month, credits)

    def _release(self, tenant_id: str, column, amount: int) -> bool:
        db = self.session_factory()
        try:
            db.execute(
                update(UsageCounter)
                .where(UsageCounter.tenant_id == tenant_id)
                .values({column.key: case((column >= amount, column - amount), else_=0)})
                .execution_options(synchronize_session=False)
            )
            db.commit()
            logger.info(f"event=usage_released tenant={tenant_id} counter={column.key} amount={amount}")
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to release {column.key} for tenant={tenant_id}: {e}")
            return False
        finally:
            db.close()

    # Plan management and reporting

    def set_plan(self, tenant_id: str, plan_id: str) -> None:
        """
        Assign a plan to a tenant, creating the counter row if needed.

        Raises:
            ValueError: If the plan id is unknown
        """
        plan_id = plan_id.strip().lower()
        if plan_id not in PLANS:
            raise ValueError(f"Unknown plan: {plan_id}")

        db = self.session_factory()
        try:
            counter = self._get_or_create_counter(db, tenant_id)
            counter.plan_id = plan_id
            db.commit()
            logger.info(f"Set plan for tenant={tenant_id} to {plan_id}")
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def get_entitlement(self, tenant_id: str) -> PlanEntitlement:
        db = self.session_factory()
        try:
            return get_entitlements(self._get_or_create_counter(db, tenant_id).plan_id)
        finally:
            db.close()

    def get_usage_summary(self, tenant_id: str) -> Dict[str, Any]:
        """
        Current usage against both limits, for display.

        Returns:
            Dict with plan info and a block per limit type
        """
        db = self.session_factory()
        try:
            counter = self._load(db, tenant_id)
            entitlement = get_entitlements(counter.plan_id)

            def block(used: int, limit: int, resets_at: datetime) -> Dict[str, Any]:
                return {
                    "used": used,
                    "limit": limit,
                    "remaining": None if is_unlimited(limit) else max(0, limit - used),
                    "percentage": usage_percentage(used, limit),
                    "level": usage_level(used, limit),
                    "resets_at": resets_at.isoformat(),
                }

            return {
                "tenant_id": tenant_id,
                "plan_id": entitlement.plan_id,
                "plan_name": entitlement.plan_name,
                LimitType.QUERIES_PER_DAY.value: block(
                    counter.queries_today,
                    entitlement.queries_per_day,
                    start_of_day(as_naive_utc(counter.last_query_reset)) + timedelta(days=1),
                ),
                LimitType.MONTHLY_CREDITS.value: block(
                    counter.credits_used_this_month,
                    entitlement.monthly_credits,
                    start_of_next_month(as_naive_utc(counter.credits_reset_at)),
                ),
            }
        finally:
            db.close()
