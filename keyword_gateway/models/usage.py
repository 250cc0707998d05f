from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from keyword_gateway.models.base import Base, UUIDMixin, TimestampMixin, utcnow


class UsageCounter(Base, UUIDMixin, TimestampMixin):
    """Per-tenant usage counters, reset lazily at period boundaries."""

    __tablename__ = "usage_counters"

    tenant_id: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    plan_id: Mapped[str] = mapped_column(String, default="free", nullable=False)

    queries_today: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_query_reset: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    credits_used_this_month: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    credits_reset_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("queries_today >= 0", name="ck_usage_queries_non_negative"),
        CheckConstraint("credits_used_this_month >= 0", name="ck_usage_credits_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<UsageCounter tenant={self.tenant_id} plan={self.plan_id} "
            f"queries={self.queries_today} credits={self.credits_used_this_month}>"
        )
