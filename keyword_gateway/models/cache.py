from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from keyword_gateway.models.base import Base, UUIDMixin, utcnow


class CacheEntry(Base, UUIDMixin):
    """A cached provider payload addressed by a deterministic key."""

    __tablename__ = "response_cache"

    key: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    tenant_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    payload: Mapped[Any] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    last_hit_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    hit_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
