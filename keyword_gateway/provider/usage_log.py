"""
Provider usage logging: one row per logical provider call, success or failure.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from keyword_gateway.models.provider_log import ProviderUsageLog

logger = logging.getLogger(__name__)


class ProviderUsageLogger:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def log(
        self,
        module: str,
        endpoint: str,
        response_status: int,
        tenant_id: Optional[str] = None,
        attempts: int = 1,
        credits_used: float = 0.0,
        cost_usd: float = 0.0,
        error_message: Optional[str] = None,
    ) -> None:
        """Persist a usage row. Failures are logged and never propagate."""
        db = self.session_factory()
        try:
            db.add(ProviderUsageLog(
                tenant_id=tenant_id,
                module=module,
                endpoint=endpoint,
                response_status=response_status,
                attempts=attempts,
                credits_used=credits_used,
                cost_usd=cost_usd,
                error_message=error_message,
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to log provider usage for {endpoint}: {e}")
        finally:
            db.close()
