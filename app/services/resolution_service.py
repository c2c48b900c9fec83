"""
Resolution Service
Entry point for billing: resolves the commission split of a sale
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import NoApplicableRuleError
from app.services.commission_resolver import Resolution, resolve_detail
from app.services.commission_service import CommissionService
from app.utils.timeutils import to_utc, utcnow

logger = logging.getLogger(__name__)


class ResolutionService:
    """Service wrapping the pure resolution engine around the configuration store"""

    @staticmethod
    def resolve(
        db: Session,
        course_id: Optional[str],
        category_id: Optional[str],
        at_time: Optional[datetime] = None,
        transaction_ref: Optional[str] = None
    ) -> Resolution:
        """
        Resolve the commission rule for a transaction

        Args:
            db: Database session
            course_id: Course being purchased
            category_id: Category of that course
            at_time: Transaction timestamp (defaults to now, UTC)
            transaction_ref: When given, the winning detail is marked as used

        Returns:
            Resolution with the rate pair and winning detail

        Raises:
            NoApplicableRuleError: No rule applies (configuration defect)
            AmbiguousRuleError: Top candidates tie
        """
        at_time = to_utc(at_time) or utcnow()
        snapshot = CommissionService.current_snapshot(db)

        try:
            resolution = resolve_detail(snapshot, course_id, category_id, at_time)
        except NoApplicableRuleError as e:
            logger.error(f"No commission rule applies, check for a missing general rule: {e.detail}")
            raise

        if transaction_ref is not None:
            CommissionService.record_usage(db, resolution, transaction_ref, at_time)
            logger.info(
                f"Resolved {transaction_ref}: detail {resolution.detail_id} "
                f"rate {resolution.rate.platform_rate}/{resolution.rate.instructor_rate}"
            )
        return resolution

    @staticmethod
    def resolve_as_of(
        db: Session,
        course_id: Optional[str],
        category_id: Optional[str],
        at_time: datetime,
        as_of: Optional[datetime] = None
    ) -> Resolution:
        """
        Replay a resolution against the configuration as it stood at as_of

        as_of defaults to at_time, i.e. "what rule applied when this sale happened".
        """
        at_time = to_utc(at_time)
        as_of = to_utc(as_of) or at_time
        snapshot = CommissionService.snapshot_as_of(db, as_of)
        return resolve_detail(snapshot, course_id, category_id, at_time)

    @staticmethod
    def preview(resolution: Resolution, amount: int) -> Dict[str, Any]:
        """Split an amount with a resolved rate"""
        platform_amount, instructor_amount = resolution.rate.split(amount)
        data = resolution.to_dict()
        data.update({
            "total_amount": amount,
            "platform_amount": platform_amount,
            "instructor_amount": instructor_amount,
        })
        return data
