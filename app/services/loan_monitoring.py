from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.loan import Loan
from app.schemas.loan import MONITORED_LOAN_STATUSES, LtvBreach, LtvMonitoringReport
from app.services.platform_configs import require_platform_config

logger = logging.getLogger(__name__)


async def monitor_loan_ltv(
    db: AsyncSession,
    *,
    monitoring_date: datetime,
    ltv_threshold: Decimal | None = None,
) -> LtvMonitoringReport:
    """Report live loans whose current LTV exceeds the threshold.

    Read-only. Without an explicit threshold the platform's ``loan_max_ltv_ratio``
    effective at ``monitoring_date`` is used.
    """
    if ltv_threshold is None:
        config = await require_platform_config(db, monitoring_date)
        ltv_threshold = Decimal(config.loan_max_ltv_ratio)

    statuses = [status.value for status in MONITORED_LOAN_STATUSES]
    count_stmt = select(func.count()).select_from(Loan).where(Loan.status.in_(statuses))
    processed = int((await db.execute(count_stmt)).scalar_one() or 0)

    stmt = (
        select(Loan)
        .where(
            Loan.status.in_(statuses),
            Loan.current_ltv_ratio.is_not(None),
            Loan.current_ltv_ratio > ltv_threshold,
        )
        .order_by(Loan.current_ltv_ratio.desc(), Loan.id.asc())
    )
    loans = (await db.execute(stmt)).scalars().all()
    breaches = [
        LtvBreach(
            loan_id=loan.id,
            borrower_user_id=loan.borrower_user_id,
            current_ltv_ratio=loan.current_ltv_ratio,
            mc_ltv_ratio=loan.mc_ltv_ratio,
            breach_date=monitoring_date,
        )
        for loan in loans
    ]
    if breaches:
        logger.warning(
            "LTV monitoring found %d breaches above %s out of %d loans",
            len(breaches),
            ltv_threshold,
            processed,
        )
    return LtvMonitoringReport(threshold=ltv_threshold, breaches=breaches, processed_loans=processed)
