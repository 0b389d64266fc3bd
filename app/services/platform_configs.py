from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import LedgerError, PlatformConfigMissingError
from app.models.platform_config import PlatformConfig
from app.schemas.loan import LiquidationMode
from app.services.audit import model_snapshot, record_audit_log
from app.services.versioned import latest_as_of


DEFAULTS: dict[str, object] = {
    "loan_provision_rate": Decimal("0.03"),
    "loan_individual_redelivery_fee_rate": Decimal("0.1"),
    "loan_institution_redelivery_fee_rate": Decimal("0.025"),
    "loan_min_ltv_ratio": Decimal("0.6"),
    "loan_max_ltv_ratio": Decimal("0.75"),
    "loan_repayment_duration_in_days": 30,
    "loan_liquidation_mode": LiquidationMode.PARTIAL.value,
    "loan_liquidation_premi_rate": Decimal("0.02"),
    "loan_liquidation_fee_rate": Decimal("0.02"),
}

RATE_FIELDS = (
    "loan_provision_rate",
    "loan_individual_redelivery_fee_rate",
    "loan_institution_redelivery_fee_rate",
    "loan_min_ltv_ratio",
    "loan_max_ltv_ratio",
    "loan_liquidation_premi_rate",
    "loan_liquidation_fee_rate",
)


async def get_platform_config(db: AsyncSession, as_of: datetime) -> PlatformConfig | None:
    return await latest_as_of(db, PlatformConfig, PlatformConfig.effective_date, as_of)


async def require_platform_config(db: AsyncSession, as_of: datetime) -> PlatformConfig:
    config = await get_platform_config(db, as_of)
    if config is None:
        raise PlatformConfigMissingError(
            f"No platform configuration effective at {as_of.isoformat()}",
            entity="PlatformConfig",
        )
    return config


async def set_platform_config(
    db: AsyncSession,
    *,
    effective_date: datetime,
    admin_user_id: UUID | None,
    **overrides,
) -> PlatformConfig:
    """Write a new configuration version.

    Fields not supplied are carried over from the version in force at
    ``effective_date``, falling back to the platform defaults.
    """
    unknown = set(overrides) - set(DEFAULTS)
    if unknown:
        raise LedgerError(f"Unknown platform config fields: {', '.join(sorted(unknown))}")

    previous = await get_platform_config(db, effective_date)
    values = {
        field: getattr(previous, field) if previous is not None else default
        for field, default in DEFAULTS.items()
    }
    values.update({field: value for field, value in overrides.items() if value is not None})

    for field in RATE_FIELDS:
        if Decimal(values[field]) < 0:
            raise LedgerError(f"{field} must not be negative", entity="PlatformConfig")
    if Decimal(values["loan_min_ltv_ratio"]) > Decimal(values["loan_max_ltv_ratio"]):
        raise LedgerError(
            "loan_min_ltv_ratio cannot exceed loan_max_ltv_ratio", entity="PlatformConfig"
        )
    LiquidationMode(values["loan_liquidation_mode"])

    config = PlatformConfig(effective_date=effective_date, admin_user_id=admin_user_id, **values)
    db.add(config)
    await db.flush()
    record_audit_log(
        db,
        actor_id=admin_user_id,
        action="platform_config.updated",
        resource_type="platform_config",
        resource_id=str(config.id),
        old_value=model_snapshot(previous, exclude={"id", "created_at"}) if previous else None,
        new_value=model_snapshot(config, exclude={"id", "created_at"}),
    )
    return config
