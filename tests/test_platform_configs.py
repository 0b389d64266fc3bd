from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from app.core.exceptions import LedgerError, PlatformConfigMissingError
from app.models.audit_log import AuditLog
from app.models.platform_config import PlatformConfig
from app.services import platform_configs
from conftest import BASE_DATE, FakeResult, make_platform_config


@pytest.mark.asyncio
async def test_require_platform_config_without_any_version(fake_db) -> None:
    with pytest.raises(PlatformConfigMissingError):
        await platform_configs.require_platform_config(fake_db, BASE_DATE)


@pytest.mark.asyncio
async def test_latest_version_at_or_before_date_is_returned(fake_db) -> None:
    config = make_platform_config()
    fake_db.on_execute_return(FakeResult(items=[config]))

    found = await platform_configs.require_platform_config(fake_db, BASE_DATE)
    assert found is config
    rendered = str(fake_db.executed[0])
    assert "platform_configs.effective_date <=" in rendered
    assert "ORDER BY platform_configs.effective_date DESC" in rendered


@pytest.mark.asyncio
async def test_new_version_carries_over_unspecified_fields(fake_db) -> None:
    previous = make_platform_config(loan_max_ltv_ratio=Decimal("0.8"), loan_repayment_duration_in_days=45)
    fake_db.on_execute_return(FakeResult(items=[previous]))
    admin_id = uuid4()

    config = await platform_configs.set_platform_config(
        fake_db,
        effective_date=BASE_DATE + timedelta(days=1),
        admin_user_id=admin_id,
        loan_provision_rate=Decimal("0.05"),
    )

    assert config.loan_provision_rate == Decimal("0.05")
    assert config.loan_max_ltv_ratio == Decimal("0.8")
    assert config.loan_repayment_duration_in_days == 45
    assert fake_db.added_of(PlatformConfig) == [config]
    audit = fake_db.added_of(AuditLog)
    assert audit and audit[0].action == "platform_config.updated"
    assert audit[0].actor_id == admin_id


@pytest.mark.asyncio
async def test_first_version_uses_defaults(fake_db) -> None:
    config = await platform_configs.set_platform_config(
        fake_db, effective_date=BASE_DATE, admin_user_id=None
    )
    assert config.loan_min_ltv_ratio == Decimal("0.6")
    assert config.loan_max_ltv_ratio == Decimal("0.75")
    assert config.loan_liquidation_mode == "Partial"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"loan_min_ltv_ratio": Decimal("0.9")},
        {"loan_provision_rate": Decimal("-0.01")},
        {"unknown_field": 1},
    ],
)
async def test_invalid_versions_are_rejected(fake_db, overrides) -> None:
    with pytest.raises(LedgerError):
        await platform_configs.set_platform_config(
            fake_db, effective_date=BASE_DATE, admin_user_id=None, **overrides
        )
    assert fake_db.added == []


@pytest.mark.asyncio
async def test_unknown_liquidation_mode_is_rejected(fake_db) -> None:
    with pytest.raises(ValueError):
        await platform_configs.set_platform_config(
            fake_db, effective_date=BASE_DATE, admin_user_id=None, loan_liquidation_mode="Sideways"
        )
