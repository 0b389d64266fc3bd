import uuid
from decimal import Decimal

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.models.types import RATIO


class PlatformConfig(Base):
    __tablename__ = "platform_configs"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("loan_min_ltv_ratio <= loan_max_ltv_ratio", name="ck_platform_configs_ltv_bounds"),
        CheckConstraint(
            "loan_repayment_duration_in_days > 0",
            name="ck_platform_configs_repayment_duration_positive",
        ),
        CheckConstraint(
            "loan_liquidation_mode IN ('Partial', 'Full')",
            name="ck_platform_configs_liquidation_mode",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    effective_date = Column(DateTime(timezone=True), nullable=False, unique=True)
    admin_user_id = Column(UUID(as_uuid=True), nullable=True)
    loan_provision_rate = Column(RATIO, nullable=False, default=Decimal("0.03"))
    loan_individual_redelivery_fee_rate = Column(RATIO, nullable=False, default=Decimal("0.1"))
    loan_institution_redelivery_fee_rate = Column(RATIO, nullable=False, default=Decimal("0.025"))
    loan_min_ltv_ratio = Column(RATIO, nullable=False, default=Decimal("0.6"))
    loan_max_ltv_ratio = Column(RATIO, nullable=False, default=Decimal("0.75"))
    loan_repayment_duration_in_days = Column(Integer, nullable=False, default=30)
    loan_liquidation_mode = Column(String(20), nullable=False, default="Partial")
    loan_liquidation_premi_rate = Column(RATIO, nullable=False, default=Decimal("0.02"))
    loan_liquidation_fee_rate = Column(RATIO, nullable=False, default=Decimal("0.02"))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
