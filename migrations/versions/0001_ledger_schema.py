"""Create ledger, invoice, lending and withdrawal tables"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_ledger_schema"
down_revision = None
branch_labels = None
depends_on = None


def _amount(name: str, nullable: bool = False, **kwargs) -> sa.Column:
    return sa.Column(name, sa.Numeric(78, 0), nullable=nullable, **kwargs)


def _ratio(name: str, nullable: bool = False, **kwargs) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 6), nullable=nullable, **kwargs)


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.TIMESTAMP(timezone=True), nullable=nullable)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now())


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        server_onupdate=sa.func.now(),
    )


def _uuid(name: str, nullable: bool = False, *args, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), *args, nullable=nullable, **kwargs)


def upgrade() -> None:
    op.create_table(
        "currencies",
        sa.Column("blockchain_key", sa.String(length=100), nullable=False),
        sa.Column("token_id", sa.String(length=255), nullable=False),
        sa.Column("decimals", sa.Integer(), nullable=False),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("blockchain_key", "token_id", name="pk_currencies"),
        sa.CheckConstraint("decimals >= 0", name="ck_currencies_decimals_nonneg"),
    )

    op.create_table(
        "price_feeds",
        _uuid("id", primary_key=True),
        sa.Column("blockchain_key", sa.String(length=100), nullable=False),
        sa.Column("base_token_id", sa.String(length=255), nullable=False),
        sa.Column("quote_token_id", sa.String(length=255), nullable=False),
        sa.Column("source", sa.String(length=100), nullable=False),
        _created_at(),
        sa.UniqueConstraint(
            "blockchain_key",
            "base_token_id",
            "quote_token_id",
            "source",
            name="uq_price_feeds_pair_source",
        ),
    )

    op.create_table(
        "exchange_rates",
        _uuid("id", primary_key=True),
        _uuid("price_feed_id", False, sa.ForeignKey("price_feeds.id", ondelete="CASCADE")),
        sa.Column("bid_price", sa.Numeric(36, 18), nullable=False),
        sa.Column("ask_price", sa.Numeric(36, 18), nullable=False),
        _ts("retrieval_date", nullable=False),
        _ts("source_date", nullable=False),
        _created_at(),
        sa.CheckConstraint("bid_price > 0", name="ck_exchange_rates_bid_positive"),
        sa.CheckConstraint("ask_price > 0", name="ck_exchange_rates_ask_positive"),
    )
    op.create_index(
        "ix_exchange_rates_feed_source_date",
        "exchange_rates",
        ["price_feed_id", "source_date"],
    )

    op.create_table(
        "platform_configs",
        _uuid("id", primary_key=True),
        _ts("effective_date", nullable=False),
        _uuid("admin_user_id", True),
        _ratio("loan_provision_rate"),
        _ratio("loan_individual_redelivery_fee_rate"),
        _ratio("loan_institution_redelivery_fee_rate"),
        _ratio("loan_min_ltv_ratio"),
        _ratio("loan_max_ltv_ratio"),
        sa.Column("loan_repayment_duration_in_days", sa.Integer(), nullable=False),
        sa.Column("loan_liquidation_mode", sa.String(length=20), nullable=False),
        _ratio("loan_liquidation_premi_rate"),
        _ratio("loan_liquidation_fee_rate"),
        _created_at(),
        sa.UniqueConstraint("effective_date", name="uq_platform_configs_effective_date"),
        sa.CheckConstraint("loan_min_ltv_ratio <= loan_max_ltv_ratio", name="ck_platform_configs_ltv_bounds"),
        sa.CheckConstraint(
            "loan_repayment_duration_in_days > 0",
            name="ck_platform_configs_repayment_duration_positive",
        ),
        sa.CheckConstraint(
            "loan_liquidation_mode IN ('Partial', 'Full')",
            name="ck_platform_configs_liquidation_mode",
        ),
    )

    op.create_table(
        "loan_offers",
        _uuid("id", primary_key=True),
        _uuid("lender_user_id"),
        sa.Column("principal_blockchain_key", sa.String(length=100), nullable=False),
        sa.Column("principal_token_id", sa.String(length=255), nullable=False),
        _amount("offered_principal_amount"),
        _amount("available_principal_amount"),
        _amount("reserved_principal_amount", server_default=sa.text("0")),
        _amount("disbursed_principal_amount", server_default=sa.text("0")),
        _amount("min_loan_principal_amount"),
        _amount("max_loan_principal_amount"),
        _ratio("interest_rate"),
        sa.Column(
            "term_in_months_options",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="Funding"),
        _ts("created_date", nullable=False),
        _ts("expired_date", nullable=False),
        _ts("published_date"),
        _ts("closed_date"),
        sa.Column("closure_reason", sa.String(length=255), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("offered_principal_amount > 0", name="ck_loan_offers_offered_positive"),
        sa.CheckConstraint("available_principal_amount >= 0", name="ck_loan_offers_available_nonneg"),
        sa.CheckConstraint("reserved_principal_amount >= 0", name="ck_loan_offers_reserved_nonneg"),
        sa.CheckConstraint("disbursed_principal_amount >= 0", name="ck_loan_offers_disbursed_nonneg"),
        sa.CheckConstraint(
            "offered_principal_amount = available_principal_amount"
            " + reserved_principal_amount + disbursed_principal_amount",
            name="ck_loan_offers_principal_balance",
        ),
        sa.CheckConstraint(
            "min_loan_principal_amount > 0 AND min_loan_principal_amount <= max_loan_principal_amount",
            name="ck_loan_offers_principal_bounds",
        ),
        sa.CheckConstraint("interest_rate >= 0", name="ck_loan_offers_interest_nonneg"),
        sa.CheckConstraint(
            "status IN ('Funding', 'Published', 'Closed', 'Expired')",
            name="ck_loan_offers_status",
        ),
    )
    op.create_index("ix_loan_offers_lender_user_id", "loan_offers", ["lender_user_id"])
    op.create_index("ix_loan_offers_status", "loan_offers", ["status"])

    op.create_table(
        "loan_applications",
        _uuid("id", primary_key=True),
        _uuid("borrower_user_id"),
        _uuid("loan_offer_id", True, sa.ForeignKey("loan_offers.id")),
        sa.Column("principal_blockchain_key", sa.String(length=100), nullable=False),
        sa.Column("principal_token_id", sa.String(length=255), nullable=False),
        _amount("principal_amount"),
        _amount("provision_amount", server_default=sa.text("0")),
        _ratio("max_interest_rate"),
        _ratio("min_ltv_ratio"),
        _ratio("max_ltv_ratio"),
        sa.Column("term_in_months", sa.Integer(), nullable=False),
        sa.Column("liquidation_mode", sa.String(length=20), nullable=False, server_default="Partial"),
        sa.Column("collateral_blockchain_key", sa.String(length=100), nullable=False),
        sa.Column("collateral_token_id", sa.String(length=255), nullable=False),
        _amount("collateral_deposit_amount"),
        _uuid("collateral_deposit_exchange_rate_id", False, sa.ForeignKey("exchange_rates.id")),
        _amount("collateral_prepaid_amount", nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="PendingCollateral"),
        _ts("applied_date", nullable=False),
        _ts("expired_date", nullable=False),
        _ts("published_date"),
        _ts("matched_date"),
        _uuid("matched_loan_offer_id", True, sa.ForeignKey("loan_offers.id")),
        _ratio("matched_ltv_ratio", nullable=True),
        _amount("matched_collateral_valuation_amount", nullable=True),
        _ts("closed_date"),
        sa.Column("closure_reason", sa.String(length=255), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("principal_amount > 0", name="ck_loan_apps_principal_positive"),
        sa.CheckConstraint("provision_amount >= 0", name="ck_loan_apps_provision_nonneg"),
        sa.CheckConstraint("collateral_deposit_amount > 0", name="ck_loan_apps_collateral_positive"),
        sa.CheckConstraint("term_in_months > 0", name="ck_loan_apps_term_positive"),
        sa.CheckConstraint("min_ltv_ratio <= max_ltv_ratio", name="ck_loan_apps_ltv_bounds"),
        sa.CheckConstraint(
            "liquidation_mode IN ('Partial', 'Full')",
            name="ck_loan_apps_liquidation_mode",
        ),
        sa.CheckConstraint(
            "status IN ('PendingCollateral', 'Published', 'Matched', 'Cancelled', 'Closed', 'Expired')",
            name="ck_loan_apps_status",
        ),
        sa.CheckConstraint(
            "status <> 'Matched' OR matched_loan_offer_id IS NOT NULL",
            name="ck_loan_apps_matched_offer",
        ),
    )
    op.create_index("ix_loan_applications_borrower_user_id", "loan_applications", ["borrower_user_id"])
    op.create_index("ix_loan_applications_status", "loan_applications", ["status"])

    op.create_table(
        "loans",
        _uuid("id", primary_key=True),
        _uuid("loan_offer_id", False, sa.ForeignKey("loan_offers.id")),
        _uuid("loan_application_id", False, sa.ForeignKey("loan_applications.id")),
        _uuid("borrower_user_id"),
        _uuid("lender_user_id"),
        sa.Column("principal_blockchain_key", sa.String(length=100), nullable=False),
        sa.Column("principal_token_id", sa.String(length=255), nullable=False),
        _amount("principal_amount"),
        _amount("interest_amount"),
        _amount("repayment_amount"),
        _amount("redelivery_fee_amount", server_default=sa.text("0")),
        _amount("redelivery_amount", server_default=sa.text("0")),
        _amount("premi_amount", server_default=sa.text("0")),
        _amount("liquidation_fee_amount", server_default=sa.text("0")),
        _amount("min_collateral_valuation"),
        _ratio("mc_ltv_ratio"),
        _ts("mc_ltv_ratio_date"),
        _ratio("current_ltv_ratio", nullable=True),
        sa.Column("collateral_blockchain_key", sa.String(length=100), nullable=False),
        sa.Column("collateral_token_id", sa.String(length=255), nullable=False),
        _amount("collateral_amount"),
        sa.Column("legal_document_path", sa.String(length=1024), nullable=True),
        sa.Column("legal_document_hash", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="Originated"),
        _ts("origination_date", nullable=False),
        _ts("maturity_date", nullable=False),
        _ts("disbursement_date"),
        _ts("concluded_date"),
        sa.Column("conclusion_reason", sa.String(length=255), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("principal_amount > 0", name="ck_loans_principal_positive"),
        sa.CheckConstraint("interest_amount >= 0", name="ck_loans_interest_nonneg"),
        sa.CheckConstraint("repayment_amount > 0", name="ck_loans_repayment_positive"),
        sa.CheckConstraint("collateral_amount > 0", name="ck_loans_collateral_positive"),
        sa.CheckConstraint("mc_ltv_ratio > 0", name="ck_loans_mc_ltv_positive"),
        sa.CheckConstraint(
            "status IN ('Originated', 'Active', 'Repaid', 'Liquidated', 'Defaulted')",
            name="ck_loans_status",
        ),
        sa.UniqueConstraint("loan_application_id", name="uq_loans_loan_application_id"),
    )
    op.create_index("ix_loans_loan_offer_id", "loans", ["loan_offer_id"])
    op.create_index("ix_loans_borrower_user_id", "loans", ["borrower_user_id"])
    op.create_index("ix_loans_lender_user_id", "loans", ["lender_user_id"])
    op.create_index("ix_loans_status", "loans", ["status"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        _uuid("user_id"),
        sa.Column("currency_blockchain_key", sa.String(length=100), nullable=False),
        sa.Column("currency_token_id", sa.String(length=255), nullable=False),
        sa.Column("invoice_type", sa.String(length=30), nullable=False),
        _amount("invoiced_amount"),
        _amount("paid_amount", server_default=sa.text("0")),
        sa.Column("wallet_address", sa.String(length=255), nullable=False),
        sa.Column("wallet_derivation_path", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="Pending"),
        _ts("invoice_date", nullable=False),
        _ts("due_date"),
        _ts("expired_date"),
        _ts("paid_date"),
        _ts("cancelled_date"),
        _uuid("loan_offer_id", True, sa.ForeignKey("loan_offers.id")),
        _uuid("loan_application_id", True, sa.ForeignKey("loan_applications.id")),
        _uuid("loan_id", True, sa.ForeignKey("loans.id")),
        _created_at(),
        sa.CheckConstraint("invoiced_amount > 0", name="ck_invoices_invoiced_positive"),
        sa.CheckConstraint("paid_amount >= 0", name="ck_invoices_paid_nonneg"),
        sa.CheckConstraint(
            "wallet_derivation_path ~ '^m(/[0-9]+''?)+$'",
            name="ck_invoices_derivation_path",
        ),
        sa.CheckConstraint(
            "invoice_type IN ('LoanCollateral', 'LoanPrincipal', 'LoanRepayment', 'LoanEarlyRepayment')",
            name="ck_invoices_type",
        ),
        sa.CheckConstraint(
            "status IN ('Pending', 'Paid', 'Expired', 'Cancelled')",
            name="ck_invoices_status",
        ),
        sa.CheckConstraint(
            "status <> 'Paid' OR paid_amount >= invoiced_amount",
            name="ck_invoices_paid_covers_invoiced",
        ),
        sa.UniqueConstraint("wallet_derivation_path", name="uq_invoices_wallet_derivation_path"),
    )
    op.create_index("ix_invoices_user_id", "invoices", ["user_id"])
    op.create_index("ix_invoices_status_due", "invoices", ["status", "due_date"])
    op.create_index("ix_invoices_wallet", "invoices", ["currency_blockchain_key", "wallet_address"])

    op.create_table(
        "invoice_payments",
        _uuid("id", primary_key=True),
        sa.Column(
            "invoice_id",
            sa.BigInteger(),
            sa.ForeignKey("invoices.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("payment_hash", sa.String(length=255), nullable=False),
        sa.Column("sender", sa.String(length=255), nullable=True),
        _amount("amount"),
        _ts("payment_date", nullable=False),
        _created_at(),
        sa.CheckConstraint("amount > 0", name="ck_invoice_payments_amount_positive"),
        sa.CheckConstraint("length(payment_hash) > 0", name="ck_invoice_payments_hash_nonempty"),
        sa.UniqueConstraint("invoice_id", "payment_hash", name="uq_invoice_payments_invoice_hash"),
    )

    op.create_table(
        "accounts",
        _uuid("id", primary_key=True),
        _uuid("user_id"),
        sa.Column("currency_blockchain_key", sa.String(length=100), nullable=False),
        sa.Column("currency_token_id", sa.String(length=255), nullable=False),
        sa.Column("account_type", sa.String(length=30), nullable=False, server_default="User"),
        _created_at(),
        sa.UniqueConstraint(
            "user_id",
            "currency_blockchain_key",
            "currency_token_id",
            "account_type",
            name="uq_accounts_owner_currency_type",
        ),
        sa.ForeignKeyConstraint(
            ["currency_blockchain_key", "currency_token_id"],
            ["currencies.blockchain_key", "currencies.token_id"],
            name="fk_accounts_currency",
        ),
        sa.CheckConstraint(
            "account_type IN ('User', 'PlatformEscrow', 'PlatformFees')",
            name="ck_accounts_account_type",
        ),
    )
    op.create_index("ix_accounts_user_id", "accounts", ["user_id"])

    op.create_table(
        "beneficiaries",
        _uuid("id", primary_key=True),
        _uuid("user_id"),
        sa.Column("currency_blockchain_key", sa.String(length=100), nullable=False),
        sa.Column("currency_token_id", sa.String(length=255), nullable=False),
        sa.Column("address", sa.String(length=255), nullable=False),
        sa.Column("label", sa.String(length=100), nullable=True),
        _created_at(),
        sa.UniqueConstraint(
            "user_id",
            "currency_blockchain_key",
            "currency_token_id",
            "address",
            name="uq_beneficiaries_user_currency_address",
        ),
        sa.CheckConstraint("length(address) > 0", name="ck_beneficiaries_address_nonempty"),
    )
    op.create_index("ix_beneficiaries_user_id", "beneficiaries", ["user_id"])

    op.create_table(
        "withdrawals",
        _uuid("id", primary_key=True),
        _uuid("beneficiary_id", False, sa.ForeignKey("beneficiaries.id", ondelete="RESTRICT")),
        _uuid("account_id", False, sa.ForeignKey("accounts.id")),
        _amount("amount"),
        _amount("request_amount"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="Requested"),
        _ts("request_date", nullable=False),
        _amount("sent_amount", nullable=True),
        sa.Column("sent_hash", sa.String(length=255), nullable=True),
        _ts("sent_date"),
        _ts("confirmed_date"),
        _ts("failed_date"),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        _uuid("failure_refund_reviewer_user_id", True),
        _ts("failure_refund_approved_date"),
        _ts("failure_refund_rejected_date"),
        sa.Column("failure_refund_rejection_reason", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("amount > 0", name="ck_withdrawals_amount_positive"),
        sa.CheckConstraint("request_amount > 0", name="ck_withdrawals_request_amount_positive"),
        sa.CheckConstraint(
            "status IN ('Requested', 'Sent', 'Confirmed', 'Failed', 'RefundApproved', 'RefundRejected')",
            name="ck_withdrawals_status",
        ),
        sa.CheckConstraint(
            "status NOT IN ('Sent', 'Confirmed') OR (sent_amount IS NOT NULL AND sent_hash IS NOT NULL)",
            name="ck_withdrawals_sent_fields",
        ),
        sa.CheckConstraint(
            "status <> 'RefundRejected' OR failure_refund_rejection_reason IS NOT NULL",
            name="ck_withdrawals_rejection_reason",
        ),
        sa.UniqueConstraint("sent_hash", name="uq_withdrawals_sent_hash"),
    )
    op.create_index("ix_withdrawals_beneficiary_id", "withdrawals", ["beneficiary_id"])
    op.create_index("ix_withdrawals_status", "withdrawals", ["status"])

    op.create_table(
        "account_mutations",
        _uuid("id", primary_key=True),
        _uuid("account_id", False, sa.ForeignKey("accounts.id", ondelete="RESTRICT")),
        sa.Column("mutation_type", sa.String(length=50), nullable=False),
        _ts("mutation_date", nullable=False),
        _amount("amount"),
        sa.Column("invoice_id", sa.BigInteger(), sa.ForeignKey("invoices.id"), nullable=True),
        _uuid("invoice_payment_id", True, sa.ForeignKey("invoice_payments.id")),
        _uuid("withdrawal_id", True, sa.ForeignKey("withdrawals.id")),
        _uuid("loan_offer_id", True, sa.ForeignKey("loan_offers.id")),
        _uuid("loan_application_id", True, sa.ForeignKey("loan_applications.id")),
        _uuid("loan_id", True, sa.ForeignKey("loans.id")),
        sa.Column("description", sa.String(length=255), nullable=True),
        _created_at(),
        sa.CheckConstraint("amount <> 0", name="ck_account_mutations_amount_nonzero"),
    )
    op.create_index(
        "ix_account_mutations_account_date",
        "account_mutations",
        ["account_id", "mutation_date"],
    )

    op.create_table(
        "loan_valuations",
        _uuid("loan_id", False, sa.ForeignKey("loans.id", ondelete="CASCADE")),
        _uuid("exchange_rate_id", False, sa.ForeignKey("exchange_rates.id")),
        _ts("valuation_date", nullable=False),
        _ratio("ltv_ratio"),
        _amount("collateral_valuation_amount"),
        _created_at(),
        sa.PrimaryKeyConstraint("loan_id", "exchange_rate_id", name="pk_loan_valuations"),
        sa.CheckConstraint("ltv_ratio >= 0", name="ck_loan_valuations_ltv_nonneg"),
        sa.CheckConstraint(
            "collateral_valuation_amount >= 0",
            name="ck_loan_valuations_collateral_nonneg",
        ),
    )
    op.create_index("ix_loan_valuations_loan_date", "loan_valuations", ["loan_id", "valuation_date"])

    op.create_table(
        "loan_liquidations",
        _uuid("loan_id", False, sa.ForeignKey("loans.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("liquidation_initiator", sa.String(length=20), nullable=False),
        _amount("liquidation_target_amount"),
        sa.Column("market_provider", sa.String(length=100), nullable=False),
        sa.Column("market_symbol", sa.String(length=50), nullable=False),
        sa.Column("order_ref", sa.String(length=255), nullable=False),
        _ratio("order_quantity", nullable=True),
        _ratio("order_price", nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="Pending"),
        _ts("order_date", nullable=False),
        sa.Column("acknowledgment", sa.Boolean(), nullable=True),
        _ts("fulfilled_date"),
        _amount("fulfilled_amount", nullable=True),
        _ts("failure_date"),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        _created_at(),
        sa.UniqueConstraint("order_ref", name="uq_loan_liquidations_order_ref"),
        sa.CheckConstraint(
            "liquidation_initiator IN ('Platform', 'Borrower')",
            name="ck_loan_liquidations_initiator",
        ),
        sa.CheckConstraint(
            "status IN ('Pending', 'Fulfilled', 'Failed')",
            name="ck_loan_liquidations_status",
        ),
        sa.CheckConstraint("liquidation_target_amount >= 0", name="ck_loan_liquidations_target_nonneg"),
        sa.CheckConstraint(
            "status <> 'Failed' OR failure_reason IS NOT NULL",
            name="ck_loan_liquidations_failure_reason",
        ),
    )

    op.create_table(
        "loan_repayments",
        _uuid("loan_id", False, sa.ForeignKey("loans.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("repayment_initiator", sa.String(length=20), nullable=False),
        sa.Column("repayment_invoice_id", sa.BigInteger(), sa.ForeignKey("invoices.id"), nullable=False),
        _ts("repayment_invoice_date", nullable=False),
        sa.Column("is_early", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("acknowledgment", sa.Boolean(), nullable=True),
        _ts("concluded_date"),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint(
            "repayment_initiator IN ('Borrower', 'Platform')",
            name="ck_loan_repayments_initiator",
        ),
    )

    op.create_table(
        "audit_logs",
        _uuid("id", primary_key=True),
        _uuid("actor_id", True),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=255), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("summary", sa.String(length=512), nullable=True),
        _created_at(),
    )
    op.create_index("ix_audit_logs_resource", "audit_logs", ["resource_type", "resource_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_resource", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("loan_repayments")
    op.drop_table("loan_liquidations")
    op.drop_index("ix_loan_valuations_loan_date", table_name="loan_valuations")
    op.drop_table("loan_valuations")
    op.drop_index("ix_account_mutations_account_date", table_name="account_mutations")
    op.drop_table("account_mutations")
    op.drop_index("ix_withdrawals_status", table_name="withdrawals")
    op.drop_index("ix_withdrawals_beneficiary_id", table_name="withdrawals")
    op.drop_table("withdrawals")
    op.drop_index("ix_beneficiaries_user_id", table_name="beneficiaries")
    op.drop_table("beneficiaries")
    op.drop_index("ix_accounts_user_id", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("invoice_payments")
    op.drop_index("ix_invoices_wallet", table_name="invoices")
    op.drop_index("ix_invoices_status_due", table_name="invoices")
    op.drop_index("ix_invoices_user_id", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_loans_status", table_name="loans")
    op.drop_index("ix_loans_lender_user_id", table_name="loans")
    op.drop_index("ix_loans_borrower_user_id", table_name="loans")
    op.drop_index("ix_loans_loan_offer_id", table_name="loans")
    op.drop_table("loans")
    op.drop_index("ix_loan_applications_status", table_name="loan_applications")
    op.drop_index("ix_loan_applications_borrower_user_id", table_name="loan_applications")
    op.drop_table("loan_applications")
    op.drop_index("ix_loan_offers_status", table_name="loan_offers")
    op.drop_index("ix_loan_offers_lender_user_id", table_name="loan_offers")
    op.drop_table("loan_offers")
    op.drop_table("platform_configs")
    op.drop_index("ix_exchange_rates_feed_source_date", table_name="exchange_rates")
    op.drop_table("exchange_rates")
    op.drop_table("price_feeds")
    op.drop_table("currencies")
