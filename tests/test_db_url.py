import pytest

from app.db.url import normalize_database_url, redact_database_url


@pytest.mark.parametrize(
    "scheme",
    ["postgres", "postgresql", "postgresql+asyncpg", "postgresql+psycopg2", "postgresql+psycopg"],
)
def test_postgres_schemes_use_async_psycopg(scheme) -> None:
    assert normalize_database_url(f"{scheme}://u:p@db:5432/ledger") == "postgresql+psycopg://u:p@db:5432/ledger"


@pytest.mark.parametrize(
    ("ssl", "expected"),
    [("false", "disable"), ("verify-full", "verify-full"), ("true", "require")],
)
def test_ssl_flag_becomes_sslmode(ssl, expected) -> None:
    url = normalize_database_url(f"postgresql://db/ledger?SSL={ssl}&application_name=ledger")
    assert url == f"postgresql+psycopg://db/ledger?application_name=ledger&sslmode={expected}"


def test_explicit_sslmode_wins() -> None:
    url = normalize_database_url("postgresql://db/ledger?sslmode=verify-ca&ssl=false")
    assert url == "postgresql+psycopg://db/ledger?sslmode=verify-ca"


def test_blank_url_is_left_alone() -> None:
    assert normalize_database_url("  ") == ""


def test_redaction_hides_password_only() -> None:
    assert redact_database_url("postgres://ledger:s3cret@db:5432/ledger") == (
        "postgresql+psycopg://ledger:***@db:5432/ledger"
    )
    assert redact_database_url("postgresql://db/ledger") == "postgresql+psycopg://db/ledger"
