from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

ASYNC_DRIVER = "postgresql+psycopg"
_POSTGRES_SCHEMES = {"postgres", "postgresql", "postgresql+asyncpg", "postgresql+psycopg2"}
_SSL_OFF = {"0", "false", "no", "off", "disable"}
_SSL_VERIFY = {"require", "verify-ca", "verify-full"}


def _sslmode_for(value: str) -> str:
    value = value.lower().strip()
    if value in _SSL_OFF:
        return "disable"
    if value in _SSL_VERIFY:
        return value
    return "require"


def normalize_database_url(url: str) -> str:
    """Point any postgres URL at the async psycopg driver; ``ssl=`` becomes ``sslmode=``."""
    url = (url or "").strip()
    if not url:
        return url

    parts = urlsplit(url)
    scheme = ASYNC_DRIVER if parts.scheme in _POSTGRES_SCHEMES else parts.scheme

    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    ssl_key = next((key for key in query if key.lower() == "ssl"), None)
    if ssl_key is not None:
        ssl_value = query.pop(ssl_key)
        query.setdefault("sslmode", _sslmode_for(ssl_value))

    return urlunsplit((scheme, parts.netloc, parts.path, urlencode(query, doseq=True), parts.fragment))


def redact_database_url(url: str) -> str:
    parts = urlsplit(normalize_database_url(url))
    if parts.password is None:
        return urlunsplit(parts)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    netloc = f"{parts.username}:***@{host}" if parts.username else f"***@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
