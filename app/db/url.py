from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

ASYNC_SCHEME = "postgresql+psycopg"
_POSTGRES_SCHEMES = {"postgres", "postgresql", "postgresql+asyncpg", "postgresql+psycopg2"}
_SSL_DISABLED = {"0", "false", "no", "off", "disable"}
_SSL_MODES = {"require", "verify-ca", "verify-full"}


def normalize_database_url(url: str) -> str:
    """Rewrite a Postgres URL for the async psycopg driver.

    Hosted providers hand out ``postgres://`` URLs with ``?ssl=true``; psycopg
    wants the ``postgresql+psycopg`` scheme and ``sslmode`` instead.
    """
    url = (url or "").strip()
    if not url:
        return url

    parts = urlsplit(url)
    scheme = ASYNC_SCHEME if parts.scheme in _POSTGRES_SCHEMES else parts.scheme

    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    ssl_key = next((key for key in query if key.lower() == "ssl"), None)
    if ssl_key is not None:
        ssl_value = query.pop(ssl_key).lower().strip()
        if "sslmode" not in query:
            if ssl_value in _SSL_DISABLED:
                query["sslmode"] = "disable"
            elif ssl_value in _SSL_MODES:
                query["sslmode"] = ssl_value
            else:
                query["sslmode"] = "require"

    return urlunsplit((scheme, parts.netloc, parts.path, urlencode(query, doseq=True), parts.fragment))
