from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def normalize_database_url(url: str) -> str:
    """Coerce hosted-Postgres URLs into the ``postgresql+asyncpg`` form.

    asyncpg rejects libpq's ``sslmode`` and hosted providers hand out
    ``postgres://`` URLs, so both are rewritten here.
    """
    url = (url or "").strip()
    if not url:
        return url

    parts = urlsplit(url)
    scheme = parts.scheme
    if scheme in {"postgres", "postgresql", "postgresql+psycopg", "postgresql+psycopg2"}:
        scheme = "postgresql+asyncpg"

    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    sslmode_key = next((key for key in query if key.lower() == "sslmode"), None)
    if sslmode_key is not None:
        mode = query.pop(sslmode_key).lower().strip()
        if "ssl" not in query:
            query["ssl"] = "disable" if mode in {"disable", "allow"} else mode
    ssl_key = next((key for key in query if key.lower() == "ssl"), None)
    if ssl_key is not None:
        value = query.pop(ssl_key).lower().strip()
        if value in {"1", "true", "yes", "on"}:
            value = "require"
        elif value in {"0", "false", "no", "off"}:
            value = "disable"
        query["ssl"] = value

    new_query = urlencode(query, doseq=True)
    return urlunsplit((scheme, parts.netloc, parts.path, new_query, parts.fragment))
