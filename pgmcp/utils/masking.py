"""Hide secrets in PostgreSQL connection URLs before they reach logs or the CLI."""

from urllib.parse import urlsplit

MASK = "***"
UNPARSEABLE = "<unparseable-url>"

# libpq / asyncpg connection parameters that carry a secret value
_SECRET_PARAMS = frozenset({"password", "sslpassword"})


def _mask_query(query: str) -> str:
    pairs = []
    for pair in query.split("&"):
        name, sep, _ = pair.partition("=")
        if sep and name.lower() in _SECRET_PARAMS:
            pair = f"{name}={MASK}"
        pairs.append(pair)
    return "&".join(pairs)


def mask_database_url(url: str) -> str:
    """
    Mask the password of a connection URL, keeping everything else readable.

    The user, host, port and database stay visible so log lines still say
    which database they are about. Passwords given in the authority or as
    ``password``/``sslpassword`` query parameters are replaced.

    Examples:
        >>> mask_database_url("postgres://app:s3cret@db:5432/main")
        'postgres://app:***@db:5432/main'
        >>> mask_database_url("postgresql:///main?host=/run/pg&password=x")
        'postgresql:///main?host=/run/pg&password=***'
        >>> mask_database_url("not a url")
        '<unparseable-url>'
    """
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return UNPARSEABLE
    if not parts.scheme or not (parts.netloc or parts.path):
        return UNPARSEABLE

    netloc = parts.netloc
    if parts.password is not None:
        host = parts.hostname or ""
        if ":" in host:
            host = f"[{host}]"
        if port is not None:
            host = f"{host}:{port}"
        netloc = f"{parts.username or ''}:{MASK}@{host}"

    query = _mask_query(parts.query) if parts.query else ""
    if netloc == parts.netloc and query == parts.query:
        return url

    has_authority = url[len(parts.scheme) + 1 :].startswith("//")
    masked = f"{parts.scheme}:{'//' if has_authority else ''}{netloc}{parts.path}"
    if query:
        masked += f"?{query}"
    if parts.fragment:
        masked += f"#{parts.fragment}"
    return masked
