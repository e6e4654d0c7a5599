"""URL validation and normalisation for navigation requests."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Optional
from urllib.parse import urlsplit, urlunsplit

from tabagent.config import AgentSettings
from tabagent.errors import RequestValidationError

DEFAULT_BLOCKED_SCHEMES = frozenset(
    {"file", "chrome", "chrome-extension", "moz-extension", "javascript", "vbscript", "about", "resource"}
)
SUSPICIOUS_PORTS = frozenset({1337, 31337, 4444, 5555})

_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*):")
_HOSTNAME_RE = re.compile(
    r"^(?=.{1,253}$)(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?)(?:\.[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?)*$"
)
_IPV4_RE = re.compile(r"^\d{1,3}(?:\.\d{1,3}){3}$")
_QUERY_SCHEME_RE = re.compile(r"(?:^|[?&])(?:javascript|vbscript|data)=", re.IGNORECASE)
_PATH_SCHEME_RE = re.compile(r"/(?:javascript|vbscript|data):", re.IGNORECASE)


@dataclass(frozen=True)
class UrlPolicy:
    allowed_schemes: FrozenSet[str] = frozenset({"http", "https"})
    blocked_schemes: FrozenSet[str] = field(default=DEFAULT_BLOCKED_SCHEMES)
    max_length: int = 2048
    allow_devtools: bool = False

    @classmethod
    def from_settings(cls, settings: AgentSettings) -> "UrlPolicy":
        return cls(
            allowed_schemes=frozenset(settings.allowed_url_schemes),
            blocked_schemes=frozenset(settings.blocked_url_schemes),
            max_length=settings.max_url_length,
            allow_devtools=settings.allow_devtools_urls,
        )


def _has_scheme(value: str) -> bool:
    match = _SCHEME_RE.match(value)
    if not match:
        return False
    # "localhost:8080/path" parses as scheme "localhost"
    rest = value[match.end():]
    return not re.match(r"^\d+(?:/|$)", rest)


def validate_url(raw: Any, policy: Optional[UrlPolicy] = None) -> str:
    """Return the normalised URL or raise :class:`RequestValidationError`."""

    policy = policy or UrlPolicy()
    if not isinstance(raw, str) or not raw.strip():
        raise RequestValidationError("URL must be a non-empty string")
    value = raw.strip()
    if len(value) > policy.max_length:
        raise RequestValidationError(f"URL too long (max {policy.max_length} characters)")

    if not _has_scheme(value):
        value = f"https://{value.lstrip('/')}"
    scheme = _SCHEME_RE.match(value).group(1).lower()  # type: ignore[union-attr]

    if scheme == "devtools":
        if not policy.allow_devtools:
            raise RequestValidationError("Blocked protocol: devtools:")
        return value
    if scheme in policy.blocked_schemes:
        raise RequestValidationError(f"Blocked protocol: {scheme}:")
    if scheme == "data":
        raise RequestValidationError("Data URLs are not allowed")
    if scheme not in policy.allowed_schemes:
        raise RequestValidationError(f"Unsupported protocol: {scheme}:")

    try:
        parts = urlsplit(value)
        port = parts.port
    except ValueError as exc:
        raise RequestValidationError(f"Invalid URL format: {exc}") from None
    hostname = parts.hostname or ""
    if not hostname:
        raise RequestValidationError("URL must include a hostname")
    if not (_HOSTNAME_RE.match(hostname) or _IPV4_RE.match(hostname) or ":" in hostname):
        raise RequestValidationError(f"Invalid hostname: {hostname}")

    if _QUERY_SCHEME_RE.search(parts.query) or _PATH_SCHEME_RE.search(parts.path):
        raise RequestValidationError("URL contains suspicious patterns")
    if "%25" in value:
        raise RequestValidationError("URL contains double-encoded characters")
    if port in SUSPICIOUS_PORTS:
        raise RequestValidationError(f"URL uses a suspicious port: {port}")

    return normalize_url(value)


def normalize_url(value: str) -> str:
    """Lowercase the host and drop a trailing slash except on the root path."""

    parts = urlsplit(value)
    netloc = parts.netloc
    if parts.hostname:
        userinfo, _, hostport = netloc.rpartition("@")
        hostport = hostport.lower()
        netloc = f"{userinfo}@{hostport}" if userinfo else hostport
    path = parts.path or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"
    return urlunsplit((parts.scheme.lower(), netloc, path, parts.query, parts.fragment))
