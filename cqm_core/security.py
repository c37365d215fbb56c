"""Credential redaction for log output and error messages."""

from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SECRET_FLAGS = frozenset({"-p", "--password", "--http-pass"})
_SENSITIVE_KEYS = ("password", "passwd", "secret", "token", "authorization", "apikey", "api_key")
_MASK = "***"


def is_sensitive_key(key: str) -> bool:
    lower = key.lower()
    return any(marker in lower for marker in _SENSITIVE_KEYS)


def redact_url(value: str) -> str:
    """Mask ``user:pass@`` credentials and secret query parameters."""
    if "://" not in value:
        return value
    parsed = urlsplit(value)
    netloc = parsed.netloc
    if parsed.password:
        netloc = netloc.replace(f":{parsed.password}@", f":{_MASK}@")
    query = parsed.query
    if query:
        pairs = parse_qsl(query, keep_blank_values=True)
        if any(is_sensitive_key(key) for key, _ in pairs):
            query = urlencode(
                [(key, _MASK if is_sensitive_key(key) else item) for key, item in pairs],
                safe="*",
            )
    if netloc == parsed.netloc and query == parsed.query:
        return value
    return urlunsplit((parsed.scheme, netloc, parsed.path, query, parsed.fragment))


def redact_command_for_log(command: list[str]) -> list[str]:
    """Mask secret flag values, ``key=value`` secrets and values of secret ``-s`` keys."""
    redacted: list[str] = []
    mask_next = False
    expect_key = False
    secret_property = False
    for item in command:
        if mask_next:
            redacted.append(_MASK)
            mask_next = False
            continue
        if expect_key:
            # cqcfg property name
            redacted.append(item)
            secret_property = is_sensitive_key(item)
            expect_key = False
            continue
        lower = item.lower()
        if lower in _SECRET_FLAGS:
            redacted.append(item)
            mask_next = True
            continue
        if item == "-s":
            redacted.append(item)
            expect_key = True
            continue
        if item == "-v":
            redacted.append(item)
            mask_next = secret_property
            secret_property = False
            continue
        key, sep, _ = item.partition("=")
        if sep and "://" not in key and is_sensitive_key(key):
            redacted.append(f"{key}={_MASK}")
            continue
        redacted.append(redact_url(item))
    return redacted
