"""
Redaction utilities for exchange API interactions.

Keys, secrets and request signatures never appear in logs.
"""

from typing import Any

from hedgehog_engine.logging import scrub_signatures

SENSITIVE_HEADER_PATTERNS = {
    "x-mexc-apikey",
    "authorization",
    "apikey",
}

SENSITIVE_PARAM_PATTERNS = {
    "signature",
    "apikey",
    "api_key",
    "secret",
    "token",
}

REDACTED = "[REDACTED]"


def is_sensitive_header(header_name: str) -> bool:
    lower_name = header_name.lower()
    return any(pattern in lower_name for pattern in SENSITIVE_HEADER_PATTERNS)


def is_sensitive_param(name: str) -> bool:
    lower_name = name.lower()
    return any(pattern in lower_name for pattern in SENSITIVE_PARAM_PATTERNS)


def redact_headers(headers: dict[str, str]) -> dict[str, str]:
    """Copy of `headers` with sensitive values replaced by [REDACTED]."""
    return {k: REDACTED if is_sensitive_header(k) else v for k, v in headers.items()}


def redact_params(params: dict[str, Any]) -> dict[str, Any]:
    """Copy of query/body params with the signature and keys removed."""
    return {k: REDACTED if is_sensitive_param(k) else v for k, v in params.items()}


def redact_url(url: str) -> str:
    """Strip a signature query parameter from a URL."""
    return scrub_signatures(url)


def safe_log_request(
    method: str,
    url: str,
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Safe-to-log representation of an HTTP request."""
    return {
        "method": method,
        "url": redact_url(url),
        "headers": redact_headers(headers) if headers else None,
        "params": redact_params(params) if params else None,
    }
