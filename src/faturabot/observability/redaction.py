"""Redaction helpers for safe logging. All external data must pass through these.

What never reaches the logs: WhatsApp phones and ERP contact numbers,
CNPJs (raw 14-digit runs or `XX.XXX.XXX/XXXX-XX`), billing e-mails, the ERP
bearer token and the Evolution `apikey`. Rendered ERP request lines keep
their path and account ids but lose the `cpfCnpj` and `numeroTelefone`
query values. Callers that need to correlate a phone across log lines use
`hash_identifier` instead.
"""

import re
from typing import Any

# Patterns that should never appear in logs
_CNPJ_PATTERN = re.compile(r"\b\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}\b")
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_BEARER_PATTERN = re.compile(r"(?i)bearer\s+[A-Za-z0-9._\-+/=]+")
_SECRET_PARAM_PATTERN = re.compile(
    r"(?i)\b(apikey|api_key|token|access_token|password|senha|cpfcnpj|numerotelefone)=([^&\s]+)"
)

_REDACTED = "[REDACTED]"


def redact_string(value: str) -> str:
    """Redact PII and credential patterns from a string."""
    result = _BEARER_PATTERN.sub(f"Bearer {_REDACTED}", value)
    result = _SECRET_PARAM_PATTERN.sub(lambda m: f"{m.group(1)}={_REDACTED}", result)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    result = _CNPJ_PATTERN.sub(_REDACTED, result)
    result = _PHONE_PATTERN.sub(_REDACTED, result)
    return result


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # For dicts, only log keys (structure), never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    # For any other type, only log type name
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}
