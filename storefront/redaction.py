"""Redaction of card data, emails, and backend credentials in tool output and logs."""
import re

# Backend keys and session tokens
_CREDENTIAL_PATTERNS = [
    re.compile(r"(?i)(api[_-]?key|apikey|secret|password|access_token)\s*[=:]\s*\S+"),
    re.compile(r"eyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]+"),  # JWTs
    re.compile(r"(?i)bearer\s+[A-Za-z0-9._-]{20,}"),
]

# 13-19 digit card numbers, optionally grouped by spaces or dashes
_CARD_NUMBER_PATTERN = re.compile(r"\b(?:\d[ -]?){12,18}\d\b")

_CVV_PATTERN = re.compile(r"(?i)\b(cvv|cvc)\b(\W{0,3})\d{3,4}")

# Tool arguments that carry card data
_CARD_FIELDS = {"card_number"}
_SECRET_FIELDS = {"cvv", "password"}


def redact_card_number(number: str) -> str:
    """Keep only the last four digits."""
    digits = re.sub(r"\D", "", number)
    if len(digits) < 4:
        return "****"
    return f"**** **** **** {digits[-4:]}"


def redact_email(email: str) -> str:
    if "@" not in email:
        return email
    local, domain = email.split("@", 1)
    return f"{local[:1]}***@{domain}"


def redact_arguments(args: dict) -> dict:
    """Copy of tool arguments safe to write to the debug log."""
    redacted = {}
    for key, value in args.items():
        if key in _CARD_FIELDS and isinstance(value, str):
            redacted[key] = redact_card_number(value)
        elif key in _SECRET_FIELDS:
            redacted[key] = "***"
        elif isinstance(value, dict):
            redacted[key] = redact_arguments(value)
        else:
            redacted[key] = value
    return redacted


def sanitize_output(text: str, max_chars: int = 50000) -> str:
    """Mask credentials, card numbers, and CVVs; cap the length."""
    for pattern in _CREDENTIAL_PATTERNS:
        text = pattern.sub("[REDACTED]", text)

    text = _CARD_NUMBER_PATTERN.sub("[CARD REDACTED]", text)
    text = _CVV_PATTERN.sub(r"\1\2***", text)

    if len(text) > max_chars:
        text = text[:max_chars] + f"\n\n[... truncated at {max_chars} chars]"

    return text
