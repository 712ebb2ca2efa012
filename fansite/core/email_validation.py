"""
Email address validation and normalization.

Pure functions with no I/O: the same rules run for every subscribe and
unsubscribe request, and the server-side result is authoritative.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional
import email_validator
from email_validator import EmailNotValidError

EMAIL_MAX_LENGTH = 254

# Error codes
EMAIL_REQUIRED = "validation_email_required"
EMAIL_TOO_LONG = "validation_email_too_long"
EMAIL_FORMAT = "validation_email_format"
EMAIL_DOMAIN = "validation_email_domain"

# Error messages
MSG_REQUIRED = "Email is required"
MSG_REQUIRED_STRING = "Email is required and must be a string"
MSG_TOO_LONG = "Email is too long"
MSG_INVALID = "Please enter a valid email address"
MSG_DOMAIN = "This email domain is not allowed"

# Frequent domain typos and their corrections
COMMON_DOMAIN_TYPOS = {
    "gmial.com": "gmail.com",
    "gmai.com": "gmail.com",
    "gmail.co": "gmail.com",
    "gnail.com": "gmail.com",
    "hotmial.com": "hotmail.com",
    "hotmai.com": "hotmail.com",
    "yahooo.com": "yahoo.com",
    "yaho.com": "yahoo.com",
    "outlok.com": "outlook.com",
    "iclod.com": "icloud.com",
}


@dataclass(frozen=True)
class EmailValidationResult:
    is_valid: bool
    sanitized: str
    error: Optional[str] = None
    code: Optional[str] = None


def normalize_email(raw: str) -> str:
    """Trim surrounding whitespace and lowercase"""
    return raw.strip().lower()


def validate_email(
    raw,
    blocked_domains: Optional[Iterable[str]] = None,
    allowed_domains: Optional[Iterable[str]] = None,
    max_length: int = EMAIL_MAX_LENGTH,
) -> EmailValidationResult:
    """
    Validate and sanitize an email address.

    Rules, in order:
    - must be a non-empty string after trimming
    - at most max_length characters
    - syntax accepted by email-validator (no DNS lookup); reserved and
      special-use domains such as .local or .invalid are rejected
    - domain not blocked, and inside the allowlist when one is configured

    Args:
        raw: Untrusted input (may be any type)
        blocked_domains: Domains that are always rejected
        allowed_domains: If non-empty, only these domains are accepted
        max_length: Maximum length of the sanitized address

    Returns:
        EmailValidationResult with the sanitized (trimmed, lowercased) address
    """
    if not isinstance(raw, str):
        return EmailValidationResult(False, "", MSG_REQUIRED_STRING, EMAIL_REQUIRED)

    sanitized = normalize_email(raw)

    if not sanitized:
        return EmailValidationResult(False, sanitized, MSG_REQUIRED, EMAIL_REQUIRED)

    if len(sanitized) > max_length:
        return EmailValidationResult(False, sanitized, MSG_TOO_LONG, EMAIL_TOO_LONG)

    try:
        checked = email_validator.validate_email(sanitized, check_deliverability=False)
    except EmailNotValidError:
        return EmailValidationResult(False, sanitized, MSG_INVALID, EMAIL_FORMAT)

    sanitized = checked.normalized
    domain = checked.domain

    blocked = {d.strip().lower() for d in (blocked_domains or [])}
    if domain in blocked:
        return EmailValidationResult(False, sanitized, MSG_DOMAIN, EMAIL_DOMAIN)

    allowed = {d.strip().lower() for d in (allowed_domains or [])}
    if allowed and domain not in allowed:
        return EmailValidationResult(False, sanitized, MSG_DOMAIN, EMAIL_DOMAIN)

    return EmailValidationResult(True, sanitized)


def suggest_email_corrections(email: str) -> List[str]:
    """
    Suggest corrected addresses for well-known domain typos.

    >>> suggest_email_corrections("fan@gmial.com")
    ['fan@gmail.com']
    """
    if "@" not in email:
        return []
    local_part, domain = normalize_email(email).rsplit("@", 1)
    correction = COMMON_DOMAIN_TYPOS.get(domain)
    return [f"{local_part}@{correction}"] if correction else []
