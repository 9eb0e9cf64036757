"""Key normalization for email, domain and business-name matching.

All functions are pure. Keys produced here are only ever compared with
other keys produced here, never shown to users.
"""

import re

# Checked in order; the first suffix that matches is stripped on each pass
COMMON_TLDS = (
    "com",
    "net",
    "org",
    "io",
    "ai",
    "co",
    "us",
    "uk",
    "ca",
    "app",
    "dev",
    "info",
    "biz",
    "xyz",
)

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_email(email: str) -> str:
    """Lowercase and trim an email address."""
    return email.lower().strip()


def extract_domain(email: str) -> str | None:
    """Return the part after the last ``@``, or None when there is none."""
    at_index = email.rfind("@")
    if at_index == -1:
        return None
    return email[at_index + 1 :].lower().strip()


def normalize_key(value: str) -> str:
    """Lowercase, trim and drop everything outside ``[a-z0-9]``."""
    return _NON_ALNUM.sub("", value.lower().strip())


def _strip_common_tlds(value: str) -> str:
    result = value
    while True:
        suffix = next((tld for tld in COMMON_TLDS if result.endswith(tld)), None)
        if suffix is None or len(suffix) >= len(result):
            return result
        result = result[: -len(suffix)]


def domain_key(domain: str) -> str | None:
    """Canonicalize a domain for coarse cross-TLD comparison.

    The suffix list is applied to the punctuation-free key, so a name
    that merely ends in a listed string is stripped as well::

        >>> domain_key("acmecorp.io")
        'acmecorp'
        >>> domain_key("beststudio.io")
        'beststud'
    """
    normalized = normalize_key(domain)
    if not normalized:
        return None
    return _strip_common_tlds(normalized)
