"""Email syntax helpers shared by extraction, validation and the knowledge store."""

from __future__ import annotations

import re

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
DOMAIN_PATTERN = re.compile(
    r"^(?=.{1,253}$)(?!-)[a-z0-9-]{1,63}(?<!-)(\.(?!-)[a-z0-9-]{1,63}(?<!-))*\.[a-z]{2,63}$"
)


def is_valid_email_format(email: str | None) -> bool:
    if not email or ".." in email:
        return False
    return bool(EMAIL_PATTERN.match(email))


def email_domain(email: str) -> str:
    return email.rsplit("@", 1)[-1].lower() if "@" in email else ""


def is_valid_domain_syntax(domain: str) -> bool:
    return bool(DOMAIN_PATTERN.match(domain.lower()))
