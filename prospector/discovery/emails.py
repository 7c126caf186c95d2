"""Email extraction from page markup and snippets."""

from __future__ import annotations

import html as html_lib
import re
from urllib.parse import unquote

from bs4 import BeautifulSoup

from prospector.validation.syntax import email_domain, is_valid_email_format

EMAIL_REGEX = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".css", ".js")
IGNORED_LOCAL_PARTS = ("noreply", "no-reply", "donotreply", "do-not-reply")
PLACEHOLDER_DOMAINS = (
    "example.com",
    "example.org",
    "example.net",
    "domain.com",
    "email.com",
    "yourdomain.com",
    "sentry.io",
    "wixpress.com",
    "sentry-next.wixpress.com",
)


def normalize_email(raw: str) -> str | None:
    """Lowercase and trim one email-shaped string. None when it should be dropped."""
    email = unquote(raw).strip().strip(".,;:!?()[]<>'\"").lower()
    if not is_valid_email_format(email):
        return None
    if email.endswith(IMAGE_SUFFIXES):
        return None
    local = email.split("@", 1)[0]
    if local in IGNORED_LOCAL_PARTS:
        return None
    domain = email_domain(email)
    if any(domain == d or domain.endswith("." + d) for d in PLACEHOLDER_DOMAINS):
        return None
    return email


def _dedupe(values: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered = []
    for value in values:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


def extract_emails_from_text(text: str) -> list[str]:
    found = []
    for match in EMAIL_REGEX.findall(html_lib.unescape(text or "")):
        email = normalize_email(match)
        if email:
            found.append(email)
    return _dedupe(found)


def extract_emails(html: str) -> list[str]:
    """mailto: links first, then anything email-shaped in the markup."""
    soup = BeautifulSoup(html or "", "html.parser")
    found: list[str] = []
    for link in soup.select('a[href^="mailto:"], a[href^="MAILTO:"]'):
        href = link.get("href")
        if not isinstance(href, str):
            continue
        address = href.split(":", 1)[1].split("?", 1)[0]
        for part in address.split(","):
            email = normalize_email(part)
            if email:
                found.append(email)
    found.extend(extract_emails_from_text(html or ""))
    return _dedupe(found)
