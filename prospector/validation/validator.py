"""Validation Step: scores raw sightings into email candidates.

DNS answers are cached per domain for the validator's lifetime, so one entity
with ten addresses on the same domain costs one lookup. SMTP probing is off
unless explicitly enabled: many servers treat RCPT probes as abuse.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import socket
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urlparse

import dns.asyncresolver
import dns.exception
import dns.resolver

from prospector.config.settings import TimeoutConfig, ValidationConfig
from prospector.models import (
    CostCategory,
    EmailCandidate,
    EmailSighting,
    Entity,
    EvidenceKind,
    ValidationSignals,
)
from prospector.telemetry.errors import ErrorCode, emit_structured_error
from prospector.validation.scoring import rationale_for, score_signals, strictness_floor
from prospector.validation.syntax import email_domain, is_valid_domain_syntax, is_valid_email_format

logger = logging.getLogger(__name__)


@dataclass
class DomainFacts:
    resolves: bool = False
    mx_hosts: list[str] = field(default_factory=list)


class DomainInspector(Protocol):
    async def inspect(self, domain: str) -> DomainFacts: ...


class MailboxProber(Protocol):
    async def probe(self, email: str, mx_host: str) -> bool | None: ...


class DnsDomainInspector:
    """MX and A lookups through dnspython's async resolver."""

    def __init__(self, timeouts: TimeoutConfig | None = None) -> None:
        timeouts = timeouts or TimeoutConfig()
        self._resolver = dns.asyncresolver.Resolver()
        self._resolver.timeout = timeouts.dns_timeout_s
        self._resolver.lifetime = timeouts.dns_timeout_s

    async def _resolve(self, domain: str, rdtype: str) -> list[Any]:
        try:
            answer = await self._resolver.resolve(domain, rdtype)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        except dns.exception.DNSException as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.DNS_LOOKUP_FAILED,
                message=f"{type(exc).__name__}: {exc}",
                suppressed=True,
                details={"domain": domain, "rdtype": rdtype},
            )
            return []
        return list(answer)

    async def inspect(self, domain: str) -> DomainFacts:
        mx_records = await self._resolve(domain, "MX")
        mx_hosts = [
            str(r.exchange).rstrip(".")
            for r in sorted(mx_records, key=lambda r: r.preference)
            if str(r.exchange).rstrip(".")
        ]
        resolves = bool(mx_hosts) or bool(await self._resolve(domain, "A"))
        return DomainFacts(resolves=resolves, mx_hosts=mx_hosts)


class SmtpProber:
    """RCPT TO probe run in a worker thread. None means inconclusive."""

    def __init__(self, config: ValidationConfig, timeouts: TimeoutConfig | None = None) -> None:
        self._config = config
        self._timeout = (timeouts or TimeoutConfig()).smtp_timeout_s

    def _probe_sync(self, email: str, mx_host: str) -> bool | None:
        try:
            with smtplib.SMTP(timeout=self._timeout) as server:
                server.connect(mx_host, 25)
                server.ehlo(self._config.helo_domain)
                server.mail(self._config.probe_sender)
                code, _ = server.rcpt(email)
        except (smtplib.SMTPException, socket.timeout, OSError) as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.SMTP_PROBE_FAILED,
                message=f"{type(exc).__name__}: {exc}",
                suppressed=True,
                details={"mx_host": mx_host},
            )
            return None
        if code == 250:
            return True
        if code == 550:
            return False
        return None

    async def probe(self, email: str, mx_host: str) -> bool | None:
        return await asyncio.to_thread(self._probe_sync, email, mx_host)


class ValidationSink(Protocol):
    def record(
        self, category: CostCategory, description: str, unit_cost: float, quantity: int = 1
    ) -> Any: ...

    def add_evidence(
        self, kind: EvidenceKind, source: str, content: str, url: str | None = None
    ) -> Any: ...


def _website_domain(entity: Entity | None) -> str:
    if entity is None or not entity.official_website:
        return ""
    website = entity.official_website
    host = urlparse(website if "://" in website else f"https://{website}").netloc
    return host.lower().split(":", 1)[0].removeprefix("www.")


def _distinct_hosts(urls: list[str]) -> set[str]:
    """Hosts behind a set of URLs, so two pages of one site count once."""
    hosts = set()
    for url in urls:
        host = urlparse(url if "://" in url else f"https://{url}").netloc
        host = host.lower().split(":", 1)[0].removeprefix("www.")
        hosts.add(host or url)
    return hosts


class EmailValidator:
    """Validates and scores sightings for one entity."""

    def __init__(
        self,
        config: ValidationConfig | None = None,
        timeouts: TimeoutConfig | None = None,
        strictness: str = "moderate",
        inspector: DomainInspector | None = None,
        prober: MailboxProber | None = None,
        recorder: ValidationSink | None = None,
        unit_cost: float = 0.0,
    ) -> None:
        self._config = config or ValidationConfig()
        self._timeouts = timeouts or TimeoutConfig()
        self._strictness = strictness
        self._inspector = inspector or DnsDomainInspector(self._timeouts)
        if prober is None and self._config.smtp_probe:
            prober = SmtpProber(self._config, self._timeouts)
        self._prober = prober
        self._recorder = recorder
        self._unit_cost = unit_cost
        self._domain_cache: dict[str, DomainFacts] = {}

    async def _facts(self, domain: str) -> DomainFacts:
        cached = self._domain_cache.get(domain)
        if cached is None:
            cached = await self._inspector.inspect(domain)
            self._domain_cache[domain] = cached
        return cached

    async def validate(
        self, sightings: list[EmailSighting], entity: Entity | None = None
    ) -> list[EmailCandidate]:
        """Group sightings by address, score each, drop those under the strictness floor."""
        grouped: dict[str, list[EmailSighting]] = {}
        for sighting in sightings:
            grouped.setdefault(sighting.email.strip().lower(), []).append(sighting)

        website_domain = _website_domain(entity)
        floor = strictness_floor(self._strictness)
        candidates = []
        for email, group in grouped.items():
            candidate = await self._score(email, group, website_domain)
            if self._recorder is not None:
                self._recorder.record(CostCategory.VALIDATION, f"validate: {email}", self._unit_cost)
                self._recorder.add_evidence(
                    EvidenceKind.VALIDATION,
                    "email_validator",
                    candidate.model_dump_json(),
                    url=candidate.source_url,
                )
            if candidate.confidence >= floor:
                candidates.append(candidate)

        candidates.sort(key=lambda c: c.confidence, reverse=True)
        logger.info(
            "emails_validated",
            extra={
                "entity_key": entity.registry_number if entity else None,
                "sightings": len(sightings),
                "candidates": len(candidates),
                "strictness": self._strictness,
            },
        )
        return candidates

    async def _score(
        self, email: str, group: list[EmailSighting], website_domain: str
    ) -> EmailCandidate:
        primary = next((s for s in group if s.source.authoritative), group[0])
        urls: list[str] = []
        for sighting in group:
            if sighting.source_url not in urls:
                urls.append(sighting.source_url)

        format_valid = is_valid_email_format(email)
        if not format_valid:
            signals = ValidationSignals()
        else:
            domain = email_domain(email)
            facts = (
                await self._facts(domain) if is_valid_domain_syntax(domain) else DomainFacts()
            )
            smtp_ok = False
            if self._prober is not None and facts.mx_hosts:
                smtp_ok = await self._prober.probe(email, facts.mx_hosts[0]) is True
            authoritative = any(s.source.authoritative for s in group) or bool(
                website_domain
                and (domain == website_domain or domain.endswith("." + website_domain))
            )
            signals = ValidationSignals(
                format_valid=True,
                domain_valid=facts.resolves,
                mx_record_exists=bool(facts.mx_hosts),
                smtp_check=smtp_ok,
                source_authoritative=authoritative,
                multiple_sources=len(_distinct_hosts(urls)) >= 2,
            )

        return EmailCandidate(
            email=email,
            source=primary.source,
            source_url=primary.source_url,
            confidence=score_signals(signals),
            rationale=rationale_for(signals),
            validation_signals=signals,
            sources=urls,
        )
