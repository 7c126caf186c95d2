"""Tests for signal scoring, strictness floors and the email validator."""

import pytest
from conftest import MX_OK, FakeInspector

from prospector.config.settings import ValidationConfig
from prospector.ledger.costs import CostRecorder
from prospector.models import CostCategory, EmailSighting, Entity, SourceCategory, ValidationSignals
from prospector.validation.scoring import rationale_for, score_signals, strictness_floor
from prospector.validation.validator import EmailValidator

ENTITY = Entity(
    registry_number="123456",
    contractor_name="Acme Plumbing",
    official_website="https://www.acmeplumbing.com",
)

OFFICE_OFFICIAL = EmailSighting(
    email="office@acmeplumbing.com",
    source=SourceCategory.OFFICIAL_WEBSITE,
    source_url="https://acmeplumbing.com/contact",
)
OFFICE_DIRECTORY = EmailSighting(
    email="Office@AcmePlumbing.com",
    source=SourceCategory.DIRECTORY,
    source_url="https://www.yelp.com/biz/acme-plumbing-phoenix",
)
GMAIL = EmailSighting(
    email="acmeplumbingaz@gmail.com",
    source=SourceCategory.WEB,
    source_url="https://forum.example.org/thread/1",
)


class AcceptingProber:
    def __init__(self) -> None:
        self.probes: list[tuple[str, str]] = []

    async def probe(self, email: str, mx_host: str) -> bool | None:
        self.probes.append((email, mx_host))
        return True


def _validator(strictness="moderate", inspector=None, **kwargs):
    return EmailValidator(
        config=ValidationConfig(smtp_probe=False),
        strictness=strictness,
        inspector=inspector or FakeInspector({"acmeplumbing.com": MX_OK}),
        **kwargs,
    )


class TestScoring:
    def test_weights(self):
        signals = ValidationSignals(
            format_valid=True,
            domain_valid=True,
            mx_record_exists=True,
            smtp_check=True,
            source_authoritative=True,
            multiple_sources=True,
        )
        assert score_signals(signals) == 100
        assert score_signals(ValidationSignals(format_valid=True)) == 15

    def test_invalid_format_scores_zero(self):
        signals = ValidationSignals(format_valid=False, source_authoritative=True)
        assert score_signals(signals) == 0
        assert rationale_for(signals).startswith("Rejected")

    def test_rationale_lists_missing_signals(self):
        text = rationale_for(ValidationSignals(format_valid=True, mx_record_exists=True))
        assert text.startswith("Passed: valid format, MX record present")
        assert "Missing: domain resolves" in text

    def test_floors(self):
        assert strictness_floor("strict") == 50
        assert strictness_floor("moderate") == 20
        assert strictness_floor("lenient") == 0
        assert strictness_floor("unknown") == 20


class TestEmailValidator:
    @pytest.mark.asyncio
    async def test_corroborated_official_email_scores_high(self):
        candidates = await _validator().validate([OFFICE_OFFICIAL, OFFICE_DIRECTORY], ENTITY)
        assert len(candidates) == 1
        office = candidates[0]
        assert office.email == "office@acmeplumbing.com"
        assert office.confidence == 90
        assert office.tier == "high"
        assert office.source == SourceCategory.OFFICIAL_WEBSITE
        assert office.sources == [OFFICE_OFFICIAL.source_url, OFFICE_DIRECTORY.source_url]
        assert office.validation_signals.multiple_sources

    @pytest.mark.asyncio
    async def test_website_domain_counts_as_authoritative(self):
        sighting = EmailSighting(
            email="sales@acmeplumbing.com",
            source=SourceCategory.WEB,
            source_url="https://news.example.org/acme",
        )
        candidates = await _validator().validate([sighting], ENTITY)
        assert candidates[0].confidence == 75
        assert candidates[0].tier == "medium"
        assert candidates[0].validation_signals.source_authoritative

    @pytest.mark.asyncio
    async def test_floor_drops_weak_candidates(self):
        moderate = await _validator().validate([OFFICE_OFFICIAL, GMAIL], ENTITY)
        assert [c.email for c in moderate] == ["office@acmeplumbing.com"]

        lenient = await _validator("lenient").validate([OFFICE_OFFICIAL, GMAIL], ENTITY)
        assert [c.email for c in lenient] == ["office@acmeplumbing.com", "acmeplumbingaz@gmail.com"]
        assert lenient[1].confidence == 15
        assert lenient[1].tier == "low"

    @pytest.mark.asyncio
    async def test_strict_floor(self):
        sighting = EmailSighting(
            email="owner@acmeplumbing.com",
            source=SourceCategory.DIRECTORY,
            source_url="https://www.yelp.com/biz/acme",
        )
        entity = ENTITY.model_copy(update={"official_website": None})
        candidates = await _validator("strict").validate([sighting], entity)
        # format + domain + MX = 50
        assert [c.confidence for c in candidates] == [50]

    @pytest.mark.asyncio
    async def test_malformed_address_scores_zero(self):
        sighting = EmailSighting(
            email="office@@acmeplumbing", source=SourceCategory.WEB, source_url="https://x.example.org"
        )
        inspector = FakeInspector()
        candidates = await _validator("lenient", inspector=inspector).validate([sighting])
        assert candidates[0].confidence == 0
        assert inspector.calls == []

    @pytest.mark.asyncio
    async def test_dns_answers_cached_per_domain(self):
        inspector = FakeInspector({"acmeplumbing.com": MX_OK})
        sightings = [
            OFFICE_OFFICIAL,
            EmailSighting(
                email="billing@acmeplumbing.com",
                source=SourceCategory.OFFICIAL_WEBSITE,
                source_url="https://acmeplumbing.com/about",
            ),
        ]
        await _validator(inspector=inspector).validate(sightings, ENTITY)
        assert inspector.calls == ["acmeplumbing.com"]

    @pytest.mark.asyncio
    async def test_smtp_probe_adds_signal(self):
        prober = AcceptingProber()
        candidates = await _validator(prober=prober).validate([OFFICE_OFFICIAL], ENTITY)
        assert candidates[0].validation_signals.smtp_check
        assert candidates[0].confidence == 85
        assert prober.probes == [("office@acmeplumbing.com", "mx1.acmeplumbing.com")]

    @pytest.mark.asyncio
    async def test_costs_and_evidence_recorded(self):
        recorder = CostRecorder()
        await _validator(recorder=recorder, unit_cost=0.0).validate([OFFICE_OFFICIAL, GMAIL], ENTITY)
        assert [i.category for i in recorder.items] == [CostCategory.VALIDATION] * 2
        assert len(recorder.evidence) == 2

    @pytest.mark.asyncio
    async def test_sorted_by_confidence(self):
        sightings = [
            GMAIL,
            OFFICE_OFFICIAL,
            EmailSighting(
                email="sales@acmeplumbing.com",
                source=SourceCategory.WEB,
                source_url="https://news.example.org/acme",
            ),
        ]
        candidates = await _validator("lenient").validate(sightings, ENTITY)
        assert [c.confidence for c in candidates] == [75, 75, 15]
        scores = [c.confidence for c in candidates]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_pages_of_one_site_do_not_corroborate(self):
        same_site = EmailSighting(
            email="office@acmeplumbing.com",
            source=SourceCategory.OFFICIAL_WEBSITE,
            source_url="https://www.acmeplumbing.com/about",
        )
        candidates = await _validator().validate([OFFICE_OFFICIAL, same_site], ENTITY)
        office = candidates[0]
        assert office.sources == [OFFICE_OFFICIAL.source_url, same_site.source_url]
        assert not office.validation_signals.multiple_sources
        assert office.confidence == 75
