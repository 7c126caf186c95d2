"""Tests for email extraction and normalization."""

import pytest

from prospector.discovery.emails import extract_emails, extract_emails_from_text, normalize_email


class TestNormalizeEmail:
    def test_lowercases_and_trims_punctuation(self):
        assert normalize_email(" <Office@AcmePlumbing.com>. ") == "office@acmeplumbing.com"

    @pytest.mark.parametrize(
        "raw",
        [
            "logo@2x.png",
            "noreply@acmeplumbing.com",
            "do-not-reply@acmeplumbing.com",
            "user@example.com",
            "abc123@sentry-next.wixpress.com",
            "not-an-email",
            "double..dot@acmeplumbing.com",
        ],
    )
    def test_dropped(self, raw):
        assert normalize_email(raw) is None


class TestExtractEmails:
    def test_mailto_first_then_markup(self):
        html = (
            '<p>Write to office@acmeplumbing.com</p>'
            '<a href="mailto:Info@AcmePlumbing.com?subject=Quote">Email us</a>'
            '<img src="/img/logo@2x.png">'
        )
        assert extract_emails(html) == ["info@acmeplumbing.com", "office@acmeplumbing.com"]

    def test_multiple_mailto_recipients(self):
        html = '<a href="mailto:owner@acmeplumbing.com,billing@acmeplumbing.com">mail</a>'
        assert extract_emails(html) == ["owner@acmeplumbing.com", "billing@acmeplumbing.com"]

    def test_percent_encoded_mailto(self):
        assert extract_emails('<a href="mailto:info%40acmeplumbing.com">mail</a>') == [
            "info@acmeplumbing.com"
        ]

    def test_entity_encoded_text(self):
        assert extract_emails_from_text("office&#64;acmeplumbing.com") == ["office@acmeplumbing.com"]

    def test_trailing_sentence_punctuation(self):
        assert extract_emails_from_text("Email office@acmeplumbing.com.") == [
            "office@acmeplumbing.com"
        ]

    def test_nothing_found(self):
        assert extract_emails("") == []
        assert extract_emails("<p>Call us today</p>") == []
