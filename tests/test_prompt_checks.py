"""Tests for advisory prompt checks."""

import logging

from novelagent.prompt_checks import check_prompt, log_prompt_warnings

LONG_TAIL = ", ".join(["detailed background"] * 40)


def _has(warnings, fragment):
    return any(fragment in warning for warning in warnings)


class TestCheckPrompt:
    """Tests for individual heuristics."""

    def test_empty_prompt(self):
        """Test that a missing prompt produces no warnings."""
        assert check_prompt(None) == []
        assert check_prompt("") == []

    def test_clean_prompt(self):
        """Test that a well-formed long prompt passes."""
        prompt = f"1girl, {{smile}}, 2::red eyes::, {LONG_TAIL}"
        assert check_prompt(prompt) == []

    def test_explicit_without_censor_suppressor(self):
        """Test the censoring artifact warning."""
        warnings = check_prompt(f"rating:explicit, {{x}}, {LONG_TAIL}")
        assert _has(warnings, "-1::censored::")
        assert not _has(warnings, "FIRST tag")

    def test_explicit_not_first(self):
        """Test that the explicit rating should lead the prompt."""
        warnings = check_prompt(f"1girl, rating:explicit, -1::censored::, {LONG_TAIL}")
        assert _has(warnings, "FIRST tag")

    def test_no_emphasis(self):
        """Test the missing emphasis warning."""
        assert _has(check_prompt(f"1girl, {LONG_TAIL}"), "No emphasis")

    def test_redundant_quality_tags(self):
        """Test that quality-toggle tags are flagged."""
        warnings = check_prompt(f"masterpiece, very aesthetic, {{x}}, {LONG_TAIL}")
        assert _has(warnings, "masterpiece, very aesthetic")

    def test_year_tag_with_reference(self):
        """Test that references suggest a year tag."""
        prompt = f"{{x}}, {LONG_TAIL}"
        assert _has(check_prompt(prompt, has_reference=True), "year XXXX")
        assert not _has(check_prompt(prompt + ", year 2023", has_reference=True), "year XXXX")
        assert not _has(check_prompt(prompt), "year XXXX")

    def test_short_prompt(self):
        """Test the minimum length warning."""
        assert _has(check_prompt("{1girl}"), "only 7 chars")

    def test_from_behind_conflict(self):
        """Test that front-view tags conflict with from behind."""
        warnings = check_prompt(f"{{x}}, from behind, nipples, navel, {LONG_TAIL}")
        assert _has(warnings, "[navel, nipples]")

    def test_from_behind_without_front_tags(self):
        """Test that tags outside the front-view list do not trigger the conflict."""
        warnings = check_prompt(f"{{x}}, from_behind, cleavage, collarbone, {LONG_TAIL}")
        assert not _has(warnings, "Spatial conflict")


class TestLogPromptWarnings:
    """Tests for warning logging."""

    def test_logs_once(self, caplog):
        """Test that all warnings are logged in a single record."""
        with caplog.at_level(logging.WARNING, logger="novelagent.prompt_checks"):
            warnings = log_prompt_warnings("1girl")
        assert len(warnings) >= 2
        assert len(caplog.records) == 1
        assert "Prompt warnings" in caplog.records[0].getMessage()
