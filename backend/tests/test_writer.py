"""Tests for cover letter / outreach generation and its text helpers.

All LLM calls are mocked.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from app.db.tables import Achievement, DeveloperSkill, PointsTransaction, Skill, SkillLevel
from app.models import RoleInfo
from app.services.points import PointsError
from app.services.writer import (
    LetterValidationError,
    build_cache_key,
    count_words,
    derive_achievements,
    enforce_word_count,
    generate_letter,
    pick_core_skills,
    rank_role_keywords,
    sanitize_input,
    validate_letter_output,
)
from tests.conftest import GOOD_LETTER, letter_request, make_developer


def _mock_llm(text):
    llm = AsyncMock()
    llm.call = AsyncMock(return_value=text)
    llm.last_provider = "openai"
    return llm


# ===========================================================================
# validate_letter_output
# ===========================================================================


class TestValidateLetterOutput:

    def test_good_letter_is_valid(self):
        check = validate_letter_output(GOOD_LETTER)
        assert check.valid
        assert check.errors == []
        assert check.word_count == count_words(GOOD_LETTER)

    def test_empty_letter(self):
        check = validate_letter_output("   ")
        assert not check.valid
        assert check.errors == ["Letter content is empty"]

    def test_missing_greeting(self):
        check = validate_letter_output(GOOD_LETTER.replace("Dear Hiring Team", "Hello"))
        assert not check.valid
        assert any("greeting" in e for e in check.errors)

    def test_markdown_is_an_error(self):
        check = validate_letter_output(GOOD_LETTER.replace("Senior Backend Engineer", "**Senior Backend Engineer**"))
        assert "Letter contains markdown formatting that should be removed" in check.errors

    @pytest.mark.parametrize("placeholder", ["[Company]", "[role]", "XYZ"])
    def test_placeholders_are_errors(self, placeholder):
        check = validate_letter_output(GOOD_LETTER.replace("Northwind Analytics.", f"{placeholder}."))
        assert not check.valid

    def test_placeholder_words_need_word_boundaries(self):
        """'abc' inside a longer word is not a placeholder."""
        check = validate_letter_output(GOOD_LETTER.replace("confidence", "confidence (see Tabcore)"))
        assert check.valid

    def test_soft_issues_are_warnings(self):
        text = "Dear team, this is an awesome fit"
        check = validate_letter_output(text)
        assert check.valid
        assert "Letter should include a professional closing" in check.warnings
        assert "Letter may be too simple (less than 3 sentences)" in check.warnings
        assert 'Consider replacing informal word: "awesome"' in check.warnings
        assert "Letter should reference the specific position or role" in check.warnings
        assert any(w.startswith("Letter is short") for w in check.warnings)

    def test_word_bounds_depend_on_request_type(self):
        words = " ".join(["word"] * 200)
        text = f"Dear team. This role is great. {words}. Sincerely, Dana"
        assert any("long" in w for w in validate_letter_output(text, "outreach").warnings)
        assert not any("long" in w for w in validate_letter_output(text, "coverLetter").warnings)


class TestTextHelpers:

    def test_sanitize_input(self):
        assert sanitize_input("  Acme\x00 \n\t Corp ") == "Acme Corp"
        assert sanitize_input(None) == ""

    def test_enforce_word_count_short_text_untouched(self):
        assert enforce_word_count("One two three.", 10) == "One two three."

    def test_enforce_word_count_ends_on_sentence(self):
        text = "One two three four five six seven eight. Nine ten eleven twelve."
        assert enforce_word_count(text, 9) == "One two three four five six seven eight."

    def test_enforce_word_count_appends_ellipsis(self):
        text = "One. Two three four five six seven eight nine ten eleven"
        assert enforce_word_count(text, 6) == "One. Two three four five six..."

    def test_rank_role_keywords_dedupes_case_insensitively(self):
        role = RoleInfo(
            title="Backend Engineer",
            ai_key_skills=["Python"],
            skills=["python", "Django"],
            requirements=["Docker"],
            description="Deploy on AWS",
        )
        assert rank_role_keywords(role) == ["Python", "Django", "Docker", "AWS"]

    def test_rank_role_keywords_respects_limit(self):
        role = RoleInfo(title="x", skills=[f"skill-{i}" for i in range(12)])
        assert len(rank_role_keywords(role, limit=8)) == 8


class TestPromptInputs:

    def test_core_skills_strongest_first(self, db, developer):
        for name, level in [("Go", SkillLevel.BEGINNER), ("Python", SkillLevel.EXPERT), ("SQL", SkillLevel.ADVANCED)]:
            skill = Skill(name=name)
            db.add(skill)
            developer.skills.append(DeveloperSkill(skill=skill, level=level))
        db.commit()

        assert pick_core_skills(developer) == ["Python", "SQL", "Go"]
        assert pick_core_skills(developer, limit=1) == ["Python"]

    def test_achievements_prefer_request_then_profile(self, db, developer):
        developer.achievements.append(Achievement(title="AWS Certified", description="Solutions Architect"))
        db.commit()

        assert derive_achievements(developer, ["Shipped v2", "  "]) == ["Shipped v2"]
        assert derive_achievements(developer, []) == ["AWS Certified: Solutions Architect"]

    def test_cache_key_is_sanitized(self):
        request = letter_request(hiring_manager="Jo O'Neil")
        key = build_cache_key("dev-1", request, "coverLetter")
        assert key == (
            "cover-letter:dev-1:Senior_Backend_Engineer:Northwind_Analytics:"
            "coverLetter:formal:Jo_O_Neil:none"
        )


# ===========================================================================
# generate_letter
# ===========================================================================


@pytest.mark.asyncio
class TestGenerateLetter:

    async def test_success_charges_points_and_awards_xp(self, db, developer, fake_redis):
        mock_llm = _mock_llm(GOOD_LETTER)

        with patch("app.services.writer.get_llm_client", return_value=mock_llm):
            result = await generate_letter(db, developer, letter_request(), "coverLetter")

        assert result.letter == GOOD_LETTER
        assert result.cached is False
        assert result.provider == "openai"
        assert result.points_spent == 1
        assert developer.points_used == 1
        assert developer.total_xp == 20

        tx = db.scalars(select(PointsTransaction)).one()
        assert tx.spend_type == "COVER_LETTER"
        assert tx.source_id == "1742118233"

        prompt = mock_llm.call.call_args.kwargs["prompt"]
        assert "Northwind Analytics" in prompt
        assert "Senior Backend Engineer" in prompt
        assert "Dana Developer" in prompt
        assert mock_llm.call.call_args.kwargs["max_tokens"] == 700

    async def test_cache_hit_is_free(self, db, developer, fake_redis):
        mock_llm = _mock_llm(GOOD_LETTER)
        request = letter_request()

        with patch("app.services.writer.get_llm_client", return_value=mock_llm):
            await generate_letter(db, developer, request, "coverLetter")
            second = await generate_letter(db, developer, request, "coverLetter")

        assert second.cached is True
        assert second.points_spent == 0
        assert second.letter == GOOD_LETTER
        assert mock_llm.call.call_count == 1
        assert developer.points_used == 1

        key = build_cache_key(developer.id, request, "coverLetter")
        assert fake_redis.ttls[key] == 600
        assert json.loads(fake_redis.store[key])["provider"] == "openai"

    async def test_outreach_uses_its_own_spend_type(self, db, developer):
        mock_llm = _mock_llm(GOOD_LETTER)

        with patch("app.services.writer.get_llm_client", return_value=mock_llm):
            result = await generate_letter(db, developer, letter_request(), "outreach")

        assert result.points_spent == 1
        assert db.scalars(select(PointsTransaction)).one().spend_type == "OUTREACH_MESSAGE"
        assert developer.total_xp == 10

    async def test_insufficient_points_skips_llm(self, db):
        broke = make_developer(db, points=0)
        mock_llm = _mock_llm(GOOD_LETTER)

        with patch("app.services.writer.get_llm_client", return_value=mock_llm):
            with pytest.raises(PointsError) as exc:
                await generate_letter(db, broke, letter_request(), "coverLetter")

        assert exc.value.status_code == 402
        mock_llm.call.assert_not_called()

    async def test_invalid_letter_is_rejected_without_charge(self, db, developer):
        mock_llm = _mock_llm("## Cover Letter\n\nHi [Company], I want the job.")

        with patch("app.services.writer.get_llm_client", return_value=mock_llm):
            with pytest.raises(LetterValidationError) as exc:
                await generate_letter(db, developer, letter_request(), "coverLetter")

        assert exc.value.status_code == 502
        assert any("greeting" in e for e in exc.value.errors)
        assert any("[company]" in e for e in exc.value.errors)
        assert developer.points_used == 0
        assert db.scalars(select(PointsTransaction)).all() == []

    async def test_llm_failure_is_502(self, db, developer):
        with patch("app.services.writer.get_llm_client", return_value=_mock_llm(None)):
            with pytest.raises(LetterValidationError) as exc:
                await generate_letter(db, developer, letter_request(), "coverLetter")
        assert exc.value.status_code == 502
        assert exc.value.errors == []
