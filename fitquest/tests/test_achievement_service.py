"""
Tests for AchievementService and the achievement catalog.

Tests cover:
1. Requirement predicates and eligibility reasons
2. Awarding (including non-double-award)
3. Pending/claim flow
4. Catalog loading
"""
import json
import pytest

from fitquest.schemas import AchievementDefinition
from fitquest.achievement_catalog import DEFAULT_ACHIEVEMENTS, load_catalog, parse_catalog
from fitquest.services.achievement_service import AchievementService, meets_requirements
from fitquest.services.progress_service import ProgressService
from fitquest.exceptions import AchievementNotFoundException, ValidationException


def definition(id, xp_reward=50, requires_claim=False, **requirements):
    return AchievementDefinition(
        id=id,
        title=id.replace("_", " ").title(),
        xp_reward=xp_reward,
        requires_claim=requires_claim,
        requirements=requirements,
    )


@pytest.fixture
def catalog():
    return [
        definition("xp_100", xp_reward=50, total_xp=100),
        definition("level_2", xp_reward=20, level=2),
        definition("core_2", xp_reward=10, category_level={"category": "core", "level": 2}),
        definition("streak_3", xp_reward=30, requires_claim=True, streak_count=3),
    ]


@pytest.fixture
def service(db_session, catalog):
    return AchievementService(db_session, catalog=catalog)


class TestRequirements:
    """Pure requirement checks"""

    def test_total_xp(self, service, catalog):
        progress = service.progress_service.get_or_create("user-1")
        progress.total_xp = 99
        assert meets_requirements(catalog[0], progress) is False
        progress.total_xp = 100
        assert meets_requirements(catalog[0], progress) is True

    def test_category_level(self, service, catalog):
        progress = service.progress_service.get_or_create("user-1")
        assert meets_requirements(catalog[2], progress) is False

        service.progress_service.add_xp(progress, 60, "workout_completion", category="core")

        assert meets_requirements(catalog[2], progress) is True

    def test_context_counter_missing_is_not_met(self, service, catalog):
        progress = service.progress_service.get_or_create("user-1")

        assert meets_requirements(catalog[3], progress) is False
        assert meets_requirements(catalog[3], progress, {"streak_count": 2}) is False
        assert meets_requirements(catalog[3], progress, {"streak_count": 3}) is True


class TestEligibility:
    """Tests for check_eligibility and is_unlocked"""

    def test_reason_for_unmet_requirement(self, service, catalog):
        result = service.check_eligibility("user-1", catalog[0])

        assert result.eligible is False
        assert result.reason == "XP requirement not met: 0/100"

    def test_eligible(self, service, catalog):
        progress = service.progress_service.get_or_create("user-1")
        progress.total_xp = 150

        assert service.check_eligibility("user-1", catalog[0]).eligible is True

    def test_already_unlocked(self, service, catalog):
        progress = service.progress_service.get_or_create("user-1")
        progress.achievements = ["xp_100"]

        result = service.check_eligibility("user-1", catalog[0])

        assert result.eligible is False
        assert result.reason == "Achievement already unlocked"
        assert service.is_unlocked("user-1", "xp_100") is True

    def test_is_unlocked_without_ledger(self, service):
        assert service.is_unlocked("nobody", "xp_100") is False


class TestAwardAchievements:
    """Tests for award_achievements"""

    def test_awards_once(self, service, catalog):
        """Awarding the same achievement twice grants its XP exactly once"""
        progress = service.progress_service.get_or_create("user-1")

        first = service.award_achievements(progress, [catalog[0]])
        second = service.award_achievements(progress, [catalog[0]])

        assert [a.id for a in first.awarded] == ["xp_100"]
        assert first.total_xp_awarded == 50
        assert second.awarded == []
        assert second.already_unlocked == ["xp_100"]
        assert second.total_xp_awarded == 0
        assert progress.total_xp == 50
        assert progress.achievements == ["xp_100"]

    def test_award_uses_achievement_source(self, service, catalog):
        progress = service.progress_service.get_or_create("user-1")

        service.award_achievements(progress, [catalog[1]])

        assert progress.xp_history[-1]["source"] == "achievement"
        assert progress.xp_history[-1]["amount"] == 20

    def test_award_removes_from_pending(self, service, catalog):
        progress = service.progress_service.get_or_create("user-1")
        progress.pending_achievements = ["streak_3"]

        service.award_achievements(progress, [catalog[3]])

        assert progress.pending_achievements == []
        assert "streak_3" in progress.achievements


class TestEvaluate:
    """Automatic evaluation after an award"""

    def test_awards_everything_eligible(self, service):
        progress = service.progress_service.get_or_create("user-1")
        service.progress_service.add_xp(progress, 100, "workout_completion")

        result, pending = service.evaluate(progress)

        assert {a.id for a in result.awarded} == {"xp_100", "level_2"}
        assert result.total_xp_awarded == 70
        assert pending == []
        assert progress.total_xp == 170

    def test_cascading_awards(self, db_session):
        """The xp_60 reward pushes the user to level 2, which unlocks level_2"""
        service = AchievementService(db_session, catalog=[
            definition("xp_60", xp_reward=50, total_xp=60),
            definition("level_2", xp_reward=20, level=2),
        ])
        progress = service.progress_service.get_or_create("user-1")
        service.progress_service.add_xp(progress, 60, "workout_completion")

        result, _ = service.evaluate(progress)

        assert [a.id for a in result.awarded] == ["xp_60", "level_2"]
        assert result.leveled_up is True
        assert progress.total_xp == 130

    def test_requires_claim_goes_pending(self, service):
        progress = service.progress_service.get_or_create("user-1")

        result, pending = service.evaluate(progress, {"streak_count": 3})

        assert result.awarded == []
        assert pending == ["streak_3"]
        assert progress.pending_achievements == ["streak_3"]
        assert progress.total_xp == 0

    def test_pending_not_repeated(self, service):
        progress = service.progress_service.get_or_create("user-1")
        service.evaluate(progress, {"streak_count": 3})

        _, pending = service.evaluate(progress, {"streak_count": 4})

        assert pending == []


class TestClaim:
    """Two-step claim flow"""

    def test_claim_pending(self, service):
        progress = service.progress_service.get_or_create("user-1")
        service.evaluate(progress, {"streak_count": 3})

        result = service.claim(progress, "streak_3")

        assert [a.id for a in result.awarded] == ["streak_3"]
        assert progress.total_xp == 30
        assert progress.pending_achievements == []

    def test_claim_already_claimed(self, service):
        progress = service.progress_service.get_or_create("user-1")
        service.evaluate(progress, {"streak_count": 3})
        service.claim(progress, "streak_3")

        result = service.claim(progress, "streak_3")

        assert result.already_unlocked == ["streak_3"]
        assert progress.total_xp == 30

    def test_claim_unknown(self, service):
        progress = service.progress_service.get_or_create("user-1")

        with pytest.raises(AchievementNotFoundException):
            service.claim(progress, "nope")

    def test_claim_not_eligible(self, service):
        progress = service.progress_service.get_or_create("user-1")

        with pytest.raises(ValidationException):
            service.claim(progress, "xp_100")


class TestStatus:
    """Tests for get_all_with_status"""

    def test_progress_and_flags(self, service):
        progress = service.progress_service.get_or_create("user-1")
        progress.total_xp = 50
        progress.achievements = ["core_2"]

        statuses = {status.id: status for status in service.get_all_with_status(progress)}

        assert statuses["xp_100"].progress == 50
        assert statuses["xp_100"].unlocked is False
        assert statuses["core_2"].unlocked is True
        assert statuses["core_2"].progress == 100
        assert statuses["streak_3"].requires_claim is True


class TestCatalog:
    """Catalog loading"""

    def test_default_catalog_is_valid(self):
        catalog = load_catalog()

        assert len(catalog) == len(DEFAULT_ACHIEVEMENTS)
        assert {"streak_7", "global_level_5", "xp_1000", "core_level_5"} <= {d.id for d in catalog}

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "achievements.json"
        path.write_text(json.dumps([
            {"id": "first", "title": "First", "xp_reward": 5, "requirements": {"total_xp": 1}},
        ]))

        catalog = load_catalog(str(path))

        assert [d.id for d in catalog] == ["first"]

    def test_duplicate_ids_rejected(self):
        raw = [
            {"id": "dup", "title": "A", "xp_reward": 1, "requirements": {}},
            {"id": "dup", "title": "B", "xp_reward": 1, "requirements": {}},
        ]

        with pytest.raises(ValidationException):
            parse_catalog(raw)
