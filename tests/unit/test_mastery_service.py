"""Unit tests for mastery scoring and the deterministic mastery verdict."""
from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from api.models.models import SubjectConfiguration, UserProgress
from api.services.evidence_service import EvidenceRecord, EvidenceStore, EvidenceType
from api.services.mastery_service import (
    CRITERIA,
    NEUTRAL_MASTERY,
    EvidenceSummary,
    MasteryCalculator,
    MasteryRules,
    evaluate_rules,
    round_half_up,
    score_from_evidence,
    summarize_evidence,
)
from api.utils.ttl_cache import TTLCache

NOW = datetime(2026, 3, 1, 10, 0, 0)


def _record(evidence_type, quality=None):
    return EvidenceRecord(
        id="e", user_id="u", lesson_id="l", session_id="s",
        evidence_type=evidence_type, quality_score=quality, confidence=0.9,
        context=None, created_at=NOW,
    )


STRICT_RULES = MasteryRules(min_explanation_quality=70, min_application_attempts=1)
PASSING_SUMMARY = EvidenceSummary(
    correct_answers=4,
    incorrect_answers=1,
    explanations=2,
    applications=2,
    struggles=1,
    avg_explanation_quality=80,
    avg_quality=85,
    struggle_ratio=0.1,
    time_spent_minutes=10,
)
BROKEN_CRITERIA = [
    ("correct_answers", {"correct_answers": 2}),
    ("explanation_quality", {"avg_explanation_quality": 60}),
    ("application_attempts", {"applications": 0}),
    ("overall_quality", {"avg_quality": 59}),
    ("struggle_ratio", {"struggle_ratio": 0.45}),
    ("time_spent", {"time_spent_minutes": 2.5}),
]


@pytest.fixture
def calculator(session_factory, clock):
    return MasteryCalculator(
        session_factory,
        EvidenceStore(session_factory),
        TTLCache(300, clock=clock),
        now=lambda: NOW,
    )


@pytest.mark.unit
class TestScoreFromEvidence:
    def test_answer_ratio_wins(self):
        records = [_record(EvidenceType.CORRECT_ANSWER)] * 3 + [_record(EvidenceType.INCORRECT_ANSWER, 90)]
        assert score_from_evidence(records) == 75

    def test_mean_quality_without_answers(self):
        records = [_record(EvidenceType.EXPLANATION, 70), _record(EvidenceType.APPLICATION, 90)]
        assert score_from_evidence(records) == 80

    def test_half_ratio_rounds_up(self):
        one_of_eight = [_record(EvidenceType.CORRECT_ANSWER)] + [_record(EvidenceType.INCORRECT_ANSWER)] * 7
        five_of_eight = [_record(EvidenceType.CORRECT_ANSWER)] * 5 + [_record(EvidenceType.INCORRECT_ANSWER)] * 3
        assert score_from_evidence(one_of_eight) == 13
        assert score_from_evidence(five_of_eight) == 63

    def test_round_half_up(self):
        assert round_half_up(12.5) == 13
        assert round_half_up(62.5) == 63
        assert round_half_up(0.5) == 1
        assert round_half_up(72.4) == 72

    def test_nothing_to_go_on(self):
        assert score_from_evidence([]) is None
        assert score_from_evidence([_record(EvidenceType.STRUGGLE)]) is None


@pytest.mark.unit
class TestMasteryRules:
    def test_defaults(self):
        rules = MasteryRules.from_mapping(None)
        assert rules.min_correct_answers == 3
        assert rules.min_overall_quality == 60
        assert rules.max_struggle_ratio == 0.4
        assert rules.min_time_spent_minutes == 3

    def test_camel_case_keys_and_partial_override(self):
        rules = MasteryRules.from_mapping({"minCorrectAnswers": 5, "max_struggle_ratio": 0.2, "unknown": 1})
        assert rules.min_correct_answers == 5
        assert rules.max_struggle_ratio == 0.2
        assert rules.min_overall_quality == 60


@pytest.mark.unit
class TestEvaluateRules:
    def test_all_criteria_pass(self):
        records = [_record(EvidenceType.CORRECT_ANSWER, 85)] * 4
        verdict = evaluate_rules(summarize_evidence(records, 10), MasteryRules())
        assert verdict.has_mastered
        assert set(verdict.criteria_met) == set(CRITERIA)
        assert all(verdict.criteria_met.values())

    @pytest.mark.parametrize("criterion, change", BROKEN_CRITERIA, ids=[c for c, _ in BROKEN_CRITERIA])
    def test_any_single_failed_criterion_blocks_mastery(self, criterion, change):
        assert evaluate_rules(PASSING_SUMMARY, STRICT_RULES).has_mastered

        verdict = evaluate_rules(replace(PASSING_SUMMARY, **change), STRICT_RULES)

        assert verdict.has_mastered is False
        failed = [name for name, met in verdict.criteria_met.items() if not met]
        assert failed == [criterion]

    def test_struggle_ratio_counts_every_evidence_type(self):
        records = [_record(EvidenceType.CORRECT_ANSWER, 90)] * 3 + [_record(EvidenceType.STRUGGLE)] * 2
        summary = summarize_evidence(records, 10)
        assert summary.struggle_ratio == pytest.approx(0.4)
        assert evaluate_rules(summary, MasteryRules()).criteria_met["struggle_ratio"] is True

        summary = summarize_evidence(records + [_record(EvidenceType.STRUGGLE)], 10)
        assert evaluate_rules(summary, MasteryRules()).criteria_met["struggle_ratio"] is False

    def test_to_dict_shape(self):
        verdict = evaluate_rules(summarize_evidence([], 0), MasteryRules())
        data = verdict.to_dict()
        assert data["has_mastered"] is False
        assert data["rules_applied"]["min_correct_answers"] == 3


@pytest.mark.unit
class TestMasteryCalculator:
    def test_neutral_without_data(self, calculator, seed):
        assert calculator.compute_mastery(seed["user"], seed["lesson"]) == NEUTRAL_MASTERY

    def test_stored_progress_used_without_evidence(self, calculator, session_factory, seed):
        with session_factory() as db:
            db.add(UserProgress(id="p1", user_id=seed["user"], lesson_id=seed["lesson"], mastery_level=72.4))
            db.commit()
        assert calculator.compute_mastery(seed["user"], seed["lesson"]) == 72

    def test_recording_evidence_drops_cached_score(self, calculator, seed):
        user, lesson = seed["user"], seed["lesson"]
        assert calculator.compute_mastery(user, lesson) == NEUTRAL_MASTERY
        calculator.record_evidence(user, lesson, seed["session"], EvidenceType.CORRECT_ANSWER, 90, 0.9)
        assert calculator.compute_mastery(user, lesson) == 100
        calculator.record_evidence(user, lesson, seed["session"], "incorrect_answer", 40, 0.9)
        assert calculator.compute_mastery(user, lesson) == 50

    def test_evidence_out_of_range_rejected(self, calculator, seed):
        with pytest.raises(ValueError):
            calculator.record_evidence(seed["user"], seed["lesson"], None, EvidenceType.EXPLANATION, 140, 0.9)
        with pytest.raises(ValueError):
            calculator.record_evidence(seed["user"], seed["lesson"], None, EvidenceType.EXPLANATION, 50, 1.5)

    def test_determine_mastery_uses_subject_rules(self, calculator, session_factory, seed):
        with session_factory() as db:
            db.add(SubjectConfiguration(id="cfg", subject="math", grade_level=5,
                                        mastery_rules={"minCorrectAnswers": 2, "minTimeSpentMinutes": 1}))
            db.commit()
        for _ in range(2):
            calculator.record_evidence(seed["user"], seed["lesson"], seed["session"],
                                       EvidenceType.CORRECT_ANSWER, 80, 0.9)

        verdict = calculator.determine_mastery(seed["user"], seed["lesson"], "math", 5, NOW - timedelta(minutes=2))
        assert verdict.has_mastered
        assert verdict.rules_applied.min_correct_answers == 2

        strict = calculator.determine_mastery(seed["user"], seed["lesson"], "math", 6, NOW - timedelta(minutes=2))
        assert not strict.has_mastered
        assert strict.criteria_met["time_spent"] is False

    def test_average_and_subject_mastery(self, calculator, session_factory, seed):
        with session_factory() as db:
            db.add(UserProgress(id="p1", user_id=seed["user"], lesson_id=seed["lesson"], mastery_level=60))
            db.add(UserProgress(id="p2", user_id=seed["user"], lesson_id="other", mastery_level=80))
            db.commit()
        assert calculator.average_mastery(seed["user"]) == 70
        assert calculator.subject_mastery(seed["user"], "math") == 60
        assert calculator.subject_mastery(seed["user"], "history") == NEUTRAL_MASTERY
