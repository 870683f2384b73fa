"""Unit tests for risk scoring module."""

import pytest

from student_analytics.models import StudentRecord
from student_analytics.risk import (
    RISK_RULES,
    RiskEngine,
    calculate_risk_score,
    get_risk_factors,
    get_risk_level,
)


def make_record(student_id, marks, attendance, **kwargs):
    return StudentRecord(student_id=student_id, name=f"Student {student_id}", marks=marks, attendance=attendance, **kwargs)


def test_rule_table():
    """Test each rule in isolation."""
    rules = {rule.name: rule for rule in RISK_RULES}

    assert rules['Low Score'].check(39.9, 100) == True
    assert rules['Low Score'].check(40, 100) == False
    assert rules['Very Low Score'].check(29, 100) == True
    assert rules['Low Attendance'].check(100, 59) == True
    assert rules['Very Low Attendance'].check(100, 50) == False
    assert rules['Combined Risk'].check(49, 69) == True
    assert rules['Combined Risk'].check(49, 70) == False
    assert rules['Critical Risk'].check(34, 59) == True
    assert rules['Critical Risk'].check(35, 59) == False


def test_calculate_risk_score():
    """Test additive weights with the 1.0 cap."""
    # Every rule fires, sum is capped
    assert calculate_risk_score(25, 45) == 1.0

    assert calculate_risk_score(85, 95) == 0.0
    assert calculate_risk_score(38, 80) == pytest.approx(0.4)
    assert calculate_risk_score(45, 65) == pytest.approx(0.7)
    assert calculate_risk_score(55, 55) == pytest.approx(0.3)
    assert calculate_risk_score(55, 45) == pytest.approx(0.8)


def test_get_risk_level():
    """Test level thresholds on the raw score."""
    assert get_risk_level(1.0) == 'high'
    assert get_risk_level(0.7) == 'high'
    assert get_risk_level(0.4 + 0.3) == 'high'
    assert get_risk_level(0.69) == 'medium'
    assert get_risk_level(0.4) == 'medium'
    assert get_risk_level(0.39) == 'low'
    assert get_risk_level(0.2) == 'low'
    assert get_risk_level(0.19) == 'none'
    assert get_risk_level(0.0) == 'none'

    thresholds = {'low': 0.1, 'medium': 0.5, 'high': 0.9}
    assert get_risk_level(0.7, thresholds) == 'medium'


def test_get_risk_factors():
    """One band per metric plus the combined factor."""
    assert get_risk_factors(25, 45) == [
        'Very low score (<30%)',
        'Very low attendance (<50%)',
        'Combined low performance',
    ]
    assert get_risk_factors(35, 55) == [
        'Low score (<40%)',
        'Low attendance (<60%)',
        'Combined low performance',
    ]
    assert get_risk_factors(45, 65) == [
        'Below passing threshold',
        'Below recommended attendance',
        'Combined low performance',
    ]
    assert get_risk_factors(45, 90) == ['Below passing threshold']
    assert get_risk_factors(85, 95) == []


def test_assess():
    """Test the scenario records."""
    engine = RiskEngine()

    alice = engine.assess(make_record('S1', 25, 45))
    assert alice.risk_score == 100
    assert alice.risk_level == 'high'

    bob = engine.assess(make_record('S2', 85, 95))
    assert bob.risk_score == 0
    assert bob.risk_level == 'none'
    assert bob.risk_factors == []

    assert engine.assess(make_record('S3', 55, 55)).risk_score == 30
    assert engine.assess(make_record('S3', 55, 55)).risk_level == 'low'
    assert engine.assess(make_record('S4', 38, 80)).risk_level == 'medium'


def test_risk_score_monotonic():
    """Risk never drops when marks or attendance drop."""
    engine = RiskEngine()
    values = list(range(100, -1, -5))

    for attendance in values:
        scores = [engine.assess(make_record('S', marks, attendance)).risk_score for marks in values]
        assert scores == sorted(scores)

    for marks in values:
        scores = [engine.assess(make_record('S', marks, attendance)).risk_score for attendance in values]
        assert scores == sorted(scores)


def test_risk_score_bounds():
    """Test that risk scores are always within 0-100 bounds."""
    engine = RiskEngine()
    for marks in (0, 29.9, 50, 100):
        for attendance in (0, 49.9, 70, 100):
            assert 0 <= engine.assess(make_record('S', marks, attendance)).risk_score <= 100


def test_assess_all_preserves_records():
    """Annotated records keep their fields and order."""
    records = [
        make_record('S1', 25, 45, subject='Math', extra={'credits': 4}),
        make_record('S2', 85, 95, subject='Art'),
    ]

    assessed = RiskEngine().assess_all(records)

    assert [r.student_id for r in assessed] == ['S1', 'S2']
    assert assessed[0].subject == 'Math'
    assert assessed[0].extra == {'credits': 4}
    assert assessed[0].risk_level == 'high'
    assert assessed[1].risk_level == 'none'

    # Re-assessing annotated records is allowed
    again = RiskEngine().assess_all(assessed)
    assert again[0].risk_score == 100


@pytest.fixture
def assessed_records():
    return RiskEngine().assess_all([
        make_record('A', 45, 65),   # 70, high
        make_record('B', 25, 45),   # 100, high
        make_record('C', 38, 80),   # 40, medium
        make_record('D', 45, 65),   # 70, high
        make_record('E', 85, 95),   # 0, none
    ])


def test_aggregates(assessed_records):
    """Test counts, buckets and rankings."""
    engine = RiskEngine()

    assert engine.get_at_risk_count(assessed_records) == 4

    buckets = engine.partition_by_level(assessed_records)
    assert [r.student_id for r in buckets['high']] == ['A', 'B', 'D']
    assert [r.student_id for r in buckets['medium']] == ['C']
    assert buckets['low'] == []
    assert [r.student_id for r in buckets['none']] == ['E']

    summary = engine.summarize(assessed_records)
    assert summary.total == 5
    assert summary.high == 3
    assert summary.medium == 1
    assert summary.low == 0
    assert summary.none == 1
    assert summary.at_risk_total == 4

    # Ties keep their original order
    ranked = engine.get_at_risk_students(assessed_records)
    assert [r.student_id for r in ranked] == ['B', 'A', 'D', 'C']
    assert [r.student_id for r in engine.get_high_risk_students(assessed_records)] == ['B', 'A', 'D']
    assert [r.student_id for r in engine.get_medium_risk_students(assessed_records)] == ['C']


def test_risk_insights(assessed_records):
    """Test risk insight rules and their order."""
    engine = RiskEngine()

    titles = [insight.title for insight in engine.get_risk_insights(assessed_records)]
    assert titles == ['High-Risk Students Detected', 'Elevated Risk Level']

    calm = engine.assess_all([make_record('X', 90, 95), make_record('Y', 80, 85)])
    assert [i.title for i in engine.get_risk_insights(calm)] == ['Low Risk Profile']

    # No records means no high or medium risk either
    assert [i.title for i in engine.get_risk_insights([])] == ['Low Risk Profile']


def test_custom_thresholds():
    """Thresholds can be configured per engine."""
    engine = RiskEngine(thresholds={'low': 0.2, 'medium': 0.4, 'high': 0.9})
    assessment = engine.assess(make_record('S', 45, 65))

    assert assessment.risk_score == 70
    assert assessment.risk_level == 'medium'
