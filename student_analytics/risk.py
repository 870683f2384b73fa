"""Risk scoring logic: weighted rule table over marks and attendance."""

import logging
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional

from student_analytics.config import DEFAULT_RISK_THRESHOLDS
from student_analytics.models import (
    AT_RISK_LEVELS,
    RISK_LEVELS,
    AssessedRecord,
    Insight,
    RiskAssessment,
    RiskSummary,
    StudentRecord,
)

logger = logging.getLogger(__name__)


class RiskRule(NamedTuple):
    name: str
    weight: float
    check: Callable[[float, float], bool]


# Rules are additive: several can fire for the same record
RISK_RULES = (
    RiskRule('Low Score', 0.4, lambda marks, attendance: marks < 40),
    RiskRule('Very Low Score', 0.6, lambda marks, attendance: marks < 30),
    RiskRule('Low Attendance', 0.3, lambda marks, attendance: attendance < 60),
    RiskRule('Very Low Attendance', 0.5, lambda marks, attendance: attendance < 50),
    RiskRule('Combined Risk', 0.7, lambda marks, attendance: marks < 50 and attendance < 70),
    RiskRule('Critical Risk', 0.9, lambda marks, attendance: marks < 35 and attendance < 60),
)


def calculate_risk_score(marks: float, attendance: float, rules: Iterable[RiskRule] = RISK_RULES) -> float:
    """
    Sum the weights of every rule that fires, capped at 1.0.

    Args:
        marks: Marks percentage (0-100)
        attendance: Attendance percentage (0-100)

    Returns:
        Raw risk score (0-1)
    """
    score = sum(rule.weight for rule in rules if rule.check(marks, attendance))
    return min(1.0, score)


def get_risk_level(raw_score: float, thresholds: Optional[Dict[str, float]] = None) -> str:
    """
    Categorize a raw risk score into high/medium/low/none.

    Args:
        raw_score: Unrounded risk score (0-1)
        thresholds: Dict with 'low', 'medium', 'high' cut-offs

    Returns:
        Risk level string
    """
    thresholds = thresholds or DEFAULT_RISK_THRESHOLDS
    if raw_score >= thresholds.get('high', 0.7):
        return 'high'
    elif raw_score >= thresholds.get('medium', 0.4):
        return 'medium'
    elif raw_score >= thresholds.get('low', 0.2):
        return 'low'
    else:
        return 'none'


def get_risk_factors(marks: float, attendance: float) -> List[str]:
    """
    Explain a classification: one score band, one attendance band,
    and a combined factor when both are breached.
    """
    factors = []

    if marks < 30:
        factors.append('Very low score (<30%)')
    elif marks < 40:
        factors.append('Low score (<40%)')
    elif marks < 50:
        factors.append('Below passing threshold')

    if attendance < 50:
        factors.append('Very low attendance (<50%)')
    elif attendance < 60:
        factors.append('Low attendance (<60%)')
    elif attendance < 70:
        factors.append('Below recommended attendance')

    if marks < 50 and attendance < 70:
        factors.append('Combined low performance')

    return factors


class RiskEngine:
    """Stateless rule-based risk classifier."""

    def __init__(self, thresholds: Optional[Dict[str, float]] = None, rules: Iterable[RiskRule] = RISK_RULES):
        self.thresholds = dict(thresholds or DEFAULT_RISK_THRESHOLDS)
        self.rules = tuple(rules)

    def assess(self, record: StudentRecord) -> RiskAssessment:
        raw_score = calculate_risk_score(record.marks, record.attendance, self.rules)
        return RiskAssessment(
            risk_score=int(round(raw_score * 100)),
            risk_level=get_risk_level(raw_score, self.thresholds),
            risk_factors=get_risk_factors(record.marks, record.attendance),
        )

    def assess_all(self, records: Iterable[StudentRecord]) -> List[AssessedRecord]:
        """Annotate every record with its risk assessment, preserving order."""
        assessed = []
        for record in records:
            data = record.model_dump()
            data.update(self.assess(record).model_dump())
            assessed.append(AssessedRecord(**data))
        logger.debug("Assessed %d records", len(assessed))
        return assessed

    @staticmethod
    def get_at_risk_count(records: Iterable[AssessedRecord]) -> int:
        return sum(1 for record in records if record.risk_level in AT_RISK_LEVELS)

    @staticmethod
    def partition_by_level(records: Iterable[AssessedRecord]) -> Dict[str, List[AssessedRecord]]:
        buckets: Dict[str, List[AssessedRecord]] = {level: [] for level in RISK_LEVELS}
        for record in records:
            buckets.setdefault(record.risk_level, []).append(record)
        return buckets

    def summarize(self, records: Iterable[AssessedRecord]) -> RiskSummary:
        buckets = self.partition_by_level(records)
        counts = {level: len(buckets[level]) for level in RISK_LEVELS}
        return RiskSummary(
            total=sum(len(bucket) for bucket in buckets.values()),
            at_risk_total=counts['high'] + counts['medium'],
            **counts,
        )

    @staticmethod
    def get_at_risk_students(records: Iterable[AssessedRecord]) -> List[AssessedRecord]:
        """High and medium risk records, highest risk score first (stable)."""
        at_risk = [record for record in records if record.risk_level in AT_RISK_LEVELS]
        return sorted(at_risk, key=lambda record: record.risk_score, reverse=True)

    @staticmethod
    def get_high_risk_students(records: Iterable[AssessedRecord]) -> List[AssessedRecord]:
        high = [record for record in records if record.risk_level == 'high']
        return sorted(high, key=lambda record: record.risk_score, reverse=True)

    @staticmethod
    def get_medium_risk_students(records: Iterable[AssessedRecord]) -> List[AssessedRecord]:
        medium = [record for record in records if record.risk_level == 'medium']
        return sorted(medium, key=lambda record: record.risk_score, reverse=True)

    def get_risk_insights(self, records: Iterable[AssessedRecord]) -> List[Insight]:
        """Advisory messages about the risk profile of the data set."""
        summary = self.summarize(records)
        insights = []
        at_risk_percentage = summary.at_risk_total / summary.total * 100.0 if summary.total else 0.0

        if summary.high > 0:
            insights.append(Insight(
                type='danger',
                title='High-Risk Students Detected',
                content=f"{summary.high} students are at high risk. Immediate intervention recommended.",
            ))

        if at_risk_percentage > 20:
            insights.append(Insight(
                type='warning',
                title='Elevated Risk Level',
                content=f"{at_risk_percentage:.1f}% of students are at risk. Consider reviewing support programs.",
            ))

        if summary.high == 0 and summary.medium == 0:
            insights.append(Insight(
                type='success',
                title='Low Risk Profile',
                content='No high or medium-risk students detected. Student performance is stable.',
            ))

        return insights
