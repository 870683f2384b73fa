"""Aggregations, rankings, trends, insights and forecasts over assessed records."""

import logging
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.linear_model import LinearRegression

from student_analytics.models import (
    Forecast,
    Insight,
    Metrics,
    PerformerSummary,
    SemesterStats,
    StudentRecord,
    StudentTrend,
    SubjectStats,
)
from student_analytics.parsers import semester_number

logger = logging.getLogger(__name__)

# (label, inclusive upper bound)
SCORE_BANDS = (('0-20', 20), ('21-40', 40), ('41-60', 60), ('61-80', 80), ('81-100', 100))
ATTENDANCE_BANDS = (('0-50', 50), ('51-70', 70), ('71-85', 85), ('86-100', 100))

FRAME_COLUMNS = ['student_id', 'name', 'subject', 'semester', 'marks', 'attendance']

TREND_THRESHOLD = 5.0


def calculate_percentage(part: float, total: float) -> float:
    if total == 0:
        return 0.0
    return part / total * 100.0


def records_to_frame(records: Sequence[StudentRecord]) -> pd.DataFrame:
    """Build a DataFrame holding the fields the aggregations need."""
    rows = [
        {
            'student_id': record.student_id,
            'name': record.name,
            'subject': record.subject,
            'semester': record.semester,
            'marks': float(record.marks),
            'attendance': float(record.attendance),
        }
        for record in records
    ]
    return pd.DataFrame(rows, columns=FRAME_COLUMNS)


def bucket_counts(values: pd.Series, bands: Sequence[Tuple[str, float]]) -> Dict[str, int]:
    """
    Count values per band. Upper bounds are inclusive, so with bands
    ending at 20 and 40 a value of exactly 20 lands in the first band.
    """
    labels = [label for label, _ in bands]
    edges = [-np.inf] + [upper for _, upper in bands[:-1]] + [np.inf]
    buckets = pd.cut(values, bins=edges, labels=labels, right=True)
    counts = buckets.value_counts().reindex(labels, fill_value=0)
    return {label: int(counts[label]) for label in labels}


def linear_forecast(values: Sequence[float], periods: int) -> List[float]:
    """
    Extrapolate a series with an ordinary least-squares line over index vs value.

    Projections are clamped to [0, 100]. With fewer than two points the single
    known value (or 0) is repeated.
    """
    if periods <= 0:
        return []
    if len(values) < 2:
        return [float(values[0]) if len(values) else 0.0] * periods

    x = np.arange(len(values)).reshape(-1, 1)
    model = LinearRegression().fit(x, np.asarray(values, dtype=float))

    future = np.arange(len(values), len(values) + periods).reshape(-1, 1)
    projected = np.clip(model.predict(future), 0.0, 100.0)
    return [float(value) for value in projected]


def _worst_subject(metrics: Metrics) -> Optional[Tuple[str, SubjectStats]]:
    if not metrics.subject_stats:
        return None
    return min(metrics.subject_stats.items(), key=lambda item: item[1].average_score)


def _low_score_percentage(metrics: Metrics) -> float:
    low_scores = metrics.score_distribution.get('0-20', 0) + metrics.score_distribution.get('21-40', 0)
    return calculate_percentage(low_scores, metrics.total_students)


class InsightRule(NamedTuple):
    condition: Callable[[Metrics], bool]
    build: Callable[[Metrics], Insight]


# Evaluated in declaration order; only rules whose condition holds produce an insight
INSIGHT_RULES = (
    InsightRule(
        lambda m: m.pass_rate < 60,
        lambda m: Insight(
            type='warning',
            title='Low Pass Rate',
            content=f"Only {m.pass_rate:.1f}% of students are passing. "
                    "Consider reviewing curriculum and support systems.",
        ),
    ),
    InsightRule(
        lambda m: m.pass_rate > 85,
        lambda m: Insight(
            type='success',
            title='Excellent Pass Rate',
            content=f"{m.pass_rate:.1f}% pass rate indicates strong academic performance across the cohort.",
        ),
    ),
    InsightRule(
        lambda m: m.average_attendance < 70,
        lambda m: Insight(
            type='warning',
            title='Attendance Concern',
            content=f"Average attendance is {m.average_attendance:.1f}%. "
                    "Low attendance may impact learning outcomes.",
        ),
    ),
    InsightRule(
        lambda m: _worst_subject(m) is not None and _worst_subject(m)[1].average_score < 50,
        lambda m: Insight(
            type='danger',
            title='Subject Performance Alert',
            content=f"{_worst_subject(m)[0]} shows the lowest average score "
                    f"({_worst_subject(m)[1].average_score:.1f}%). Additional support may be needed.",
        ),
    ),
    InsightRule(
        lambda m: _low_score_percentage(m) > 30,
        lambda m: Insight(
            type='warning',
            title='Score Distribution Alert',
            content=f"{_low_score_percentage(m):.1f}% of students are scoring below 40%. "
                    "Consider intervention strategies.",
        ),
    ),
    InsightRule(
        lambda m: len(m.top_performers) > 0,
        lambda m: Insight(
            type='success',
            title='Top Performer',
            content=f"{m.top_performers[0].name} leads with an average score of "
                    f"{m.top_performers[0].average_score:.1f}%.",
        ),
    ),
)


SUCCESS_WEIGHTS = (('average_score', 0.4), ('average_attendance', 0.3), ('pass_rate', 0.3))

ACTIONABLE_RECOMMENDATIONS = (
    'Schedule one-on-one sessions with at-risk students',
    'Implement peer tutoring programs',
    'Create subject-specific study groups',
    'Set up automated attendance reminders',
)


def success_probability(metrics: Metrics) -> float:
    """Weighted blend of average score, average attendance and pass rate, in [0, 100]."""
    if metrics.total_students == 0:
        return 0.0
    probability = sum(getattr(metrics, field) * weight for field, weight in SUCCESS_WEIGHTS)
    return float(np.clip(probability, 0.0, 100.0))


def prediction_confidence(record_count: int) -> float:
    if record_count == 0:
        return 0.0
    return min(95.0, 50.0 + record_count / 10)


def identify_patterns(frame: pd.DataFrame, metrics: Metrics) -> List[str]:
    """
    Subject with the highest score variance, and whether high scorers are
    nearly all high attenders.
    """
    patterns = []

    if not frame.empty:
        variance = frame.groupby('subject', sort=False)['marks'].var(ddof=0)
        variance = variance[variance > 0]
        if not variance.empty:
            patterns.append(
                f"{variance.idxmax()} shows the highest performance variance, "
                "indicating mixed student engagement."
            )

    high_scores = frame['marks'] > 70
    high_score_count = int(high_scores.sum())
    if high_score_count > 0:
        with_high_attendance = int((high_scores & (frame['attendance'] > 80)).sum())
        if with_high_attendance / high_score_count > 0.8:
            patterns.append('Strong correlation detected: high attendance goes together with high scores.')

    return patterns


def predict_future_risks(frame: pd.DataFrame, metrics: Metrics) -> List[str]:
    early_warnings = int(((frame['marks'] < 50) & (frame['attendance'] < 70)).sum())
    if early_warnings > len(frame) * 0.2:
        return [f"{early_warnings} students showing early warning signs. Early intervention recommended."]
    return []


def suggest_optimizations(frame: pd.DataFrame, metrics: Metrics) -> List[str]:
    suggestions = []
    if metrics.average_score < 60:
        suggestions.append('Consider implementing additional support programs for struggling students.')
    if metrics.average_attendance < 75:
        suggestions.append('Attendance improvement initiatives could boost overall performance by 15-20%.')

    worst = _worst_subject(metrics)
    if worst is not None and worst[1].average_score < 50:
        suggestions.append(f"Focus resources on {worst[0]}, which shows the lowest average performance.")
    return suggestions


class PredictiveRule(NamedTuple):
    type: str
    title: str
    confidence: float
    messages: Callable[[pd.DataFrame, Metrics], List[str]]


# Appended after the success forecast in this order, when they produce any message
PREDICTIVE_RULES = (
    PredictiveRule('pattern', 'Hidden Patterns Detected', 85.0, identify_patterns),
    PredictiveRule('warning', 'Future Risk Prediction', 75.0, predict_future_risks),
    PredictiveRule('optimization', 'Performance Optimization', 90.0, suggest_optimizations),
)


class AnalyticsEngine:
    """
    Holds the current record set and its Metrics snapshot.

    set_data() recomputes everything from scratch; readers only ever see a
    fully computed snapshot.
    """

    def __init__(self, pass_mark: float = 50.0, performers_limit: int = 10):
        self.pass_mark = pass_mark
        self.performers_limit = performers_limit
        self._data: List[StudentRecord] = []
        self._frame = records_to_frame([])
        self._student_averages: List[PerformerSummary] = []
        self._metrics = Metrics()

    def set_data(self, records: Iterable[StudentRecord]) -> None:
        data = list(records)
        frame = records_to_frame(data)
        student_averages = self._compute_student_averages(frame)
        metrics = self._calculate_metrics(frame, student_averages)

        self._data, self._frame, self._student_averages, self._metrics = data, frame, student_averages, metrics
        logger.debug(
            "Metrics recomputed: %d records, %d students, %d subjects",
            metrics.total_students, metrics.unique_students, len(metrics.subject_stats),
        )

    def get_data(self) -> List[StudentRecord]:
        return list(self._data)

    def get_metrics(self) -> Metrics:
        return self._metrics.model_copy(deep=True)

    def _calculate_metrics(self, frame: pd.DataFrame, student_averages: List[PerformerSummary]) -> Metrics:
        if frame.empty:
            return Metrics()

        total = len(frame)
        pass_rate = calculate_percentage(int((frame['marks'] >= self.pass_mark).sum()), total)

        return Metrics(
            total_students=total,
            unique_students=int(frame['student_id'].nunique()),
            average_score=float(frame['marks'].mean()),
            average_attendance=float(frame['attendance'].mean()),
            pass_rate=pass_rate,
            fail_rate=100.0 - pass_rate,
            subject_stats=self._subject_stats(frame),
            semester_stats=self._semester_stats(frame),
            score_distribution=bucket_counts(frame['marks'], SCORE_BANDS),
            attendance_distribution=bucket_counts(frame['attendance'], ATTENDANCE_BANDS),
            top_performers=self._rank(student_averages, descending=True)[:self.performers_limit],
            bottom_performers=self._rank(student_averages, descending=False)[:self.performers_limit],
        )

    def _subject_stats(self, frame: pd.DataFrame) -> Dict[str, SubjectStats]:
        stats = {}
        for subject, group in frame.groupby('subject', sort=False):
            scores = group['marks']
            stats[subject] = SubjectStats(
                count=len(group),
                average_score=float(scores.mean()),
                average_attendance=float(group['attendance'].mean()),
                max_score=float(scores.max()),
                min_score=float(scores.min()),
                pass_rate=calculate_percentage(int((scores >= self.pass_mark).sum()), len(group)),
            )
        return stats

    @staticmethod
    def _semester_stats(frame: pd.DataFrame) -> Dict[str, SemesterStats]:
        groups = sorted(frame.groupby('semester', sort=False), key=lambda item: semester_number(item[0]))
        return {
            semester: SemesterStats(
                count=len(group),
                average_score=float(group['marks'].mean()),
                average_attendance=float(group['attendance'].mean()),
                unique_students=int(group['student_id'].nunique()),
            )
            for semester, group in groups
        }

    @staticmethod
    def _compute_student_averages(frame: pd.DataFrame) -> List[PerformerSummary]:
        if frame.empty:
            return []
        summary = (
            frame.groupby('student_id', sort=False)
            .agg(
                name=('name', 'first'),
                average_score=('marks', 'mean'),
                average_attendance=('attendance', 'mean'),
            )
            .reset_index()
        )
        return [PerformerSummary(**row) for row in summary.to_dict('records')]

    @staticmethod
    def _rank(student_averages: List[PerformerSummary], descending: bool) -> List[PerformerSummary]:
        # sorted() is stable, ties keep encounter order in both directions
        return sorted(student_averages, key=lambda student: student.average_score, reverse=descending)

    def top_performers(self, limit: int = 10) -> List[PerformerSummary]:
        return self._rank(self._student_averages, descending=True)[:limit]

    def bottom_performers(self, limit: int = 10) -> List[PerformerSummary]:
        return self._rank(self._student_averages, descending=False)[:limit]

    def student_summary(self, student_id: str) -> Optional[PerformerSummary]:
        for student in self._student_averages:
            if student.student_id == student_id:
                return student
        return None

    def student_trend(self, student_id: str) -> StudentTrend:
        """
        Compare a student's first and last record ordered by semester.

        Intermediate semesters are ignored. A change above 5 points is 'up',
        below -5 is 'down'. Fewer than two records is always 'stable' with 0.
        """
        records = sorted(
            (record for record in self._data if record.student_id == student_id),
            key=lambda record: semester_number(record.semester),
        )
        if len(records) < 2:
            return StudentTrend(student_id=student_id)

        change = records[-1].marks - records[0].marks
        trend = 'stable'
        if change > TREND_THRESHOLD:
            trend = 'up'
        elif change < -TREND_THRESHOLD:
            trend = 'down'

        return StudentTrend(student_id=student_id, trend=trend, change=round(change, 1))

    def generate_insights(self) -> List[Insight]:
        metrics = self._metrics
        return [rule.build(metrics) for rule in INSIGHT_RULES if rule.condition(metrics)]

    def generate_predictive_insights(self) -> List[Insight]:
        """
        Success forecast followed by pattern, future risk and optimization insights.

        The success forecast is always present; every other rule only appears
        when it produces at least one message.
        """
        metrics = self._metrics
        insights = [
            Insight(
                type='prediction',
                title='Success Probability Forecast',
                content=f"Based on current trends, {success_probability(metrics):.1f}% "
                        "of students are predicted to succeed.",
                confidence=prediction_confidence(metrics.total_students),
                actionable=list(ACTIONABLE_RECOMMENDATIONS),
            )
        ]
        for rule in PREDICTIVE_RULES:
            messages = rule.messages(self._frame, metrics)
            if messages:
                insights.append(Insight(
                    type=rule.type,
                    title=rule.title,
                    content=' '.join(messages),
                    confidence=rule.confidence,
                ))
        return insights

    def forecast(self, periods: int = 3) -> Forecast:
        """Project per-semester average scores forward."""
        semester_stats = self._metrics.semester_stats
        if not semester_stats:
            return Forecast()

        semesters = list(semester_stats)
        scores = [stats.average_score for stats in semester_stats.values()]
        last_semester = semester_number(semesters[-1]) or 1

        return Forecast(
            historical_semesters=semesters,
            historical_scores=scores,
            forecast_semesters=[str(last_semester + i) for i in range(1, periods + 1)],
            forecast_scores=linear_forecast(scores, periods),
        )
