"""Per-session pipeline wiring the parser and the three engines together."""

import logging
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Union

from student_analytics.analytics import AnalyticsEngine
from student_analytics.config import Settings
from student_analytics.filters import FilterEngine
from student_analytics.models import (
    AssessedRecord,
    PerformerSummary,
    RiskAssessment,
    RiskSummary,
    StudentComparison,
    StudentRecord,
)
from student_analytics.parsers import CSVParser
from student_analytics.risk import RiskEngine

logger = logging.getLogger(__name__)


class AnalyticsPipeline:
    """
    raw CSV -> parser -> risk engine -> {analytics engine, filter engine}.

    set_data() is the only state transition. A load that fails leaves the
    previously loaded data set in place. When loads overlap, the most recently
    started one wins and superseded results are discarded.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.parser = CSVParser()
        self.risk_engine = RiskEngine(thresholds=self.settings.risk_thresholds)
        self.analytics = AnalyticsEngine(
            pass_mark=self.settings.pass_mark,
            performers_limit=self.settings.top_performers_limit,
        )
        self.filters = FilterEngine()
        self._records: List[AssessedRecord] = []
        self._errors: List[str] = []
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def records(self) -> List[AssessedRecord]:
        return list(self._records)

    @property
    def errors(self) -> List[str]:
        """Row-level errors from the last successful load."""
        return list(self._errors)

    @property
    def has_data(self) -> bool:
        return bool(self._records)

    def _next_generation(self) -> int:
        with self._lock:
            self._generation += 1
            return self._generation

    def _load(self, parse, generation: int) -> List[AssessedRecord]:
        parser = CSVParser()
        records = parse(parser)
        self._commit(records, parser.get_errors(), generation)
        return self.records

    def load_text(self, raw_text: str) -> List[AssessedRecord]:
        """Parse CSV text and make it the current data set."""
        return self._load(lambda parser: parser.parse(raw_text), self._next_generation())

    def load_bytes(self, data: bytes) -> List[AssessedRecord]:
        return self._load(lambda parser: parser.parse_bytes(data), self._next_generation())

    def load_file(self, path: Union[str, Path]) -> List[AssessedRecord]:
        return self._load(lambda parser: parser.parse_file(path), self._next_generation())

    def _commit(self, records: List[StudentRecord], errors: List[str], generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                logger.info("Discarding superseded load (generation %d, current %d)", generation, self._generation)
                return
            self.parser.parsed_data = list(records)
            self.parser.errors = list(errors)
            self._errors = list(errors)
            self._apply(records)

    def set_data(self, records: Iterable[StudentRecord]) -> None:
        """Assess risk and recompute both downstream engines."""
        with self._lock:
            self._generation += 1
            self._errors = []
            self._apply(records)

    def _apply(self, records: Iterable[StudentRecord]) -> None:
        assessed = self.risk_engine.assess_all(records)
        self.analytics.set_data(assessed)
        self.filters.set_data(assessed)
        self._records = assessed
        logger.info("Loaded %d records (%d at risk)", len(assessed), self.risk_engine.get_at_risk_count(assessed))

    def clear(self) -> None:
        self.parser.clear()
        self.set_data([])

    def risk_summary(self) -> RiskSummary:
        return self.risk_engine.summarize(self._records)

    def compare_students(self, first_id: str, second_id: str) -> StudentComparison:
        """
        Compare two students by averages, the risk of their first record and trend.

        Raises:
            KeyError: If either student is not in the current data set
        """
        first = self._student_overview(first_id)
        second = self._student_overview(second_id)
        return StudentComparison(
            first=first[0],
            second=second[0],
            first_risk=first[1],
            second_risk=second[1],
            first_trend=self.analytics.student_trend(first_id),
            second_trend=self.analytics.student_trend(second_id),
        )

    def _student_overview(self, student_id: str):
        summary: Optional[PerformerSummary] = self.analytics.student_summary(student_id)
        if summary is None:
            raise KeyError(student_id)
        first_record = next(record for record in self._records if record.student_id == student_id)
        return summary, RiskAssessment(
            risk_score=first_record.risk_score,
            risk_level=first_record.risk_level,
            risk_factors=first_record.risk_factors,
        )
