"""Search, filtering and sorting over assessed records."""

import locale
import logging
from numbers import Number
from typing import Any, Callable, Iterable, List, Optional, Tuple

from student_analytics.models import AssessedRecord, FilterState, FilterSummary, SortState
from student_analytics.parsers import semester_number

logger = logging.getLogger(__name__)

SORT_DIRECTIONS = ('asc', 'desc')

# Sort key aliases -> record attribute
SORT_FIELDS = {
    'name': 'name',
    'score': 'marks',
    'marks': 'marks',
    'attendance': 'attendance',
}


def _field_value(record: AssessedRecord, field: str) -> Any:
    if field in type(record).model_fields:
        return getattr(record, field)
    return record.extra.get(field)


def sort_value(value: Any) -> Tuple[int, Any]:
    """
    Comparable key for one field value.

    Numbers compare numerically. Strings compare case-insensitively using the
    process collation locale (LC_COLLATE). Numbers sort before strings when a
    column mixes both. Missing values act as ''.
    """
    if isinstance(value, Number) and not isinstance(value, bool):
        return (0, value)
    if value is None:
        value = ''
    return (1, locale.strxfrm(str(value).casefold()))


class FilterEngine:
    """
    Owns the base record set plus the current filter and sort state.

    Every setter re-derives the filtered view synchronously.
    """

    def __init__(self):
        self._original_data: List[AssessedRecord] = []
        self._filtered_data: List[AssessedRecord] = []
        self._filters = FilterState()
        self._sort = SortState()

    def set_data(self, records: Iterable[AssessedRecord]) -> None:
        self._original_data = list(records)
        self.apply_filters()

    def set_search(self, query: str) -> None:
        self._filters.search = (query or '').lower().strip()
        self.apply_filters()

    def set_subject_filter(self, subject: str) -> None:
        self._filters.subject = subject or ''
        self.apply_filters()

    def set_semester_filter(self, semester: str) -> None:
        self._filters.semester = semester or ''
        self.apply_filters()

    def set_risk_filter(self, risk_level: str) -> None:
        self._filters.risk_level = risk_level or ''
        self.apply_filters()

    def set_sort(self, sort_key: str, direction: Optional[str] = None) -> None:
        """
        Set the sort order, either as set_sort('score', 'desc') or set_sort('score-desc').

        Raises:
            ValueError: If the direction is not 'asc' or 'desc'
        """
        key = sort_key
        if direction is None:
            if '-' in sort_key:
                key, direction = sort_key.rsplit('-', 1)
            else:
                direction = 'asc'

        direction = direction.lower()
        if direction not in SORT_DIRECTIONS:
            raise ValueError(f"Invalid sort direction: '{direction}'. Use 'asc' or 'desc'")

        self._sort = SortState(key=key or 'name', direction=direction)
        self.apply_filters()

    def clear_filters(self) -> None:
        self._filters = FilterState()
        self._sort = SortState()
        self.apply_filters()

    def _predicates(self) -> List[Callable[[AssessedRecord], bool]]:
        filters = self._filters
        predicates = []

        if filters.search:
            search = filters.search
            predicates.append(lambda record: (
                search in record.name.lower()
                or search in record.student_id.lower()
                or search in record.subject.lower()
            ))
        if filters.subject:
            predicates.append(lambda record: record.subject == filters.subject)
        if filters.semester:
            predicates.append(lambda record: record.semester == filters.semester)
        if filters.risk_level:
            predicates.append(lambda record: record.risk_level == filters.risk_level)

        return predicates

    def apply_filters(self) -> None:
        predicates = self._predicates()
        filtered = [
            record for record in self._original_data
            if all(predicate(record) for predicate in predicates)
        ]
        self._filtered_data = self.sort_data(filtered)
        logger.debug("Filtered view: %d of %d records", len(self._filtered_data), len(self._original_data))

    def sort_data(self, records: List[AssessedRecord]) -> List[AssessedRecord]:
        field = SORT_FIELDS.get(self._sort.key, self._sort.key)
        return sorted(
            records,
            key=lambda record: sort_value(_field_value(record, field)),
            reverse=self._sort.direction == 'desc',
        )

    def get_filtered_data(self) -> List[AssessedRecord]:
        return list(self._filtered_data)

    def get_filters(self) -> FilterState:
        return self._filters.model_copy()

    def get_sort(self) -> SortState:
        return self._sort.model_copy()

    def get_unique_subjects(self) -> List[str]:
        return sorted({record.subject for record in self._original_data if record.subject})

    def get_unique_semesters(self) -> List[str]:
        semesters = {record.semester for record in self._original_data if record.semester}
        # Secondary key keeps the order deterministic among non-numeric labels
        return sorted(semesters, key=lambda semester: (semester_number(semester), semester))

    def get_filter_summary(self) -> FilterSummary:
        active = sum(1 for value in self._filters.model_dump().values() if value != '')
        return FilterSummary(
            total=len(self._original_data),
            filtered=len(self._filtered_data),
            active_filters=active,
        )
