"""CSV file parsing and record normalization."""

import csv
import logging
import re
import time
from io import StringIO
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from student_analytics.models import AssessedRecord, StudentRecord

logger = logging.getLogger(__name__)


class FileReadError(Exception):
    """The uploaded source could not be read or decoded."""


class ParseError(ValueError):
    """No usable rows could be extracted from the CSV payload."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])


class RowValidationError(ValueError):
    """A single data row was rejected."""


# Normalized header name -> canonical field name
HEADER_SYNONYMS = {
    'student_id': 'student_id',
    'id': 'student_id',
    'studentid': 'student_id',
    'name': 'name',
    'student_name': 'name',
    'full_name': 'name',
    'subject': 'subject',
    'course': 'subject',
    'marks': 'marks',
    'score': 'marks',
    'grade': 'marks',
    'attendance': 'attendance',
    'attendance_percentage': 'attendance',
    'semester': 'semester',
    'term': 'semester',
    'assessment_type': 'assessment_type',
    'assessmenttype': 'assessment_type',
    'assessment': 'assessment_type',
    'type': 'assessment_type',
}

KNOWN_FIELDS = ('student_id', 'name', 'subject', 'marks', 'attendance', 'semester', 'assessment_type')
# Written on export, ignored on import
RISK_COLUMNS = ('risk_score', 'risk_level', 'risk_factors')

_INTEGER_PATTERN = re.compile(r'^[+-]?\d+$')
_NUMBER_PATTERN = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?%?$')
_LEADING_INTEGER = re.compile(r'^\s*([+-]?\d+)')


def split_csv_line(line: str) -> List[str]:
    """
    Split one CSV line on commas, honouring double-quoted spans.

    Inside quotes a comma is literal and a doubled quote ("") is an escaped
    quote character. Every token is whitespace-trimmed.

    Args:
        line: Raw CSV line

    Returns:
        List of field values
    """
    values = []
    current = []
    in_quotes = False
    i = 0

    while i < len(line):
        char = line[i]
        if char == '"':
            if in_quotes and i + 1 < len(line) and line[i + 1] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == ',' and not in_quotes:
            values.append(''.join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1

    values.append(''.join(current).strip())
    return values


def normalize_header(header: str) -> str:
    """
    Normalize a header cell and map known synonyms to canonical field names.

    'Student ID' -> 'student_id', 'Score' -> 'marks', 'Term' -> 'semester'.
    Unknown headers are returned in their normalized form.
    """
    normalized = re.sub(r'[^a-z0-9_]', '_', header.strip().lower())
    normalized = re.sub(r'_+', '_', normalized).strip('_')
    return HEADER_SYNONYMS.get(normalized, normalized)


def clean_value(value: Optional[str]) -> Any:
    """
    Convert a raw token: numeric-looking text becomes a number,
    anything else stays a trimmed string, empty text becomes None.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if _INTEGER_PATTERN.match(value):
        return int(value)
    if _NUMBER_PATTERN.match(value):
        number = float(value.rstrip('%'))
        if not (np.isnan(number) or np.isinf(number)):
            return number
    return value


def to_number(value) -> Optional[float]:
    """
    Parse a marks/attendance value.

    Handles numbers and strings such as "85" or "85%".

    Returns:
        Float value, or None when the value is missing or not numeric
    """
    if value is None:
        return None

    if isinstance(value, (int, float)):
        if pd.isna(value):
            return None
        number = float(value)
    else:
        text = str(value).strip().replace('%', '').strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None

    if np.isnan(number) or np.isinf(number):
        return None
    return number


def clamp_percentage(value) -> float:
    """Parse a percentage, defaulting to 0 and clamping to [0, 100]."""
    number = to_number(value)
    if number is None:
        return 0.0
    return float(np.clip(number, 0.0, 100.0))


def semester_number(value) -> int:
    """Numeric ordinal of a semester label ('3' -> 3, '2nd' -> 2, 'Fall' -> 0)."""
    if isinstance(value, (int, float)) and not pd.isna(value):
        return int(value)
    match = _LEADING_INTEGER.match(str(value or ''))
    return int(match.group(1)) if match else 0


def validate_and_transform_row(row: Dict[str, str], row_number: int, ingested_at: int) -> StudentRecord:
    """
    Validate one data row and fill in defaults.

    Args:
        row: Normalized header -> raw token
        row_number: 1-based line number used in messages and synthesized IDs
        ingested_at: Ingestion timestamp (ms) used for the row ID

    Returns:
        Normalized StudentRecord

    Raises:
        RowValidationError: If the row has neither a student ID nor a name
    """
    fields = {key: (value or None) for key, value in row.items()}

    student_id = fields.get('student_id')
    name = fields.get('name')
    if not student_id and not name:
        raise RowValidationError(f"Row {row_number}: Missing student ID or name")

    if not student_id:
        student_id = f"STU-{row_number}"
    if not name:
        name = f"Student {student_id}"

    subject = fields.get('subject') or 'General'
    semester = fields.get('semester') or '1'
    assessment_type = fields.get('assessment_type') or 'Exam'

    extra = {
        key: clean_value(value)
        for key, value in fields.items()
        if key not in KNOWN_FIELDS and key not in RISK_COLUMNS
    }

    return StudentRecord(
        student_id=student_id,
        name=name,
        subject=subject,
        marks=clamp_percentage(fields.get('marks')),
        attendance=clamp_percentage(fields.get('attendance')),
        semester=semester,
        assessment_type=assessment_type,
        row_id=f"{student_id}-{subject}-{semester}-{ingested_at}",
        extra=extra,
    )


class CSVParser:
    """Turns uploaded CSV text into normalized student records."""

    def __init__(self):
        self.parsed_data: List[StudentRecord] = []
        self.errors: List[str] = []

    def parse(self, raw_text: str) -> List[StudentRecord]:
        """
        Parse CSV text into records.

        Rows with a wrong column count or without any identity are dropped and
        reported through get_errors(); parsing only fails when nothing survives.

        Raises:
            ParseError: Fewer than two non-blank lines, or no valid rows
        """
        lines = [line for line in raw_text.split('\n') if line.strip()]
        if len(lines) < 2:
            self.errors = []
            raise ParseError('CSV must have at least a header row and one data row')

        headers = [normalize_header(header) for header in split_csv_line(lines[0])]
        logger.debug("Normalized headers: %s", headers)

        errors: List[str] = []
        records: List[StudentRecord] = []
        ingested_at = int(time.time() * 1000)

        for row_number, line in enumerate(lines[1:], start=2):
            values = split_csv_line(line)
            if len(values) != len(headers):
                errors.append(
                    f"Row {row_number}: Column count mismatch "
                    f"(expected {len(headers)}, got {len(values)})"
                )
                continue

            try:
                records.append(validate_and_transform_row(dict(zip(headers, values)), row_number, ingested_at))
            except RowValidationError as e:
                errors.append(str(e))

        self.errors = errors

        if not records:
            raise ParseError(f"Failed to parse CSV: {'; '.join(errors)}", errors)

        if errors:
            logger.warning("Dropped %d of %d data rows: %s", len(errors), len(lines) - 1, errors)
        logger.debug("Parsed %d records", len(records))

        self.parsed_data = records
        return records

    def parse_bytes(self, data: bytes, encoding: str = 'utf-8-sig') -> List[StudentRecord]:
        """Decode an uploaded payload and parse it."""
        try:
            text = data.decode(encoding)
        except UnicodeDecodeError as e:
            raise FileReadError(f"Error reading file: {e}") from e
        return self.parse(text)

    def parse_file(self, path: Union[str, Path]) -> List[StudentRecord]:
        """Read a CSV file from disk and parse it."""
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            raise FileReadError(f"Error reading file: {e}") from e
        return self.parse_bytes(data)

    def get_errors(self) -> List[str]:
        return list(self.errors)

    def get_data(self) -> List[StudentRecord]:
        return list(self.parsed_data)

    def clear(self) -> None:
        self.parsed_data = []
        self.errors = []


def format_csv_value(value) -> str:
    """Render a field for CSV export."""
    if value is None:
        return ''
    if isinstance(value, list):
        return '; '.join(str(item) for item in value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def to_csv(records: Iterable[StudentRecord]) -> str:
    """
    Serialize records back to CSV.

    Headers use the canonical field names so the output parses back into the
    same records. Fields are quoted only when they contain a comma or a quote.
    Risk columns are included for assessed records, followed by any extra
    columns in first-seen order.
    """
    records = list(records)

    columns = list(KNOWN_FIELDS)
    if any(isinstance(record, AssessedRecord) for record in records):
        columns.extend(RISK_COLUMNS)

    extra_columns: List[str] = []
    for record in records:
        for key in record.extra:
            if key not in columns and key not in extra_columns:
                extra_columns.append(key)

    output = StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_MINIMAL, lineterminator='\n')
    writer.writerow(columns + extra_columns)

    for record in records:
        row = [format_csv_value(getattr(record, column, None)) for column in columns]
        row.extend(format_csv_value(record.extra.get(key)) for key in extra_columns)
        writer.writerow(row)

    return output.getvalue()
