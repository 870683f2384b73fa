"""Data models for the Student Performance Analytics application."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


RISK_LEVELS = ("high", "medium", "low", "none")
AT_RISK_LEVELS = ("high", "medium")


class StudentRecord(BaseModel):
    """One subject-assessment observation for one student."""
    student_id: str
    name: str
    subject: str = "General"
    marks: float = 0.0
    attendance: float = 0.0
    semester: str = "1"
    assessment_type: str = "Exam"
    row_id: str = ""
    # Columns the parser did not recognize, passed through untouched
    extra: Dict[str, Any] = Field(default_factory=dict)


class RiskAssessment(BaseModel):
    """Rule-based risk classification of a single record."""
    risk_score: int = 0
    risk_level: str = "none"
    risk_factors: List[str] = Field(default_factory=list)


class AssessedRecord(StudentRecord):
    """Student record annotated with its risk assessment."""
    risk_score: int = 0
    risk_level: str = "none"
    risk_factors: List[str] = Field(default_factory=list)


class SubjectStats(BaseModel):
    count: int
    average_score: float
    average_attendance: float
    max_score: float
    min_score: float
    pass_rate: float


class SemesterStats(BaseModel):
    count: int
    average_score: float
    average_attendance: float
    unique_students: int


class PerformerSummary(BaseModel):
    """Per-student averages across all of the student's records."""
    student_id: str
    name: str
    average_score: float
    average_attendance: float


class Metrics(BaseModel):
    """Aggregate statistics over the full record set."""
    total_students: int = 0
    unique_students: int = 0
    average_score: float = 0.0
    average_attendance: float = 0.0
    pass_rate: float = 0.0
    fail_rate: float = 0.0
    subject_stats: Dict[str, SubjectStats] = Field(default_factory=dict)
    semester_stats: Dict[str, SemesterStats] = Field(default_factory=dict)
    score_distribution: Dict[str, int] = Field(default_factory=dict)
    attendance_distribution: Dict[str, int] = Field(default_factory=dict)
    top_performers: List[PerformerSummary] = Field(default_factory=list)
    bottom_performers: List[PerformerSummary] = Field(default_factory=list)


class StudentTrend(BaseModel):
    student_id: str
    trend: str = "stable"
    change: float = 0.0


class Insight(BaseModel):
    """Advisory message produced by an insight rule."""
    type: str
    title: str
    content: str
    # Only set on predictive insights
    confidence: Optional[float] = None
    actionable: List[str] = Field(default_factory=list)


class Forecast(BaseModel):
    """Per-semester mean scores and their linear projection."""
    historical_semesters: List[str] = Field(default_factory=list)
    historical_scores: List[float] = Field(default_factory=list)
    forecast_semesters: List[str] = Field(default_factory=list)
    forecast_scores: List[float] = Field(default_factory=list)


class RiskSummary(BaseModel):
    total: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    none: int = 0
    at_risk_total: int = 0


class FilterState(BaseModel):
    search: str = ""
    subject: str = ""
    semester: str = ""
    risk_level: str = ""


class SortState(BaseModel):
    key: str = "name"
    direction: str = "asc"


class FilterSummary(BaseModel):
    total: int
    filtered: int
    active_filters: int


class StudentComparison(BaseModel):
    """Side-by-side view of two students."""
    first: PerformerSummary
    second: PerformerSummary
    first_risk: RiskAssessment
    second_risk: RiskAssessment
    first_trend: StudentTrend
    second_trend: StudentTrend


class UploadResponse(BaseModel):
    """Response from file upload endpoint."""
    success: bool
    message: str
    results: List[AssessedRecord]
    summary: RiskSummary
    errors: List[str] = Field(default_factory=list)


class ResultsResponse(BaseModel):
    """Filtered and sorted view of the current data set."""
    results: List[AssessedRecord]
    summary: FilterSummary
    filters: FilterState
    sort: SortState


class FilterOptions(BaseModel):
    subjects: List[str]
    semesters: List[str]


class InsightsResponse(BaseModel):
    analytics: List[Insight]
    risk: List[Insight]
    predictive: List[Insight] = Field(default_factory=list)
    at_risk_count: int = 0
    ranked_at_risk: Optional[List[AssessedRecord]] = None
