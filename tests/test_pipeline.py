"""Tests for the analytics pipeline."""

import pytest

from student_analytics.config import Settings
from student_analytics.models import StudentRecord
from student_analytics.parsers import FileReadError, ParseError
from student_analytics.pipeline import AnalyticsPipeline


SAMPLE_CSV = "id,name,subject,marks,attendance,semester\nS1,Alice,Math,25,45,1\nS2,Bob,Math,85,95,1"


@pytest.fixture
def pipeline():
    return AnalyticsPipeline()


def test_load_text(pipeline):
    """A load reaches the risk, analytics and filter engines."""
    records = pipeline.load_text(SAMPLE_CSV)

    assert [r.student_id for r in records] == ['S1', 'S2']
    assert records[0].risk_level == 'high'
    assert pipeline.has_data
    assert pipeline.analytics.get_metrics().pass_rate == 50.0
    assert len(pipeline.filters.get_filtered_data()) == 2
    assert pipeline.parser.get_data()[0].student_id == 'S1'

    summary = pipeline.risk_summary()
    assert (summary.total, summary.high, summary.none, summary.at_risk_total) == (2, 1, 1, 1)


def test_load_keeps_row_errors(pipeline):
    pipeline.load_text("id,name,marks\nS1,Alice,80\nS2,Bob")

    assert len(pipeline.records) == 1
    assert pipeline.errors == ['Row 3: Column count mismatch (expected 3, got 2)']


def test_failed_load_keeps_previous_data(pipeline):
    pipeline.load_text(SAMPLE_CSV)

    with pytest.raises(ParseError):
        pipeline.load_text("id,name")

    with pytest.raises(FileReadError):
        pipeline.load_bytes(b'\xff\xfe\x00bad')

    assert len(pipeline.records) == 2
    assert pipeline.analytics.get_metrics().total_students == 2


def test_load_file_and_bytes(pipeline, tmp_path):
    path = tmp_path / 'students.csv'
    path.write_text(SAMPLE_CSV, encoding='utf-8')

    assert len(pipeline.load_file(path)) == 2
    assert len(pipeline.load_bytes(b"id,name,marks\nS9,Zed,70")) == 1
    assert pipeline.records[0].student_id == 'S9'


def test_set_data_and_clear(pipeline):
    pipeline.set_data([StudentRecord(student_id='S1', name='Alice', marks=90, attendance=95)])
    assert pipeline.records[0].risk_level == 'none'

    pipeline.set_data([])
    assert not pipeline.has_data
    assert pipeline.analytics.get_metrics().total_students == 0
    assert pipeline.filters.get_filtered_data() == []

    pipeline.load_text(SAMPLE_CSV)
    pipeline.clear()
    assert pipeline.records == []
    assert pipeline.errors == []
    assert pipeline.parser.get_data() == []


def test_filters_survive_reload(pipeline):
    """The current query is applied to a new data set."""
    pipeline.load_text(SAMPLE_CSV)
    pipeline.filters.set_risk_filter('high')
    assert len(pipeline.filters.get_filtered_data()) == 1

    pipeline.load_text("id,name,marks,attendance\nS3,Cara,90,90\nS4,Dan,20,20")
    assert [r.student_id for r in pipeline.filters.get_filtered_data()] == ['S4']


def test_superseded_load_is_discarded(pipeline):
    """Results of an older load never replace a newer one."""
    stale = pipeline._next_generation()
    pipeline.load_text(SAMPLE_CSV)

    pipeline._commit([StudentRecord(student_id='OLD', name='Old')], [], stale)

    assert [r.student_id for r in pipeline.records] == ['S1', 'S2']


def test_compare_students(pipeline):
    pipeline.load_text(
        "id,name,subject,marks,attendance,semester\n"
        "S1,Alice,Math,25,45,1\n"
        "S1,Alice,Physics,45,45,2\n"
        "S2,Bob,Math,85,95,1\n"
    )

    comparison = pipeline.compare_students('S1', 'S2')

    assert comparison.first.average_score == pytest.approx(35.0)
    assert comparison.first_risk.risk_level == 'high'
    assert comparison.first_trend.trend == 'up'
    assert comparison.second.name == 'Bob'
    assert comparison.second_risk.risk_score == 0
    assert comparison.second_trend.trend == 'stable'

    with pytest.raises(KeyError):
        pipeline.compare_students('S1', 'S404')


def test_settings_reach_engines():
    """Thresholds and pass mark come from settings."""
    settings = Settings(risk_thresholds={'low': 0.2, 'medium': 0.4, 'high': 0.9}, pass_mark=90)
    pipeline = AnalyticsPipeline(settings)

    records = pipeline.load_text("id,name,marks,attendance\nS1,Alice,45,65\nS2,Bob,85,95")

    assert records[0].risk_level == 'medium'
    assert pipeline.analytics.get_metrics().pass_rate == 0.0
