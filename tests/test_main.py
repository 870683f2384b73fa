"""Tests for the HTTP endpoints."""

import pytest
from fastapi.testclient import TestClient

from student_analytics import main
from student_analytics.pipeline import AnalyticsPipeline


SAMPLE_CSV = (
    "id,name,subject,marks,attendance,semester\n"
    "S1,Alice,Math,25,45,1\n"
    "S2,Bob,Math,85,95,1\n"
    "S1,Alice,Physics,45,65,2\n"
)


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(main, 'pipeline', AnalyticsPipeline(main.settings))
    return TestClient(main.app)


def upload(client, content=SAMPLE_CSV, filename='students.csv'):
    return client.post('/upload', files={'file': (filename, content.encode('utf-8'), 'text/csv')})


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.json()['status'] == 'ok'


def test_no_data_yet(client):
    for path in ('/results', '/metrics', '/insights', '/forecast', '/download.csv'):
        assert client.get(path).status_code == 404


def test_upload(client):
    response = upload(client)
    assert response.status_code == 200

    body = response.json()
    assert body['success'] is True
    assert len(body['results']) == 3
    assert body['results'][0]['risk_level'] == 'high'
    assert body['summary']['high'] == 2
    assert body['summary']['none'] == 1
    assert body['errors'] == []


def test_upload_rejects_bad_files(client):
    assert upload(client, filename='students.txt').status_code == 400
    assert upload(client, content='').status_code == 400

    response = upload(client, content='id,name\n')
    assert response.status_code == 400
    assert 'at least a header row' in response.json()['detail']['message']


def test_upload_reports_row_errors(client):
    body = upload(client, content="id,name,marks\nS1,Alice,80\nS2,Bob").json()
    assert body['errors'] == ['Row 3: Column count mismatch (expected 3, got 2)']


def test_results_filters_and_sort(client):
    upload(client)

    body = client.get('/results', params={'subject': 'Math', 'sort': 'score-desc'}).json()
    assert [r['student_id'] for r in body['results']] == ['S2', 'S1']
    assert body['summary'] == {'total': 3, 'filtered': 2, 'active_filters': 1}
    assert body['sort'] == {'key': 'score', 'direction': 'desc'}

    # Filter state persists between requests
    body = client.get('/results', params={'search': 'bob'}).json()
    assert [r['student_id'] for r in body['results']] == ['S2']

    body = client.post('/filters/clear').json()
    assert len(body['results']) == 3
    assert body['filters']['subject'] == ''


def test_results_invalid_sort(client):
    upload(client)
    assert client.get('/results', params={'sort': 'name-up'}).status_code == 400


def test_filter_options(client):
    upload(client)
    assert client.get('/filters/options').json() == {'subjects': ['Math', 'Physics'], 'semesters': ['1', '2']}


def test_metrics_and_insights(client):
    upload(client)

    metrics = client.get('/metrics').json()
    assert metrics['total_students'] == 3
    assert metrics['unique_students'] == 2
    assert list(metrics['subject_stats']) == ['Math', 'Physics']

    insights = client.get('/insights').json()
    assert insights['analytics'][0]['title'] == 'Low Pass Rate'
    assert insights['risk'][0]['title'] == 'High-Risk Students Detected'
    assert insights['at_risk_count'] == 2
    assert insights['predictive'][0]['title'] == 'Success Probability Forecast'
    assert insights['predictive'][0]['confidence'] == pytest.approx(50.3)


def test_student_endpoints(client):
    upload(client)

    trend = client.get('/students/S1/trend').json()
    assert trend == {'student_id': 'S1', 'trend': 'up', 'change': 20.0}

    comparison = client.get('/students/compare', params={'first': 'S1', 'second': 'S2'})
    assert comparison.status_code == 200
    assert comparison.json()['second']['name'] == 'Bob'

    missing = client.get('/students/compare', params={'first': 'S1', 'second': 'S404'})
    assert missing.status_code == 404


def test_forecast(client):
    upload(client)

    body = client.get('/forecast', params={'periods': 2}).json()
    assert body['historical_semesters'] == ['1', '2']
    assert body['forecast_semesters'] == ['3', '4']

    assert client.get('/forecast', params={'periods': 0}).status_code == 422


def test_download_filtered_view(client):
    upload(client)
    client.get('/results', params={'risk_level': 'none'})

    response = client.get('/download.csv')

    assert response.status_code == 200
    assert response.headers['content-type'].startswith('text/csv')
    lines = response.text.splitlines()
    assert lines[0].startswith('student_id,name,subject')
    assert lines[1].startswith('S2,Bob,Math,85,95')
    assert len(lines) == 2


def test_download_uploads_back_unchanged(client):
    upload(client)
    exported = client.get('/download.csv').text

    body = upload(client, content=exported, filename='student_data.csv').json()

    assert [r['extra'] for r in body['results']] == [{}, {}, {}]
    assert [r['risk_score'] for r in body['results']] == [100, 70, 0]
