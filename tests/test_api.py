"""
Tests for the HTTP API.
"""

import pytest

from api.config import settings
from api.routers.import_router import _commit_response
from backend.models.import_types import ImportErrorCode, ImportResult, PreviewState
from services.preview_service import build_import_payload


def create_project(client, name='Unit 12 Revamp'):
    response = client.post('/api/projects', json={'name': name})
    assert response.status_code == 201
    return response.json()


def analyze(client, csv_text, project_id=None, file_name='takeoff.csv'):
    data = {'project_id': str(project_id)} if project_id is not None else {}
    return client.post(
        '/api/import/analyze',
        files={'file': (file_name, csv_text.encode('utf-8'), 'text/csv')},
        data=data
    )


def commit_body(client, csv_text, project_id):
    preview = PreviewState.model_validate(analyze(client, csv_text, project_id).json())
    return build_import_payload(preview, project_id).model_dump_json()


def commit(client, body):
    return client.post('/api/import/commit', content=body,
                       headers={'Content-Type': 'application/json'})


class TestProjects:
    """Test project endpoints."""

    def test_create_and_list(self, client):
        created = create_project(client)
        create_project(client, 'Tank Farm')

        assert created['name'] == 'Unit 12 Revamp'
        assert created['component_count'] == 0

        listing = client.get('/api/projects', params={'search': 'tank'}).json()
        assert listing['total'] == 1
        assert listing['items'][0]['name'] == 'Tank Farm'

    def test_missing_project(self, client):
        response = client.get('/api/projects/999')

        assert response.status_code == 404
        assert response.json()['error'] == 'Project 999 not found'

    def test_blank_name_rejected(self, client):
        assert client.post('/api/projects', json={'name': ''}).status_code == 422


class TestAnalyze:
    """Test the analyze endpoint."""

    def test_preview(self, client, takeoff_csv):
        project = create_project(client)

        response = analyze(client, takeoff_csv, project['id'])

        assert response.status_code == 200
        body = response.json()
        assert body['can_commit'] is True
        assert body['total_rows'] == 4
        assert body['valid_rows'] == 3
        assert body['skipped_rows'] == 1
        assert body['component_counts'] == {'valve': 2, 'pipe': 3, 'spool': 1}
        assert {m['canonical_field'] for m in body['column_mappings']} >= {'DRAWING', 'CMDTY CODE', 'AREA'}

    def test_without_project(self, client, takeoff_csv):
        response = analyze(client, takeoff_csv)

        assert response.status_code == 200
        assert response.json()['metadata_discovery']['will_create_count'] == 2

    def test_unsupported_extension(self, client):
        response = analyze(client, 'a,b\n1,2\n', file_name='takeoff.txt')
        assert response.status_code == 400

    def test_empty_file(self, client):
        response = analyze(client, '')
        assert response.status_code == 400

    def test_unknown_project(self, client, takeoff_csv):
        assert analyze(client, takeoff_csv, 999).status_code == 404

    def test_upload_limit(self, client, takeoff_csv, monkeypatch):
        monkeypatch.setattr(settings, 'MAX_UPLOAD_SIZE_MB', 0.0001)
        assert analyze(client, takeoff_csv).status_code == 413


class TestCommit:
    """Test the commit endpoint."""

    def test_commit_and_job_status(self, client, takeoff_csv):
        project = create_project(client)
        body = commit_body(client, takeoff_csv, project['id'])

        response = commit(client, body)

        assert response.status_code == 200
        result = response.json()
        assert result['success'] is True
        assert result['created_counts']['components'] == 6
        assert result['created_counts']['areas'] == 2
        assert result['job_id']

        job = client.get(f"/api/import/job/{result['job_id']}").json()
        assert job['status'] == 'success'
        assert job['job_type'] == 'commit'
        assert job['duration_seconds'] >= 0
        assert job['project_id'] == project['id']
        assert job['result']['created_counts']['components'] == 6

        detail = client.get(f"/api/projects/{project['id']}").json()
        assert detail['component_count'] == 6
        assert detail['drawing_count'] == 2
        assert detail['area_count'] == 2
        assert detail['import_count'] == 1
        assert detail['components_by_type'] == {'valve': 2, 'pipe': 3, 'spool': 1}

    def test_replay_conflicts(self, client, takeoff_csv):
        project = create_project(client)
        body = commit_body(client, takeoff_csv, project['id'])
        assert commit(client, body).status_code == 200

        response = commit(client, body)

        assert response.status_code == 409
        result = response.json()
        assert result['success'] is False
        assert result['error_code'] == 'conflict'
        assert all(count == 0 for count in result['created_counts'].values())
        assert client.get(f"/api/projects/{project['id']}").json()['component_count'] == 6

        failed = client.get('/api/import/jobs', params={'project_id': project['id'], 'status': 'failed'})
        assert failed.json()['total'] == 1

    def test_malformed_payload(self, client):
        response = commit(client, '{"project_id": 1, "rows": "nope"}')

        assert response.status_code == 400
        result = response.json()
        assert result['success'] is False
        assert result['error_code'] == 'invalid_payload'
        assert result['job_id'] is None

    def test_not_json(self, client):
        response = commit(client, 'not json')

        assert response.status_code == 400
        assert response.json()['error_code'] == 'invalid_payload'

    def test_unknown_project(self, client):
        body = '{"project_id": 999, "rows": [{"drawing": "P-1", "type": "valve", "qty": 1, "cmdty_code": "VB"}]}'
        assert commit(client, body).status_code == 404

    def test_transport_limit(self, client, takeoff_csv, monkeypatch):
        project = create_project(client)
        body = commit_body(client, takeoff_csv, project['id'])
        monkeypatch.setattr(settings, 'HARD_PAYLOAD_LIMIT_MB', 0.0001)

        response = commit(client, body)

        assert response.status_code == 413
        assert client.get('/api/import/jobs').json()['total'] == 0

    @pytest.mark.parametrize('error_code, status_code', [
        (ImportErrorCode.CONFLICT, 409),
        (ImportErrorCode.PROJECT_NOT_FOUND, 404),
        (ImportErrorCode.UNRESOLVED_REFERENCE, 400),
        (ImportErrorCode.PAYLOAD_LIMIT, 400),
        (ImportErrorCode.INVALID_PAYLOAD, 400),
        (ImportErrorCode.INTERNAL, 400),
    ])
    def test_failure_status_follows_error_code(self, error_code, status_code):
        result = ImportResult.failure('nothing was imported', error_code=error_code)

        response = _commit_response(result, 'job-1')

        assert response.status_code == status_code

    def test_project_deleted_before_commit(self, client, monkeypatch):
        monkeypatch.setattr('api.routers.import_router._require_project', lambda db, project_id: None)
        body = '{"project_id": 999, "rows": [{"drawing": "P-1", "type": "valve", "qty": 1, "cmdty_code": "VB"}]}'

        response = commit(client, body)

        assert response.status_code == 404
        assert response.json()['error_code'] == 'project_not_found'


class TestHealth:
    """Test liveness endpoints."""

    def test_ping(self, client):
        assert client.get('/api/ping').json() == {'ping': 'pong'}

    def test_unknown_job(self, client):
        assert client.get('/api/import/job/does-not-exist').status_code == 404
