"""
Test Flask app - pages, JSON API and export endpoints

Run with: pytest tests/test_app.py -v
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json
import random

import pytest

from app import create_app
from vtt.config import AppConfig
from vtt.core.image_selector import ImageSelector
from vtt.persistence import ExportArchive


@pytest.fixture
def config(tmp_path):
    manifest = tmp_path / "manifest.json"
    manifest.write_text(json.dumps({
        category: [f"/{category}/real/r{i}.jpg" for i in range(3)] + [f"/{category}/fake/f{i}.png" for i in range(3)]
        for category in ("L1", "L2", "L3")
    }), encoding='utf-8')
    return AppConfig(
        question_count=4,
        debounce_seconds=0,
        storage_dir=str(tmp_path / "storage"),
        collection_dir=str(tmp_path / "collection"),
        image_root=str(tmp_path / "static"),
        manifest_path=str(manifest),
    )


@pytest.fixture
def app(config):
    selector = ImageSelector(
        question_count=config.question_count,
        manifest_path=config.manifest_path,
        image_root=config.image_root,
        rng=random.Random(1),
    )
    app = create_app(config, image_selector=selector)
    app.config['TESTING'] = True
    yield app
    app.extensions['vtt']['store'].close()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return app.extensions['vtt']['store']


def _login(client):
    response = client.post('/api/profile', json={'supervisor': 'Dr Lim', 'tester': 'Ada Lovelace', 'institution': 'UI'})
    assert response.status_code == 200


def _finish_category(client, category, comment="looks fine"):
    step = client.post(f'/api/test/{category}/start').get_json()['step']
    while step['state'] == 'answering':
        step = client.post(f'/api/test/{category}/answer', json={'isReal': True}).get_json()['step']
    return client.post(f'/api/test/{category}/submit', json={'comment': comment})


# ========================
# Pages and redirects
# ========================

def test_index_page(client):
    response = client.get('/')
    assert response.status_code == 200
    assert b'supervisor' in response.data


@pytest.mark.parametrize("path", ['/dashboard', '/dashboard/L1', '/thankyou'])
def test_protected_pages_redirect_without_identity(client, path):
    response = client.get(path)
    assert response.status_code == 302
    assert response.headers['Location'].endswith('/')


def test_mixed_case_sections_redirect_to_lowercase(client):
    response = client.get('/Dashboard/L1')
    assert response.status_code == 302
    assert response.headers['Location'].endswith('/dashboard/L1')

    response = client.get('/ThankYou')
    assert response.status_code == 302
    assert response.headers['Location'].endswith('/thankyou')


def test_pages_render_with_identity(client):
    _login(client)
    assert client.get('/dashboard').status_code == 200
    assert client.get('/dashboard/l2').status_code == 200
    assert client.get('/dashboard/L9').status_code == 404
    assert client.get('/thankyou').status_code == 200


# ========================
# Profile and dashboard API
# ========================

def test_profile_round_trip(client):
    _login(client)
    info = client.get('/api/profile').get_json()['testerInfo']
    assert info['tester'] == 'Ada Lovelace'
    assert info['faculty'] == ''


@pytest.mark.parametrize("payload", [{'nickname': 'x'}, {'tester': 7}, ["tester"]])
def test_profile_rejects_bad_payloads(client, payload):
    response = client.post('/api/profile', json=payload)
    assert response.status_code == 400
    assert response.get_json()['success'] is False


def test_dashboard_api_requires_identity(client):
    response = client.get('/api/dashboard')
    assert response.status_code == 403
    assert response.get_json()['redirect'] == '/'


def test_dashboard_api(client):
    _login(client)
    data = client.get('/api/dashboard').get_json()
    assert set(data['results']) == {'L1', 'L2', 'L3'}
    assert data['allCompleted'] is False
    assert data['results']['L1']['answeredQuestions'] == 0


# ========================
# Test flow
# ========================

def test_start_requires_identity(client):
    assert client.post('/api/test/L1/start').status_code == 403


def test_full_category_flow(client, store):
    _login(client)

    data = client.post('/api/test/L1/start').get_json()
    assert data['success'] is True
    step = data['step']
    assert step['state'] == 'answering'
    assert step['question']['number'] == 1
    assert step['question']['total'] == 4

    for _ in range(4):
        step = client.post('/api/test/L1/answer', json={'isReal': False}).get_json()['step']
    assert step['state'] == 'reviewing'

    response = client.post('/api/test/L1/submit', json={'comment': '  '})
    assert response.status_code == 409
    assert response.get_json()['illegal']['command'] == 'submit'

    response = client.post('/api/test/L1/submit', json={'comment': 'Real ones are sharper'})
    assert response.status_code == 200
    assert response.get_json()['step']['redirect'] == '/dashboard'

    results = store.get_results('L1')
    assert results['completed'] is True
    assert results['answeredQuestions'] == 4
    assert results['accuracy'] == 50.0
    assert results['specificity'] == 100.0


def test_answer_without_start(client):
    _login(client)
    response = client.post('/api/test/L1/answer', json={'isReal': True})
    assert response.status_code == 400


@pytest.mark.parametrize("payload", [{}, {'isReal': 'yes'}, {'isReal': 1}])
def test_answer_requires_boolean(client, payload):
    _login(client)
    client.post('/api/test/L1/start')
    response = client.post('/api/test/L1/answer', json=payload)
    assert response.status_code == 400


def test_answer_after_review_is_conflict(client):
    _login(client)
    client.post('/api/test/L2/start')
    for _ in range(4):
        client.post('/api/test/L2/answer', json={'isReal': True})

    response = client.post('/api/test/L2/answer', json={'isReal': True})
    assert response.status_code == 409


def test_unknown_category_api(client):
    _login(client)
    assert client.post('/api/test/L9/start').status_code == 404


def test_restart_resumes_progress(client, store):
    _login(client)
    client.post('/api/test/L3/start')
    client.post('/api/test/L3/answer', json={'isReal': True})
    paths = store.get_category_state('L3').image_paths

    step = client.post('/api/test/L3/start').get_json()['step']

    assert step['question']['index'] == 1
    assert store.get_category_state('L3').image_paths == paths


def test_state_is_written_to_storage(client, config):
    _login(client)
    client.post('/api/test/L1/start')
    client.post('/api/test/L1/answer', json={'isReal': True})

    with open(os.path.join(config.storage_dir, 'userData.json'), encoding='utf-8') as f:
        blob = json.load(f)
    assert blob['tester'] == 'Ada Lovelace'
    assert blob['testData']['L1']['answers'][0] is True


# ========================
# Export and reset
# ========================

def test_export_download(client):
    _login(client)
    _finish_category(client, 'L1')

    response = client.get('/api/export/download')

    assert response.status_code == 200
    assert response.mimetype == 'application/json'
    assert 'attachment' in response.headers['Content-Disposition']
    assert 'vtt_results_Ada_Lovelace.json' in response.headers['Content-Disposition']
    doc = json.loads(response.data)
    assert doc['schemaVersion'] == 1
    assert doc['results']['L1']['completed'] is True
    assert doc['overall']['totalAnswered'] == 4


def test_export_save_requires_identity(client):
    assert client.post('/api/export/save').status_code == 403


def test_export_save_and_tester_results(client, config):
    _login(client)
    for category in ('L1', 'L2', 'L3'):
        assert _finish_category(client, category).status_code == 200

    saved = client.post('/api/export/save').get_json()
    assert saved['success'] is True
    assert saved['path'].endswith('vtt_results_Ada_Lovelace.json')

    with open(os.path.join(config.collection_dir, 'broken.json'), 'w', encoding='utf-8') as f:
        f.write('{nope')

    exports = client.get('/api/tester-results').get_json()
    assert len(exports) == 1
    assert exports[0]['testerInfo']['tester'] == 'Ada Lovelace'

    summary = client.get('/api/tester-results/summary').get_json()['summary']
    assert summary['totalTesters'] == 1
    assert summary['combinedConfusion']['overall']['truePositives'] == 6

    excluded = client.get('/api/tester-results/summary', query_string={'exclude': 'Ada Lovelace'}).get_json()
    assert excluded['summary'] is None


def test_tester_results_missing_collection(client):
    response = client.get('/api/tester-results')
    assert response.status_code == 500
    assert response.get_json() == {'error': 'Failed to fetch tester results'}


def test_reset(client, store):
    _login(client)
    client.post('/api/test/L1/start')
    client.post('/api/test/L1/answer', json={'isReal': True})

    response = client.post('/api/reset')

    assert response.get_json()['redirect'] == '/'
    assert store.has_tester_identity() is False
    assert store.get_category_state('L1').image_paths == []
    assert client.get('/dashboard').status_code == 302


def test_archive_shared_with_console(config):
    """Exports saved by the app are readable by a fresh ExportArchive"""
    app = create_app(config)
    client = app.test_client()
    _login(client)
    client.post('/api/export/save')
    app.extensions['vtt']['store'].close()

    assert len(ExportArchive(config.collection_dir).list_exports()) == 1


def test_lowercase_redirect_keeps_query_string(client):
    response = client.get('/Dashboard/L1', query_string={'exclude': 'Ada Lovelace', 'x': '1'})

    assert response.status_code == 302
    location = response.headers['Location']
    assert '/dashboard/L1?' in location
    assert 'exclude=Ada' in location
    assert 'x=1' in location


def test_summary_skips_malformed_collection_files(client, config):
    _login(client)
    _finish_category(client, 'L1')
    client.post('/api/export/save')
    with open(os.path.join(config.collection_dir, 'odd.json'), 'w', encoding='utf-8') as f:
        json.dump({'testerInfo': "x", 'results': [1]}, f)

    response = client.get('/api/tester-results/summary')

    assert response.status_code == 200
    assert response.get_json()['summary']['totalTesters'] == 1


def test_reset_removes_saved_session(client, config):
    _login(client)
    client.post('/api/reset')

    assert not os.path.exists(os.path.join(config.storage_dir, 'userData.json'))
