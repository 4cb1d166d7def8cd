"""
Backend Tests - API Endpoints
Envelope, visibility scoping, managers, counterparties, settings and activity log
"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from crm_api.database import ActivityLog, Counterparty, Project, Sale


def create_project(client, headers, **fields):
    payload = {'name': 'Project'}
    payload.update(fields)
    response = client.post('/api/projects', json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()['data']


@pytest.mark.backend
class TestHealthEndpoint:
    """Tests for / and /health"""

    def test_root_returns_status(self, client):
        response = client.get('/')
        assert response.status_code == 200
        assert response.json()['status'] == 'running'

    def test_health_check(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.json() == {'status': 'healthy'}


@pytest.mark.backend
class TestErrorEnvelope:
    """All errors use {success: false, error}"""

    def test_unauthorized_returns_401(self, client):
        response = client.get('/api/projects')
        assert response.status_code == 401
        assert response.json()['success'] is False

    def test_non_numeric_id_is_400(self, client, headers):
        response = client.get('/api/projects/abc', headers=headers['admin'])
        assert response.status_code == 400
        body = response.json()
        assert body['error'] == 'Validation error'
        assert body['details']

    def test_missing_record_is_404(self, client, headers):
        response = client.get('/api/projects/999', headers=headers['admin'])
        assert response.status_code == 404
        assert response.json() == {'success': False, 'error': 'Project not found'}

    def test_unknown_route_is_404(self, client, headers):
        response = client.get('/api/nothing-here', headers=headers['admin'])
        assert response.status_code == 404
        assert response.json()['success'] is False


@pytest.mark.backend
class TestVisibilityScenario:
    """M owns P; head H sees it; unrelated manager O gets 404"""

    @pytest.fixture
    def project(self, client, headers):
        return create_project(client, headers['manager'], name='P')

    def test_creator_becomes_main_responsible(self, project, team):
        assert project['main_responsible_manager_id'] == team['manager'].id

    def test_head_sees_subordinate_project(self, client, headers, project):
        response = client.get(f"/api/projects/{project['id']}", headers=headers['head'])
        assert response.status_code == 200
        listed = client.get('/api/projects', headers=headers['head']).json()['data']
        assert [p['id'] for p in listed] == [project['id']]

    def test_admin_sees_everything(self, client, headers, project):
        response = client.get(f"/api/projects/{project['id']}", headers=headers['admin'])
        assert response.status_code == 200

    def test_outsider_gets_404_not_403(self, client, headers, project):
        url = f"/api/projects/{project['id']}"
        assert client.get(url, headers=headers['other']).status_code == 404
        assert client.put(url, json={'name': 'X'}, headers=headers['other']).status_code == 404
        assert client.delete(url, headers=headers['other']).status_code == 404
        assert client.get('/api/projects', headers=headers['other']).json()['data'] == []

    def test_outsider_cannot_reach_children(self, client, headers, project):
        subproject = client.post('/api/subprojects', json={
            'name': 'S', 'project_id': project['id']
        }, headers=headers['manager']).json()['data']
        assert client.get(f"/api/subprojects/{subproject['id']}", headers=headers['other']).status_code == 404
        assert client.get(f"/api/comments/projects/{project['id']}", headers=headers['other']).status_code == 404

    def test_secondary_responsible_gains_visibility(self, client, headers, team, project):
        response = client.post(f"/api/projects/{project['id']}/managers", json={
            'manager_id': team['other'].id
        }, headers=headers['manager'])
        assert response.status_code == 201
        assert client.get(f"/api/projects/{project['id']}", headers=headers['other']).status_code == 200

    def test_head_does_not_see_unrelated_manager(self, client, headers):
        create_project(client, headers['other'], name='Q')
        assert client.get('/api/projects', headers=headers['head']).json()['data'] == []


@pytest.mark.backend
class TestPagination:
    """page/limit wrap the list with pagination metadata"""

    @pytest.fixture
    def counterparties(self, client, headers):
        for i in range(5):
            client.post('/api/counterparties', json={'name': f'C{i}'}, headers=headers['admin'])

    def test_without_page_returns_all(self, client, headers, counterparties):
        body = client.get('/api/counterparties', headers=headers['admin']).json()
        assert len(body['data']) == 5
        assert 'pagination' not in body

    def test_page_and_limit(self, client, headers, counterparties):
        body = client.get('/api/counterparties?page=2&limit=2', headers=headers['admin']).json()
        assert [c['name'] for c in body['data']] == ['C2', 'C3']
        assert body['pagination'] == {'page': 2, 'limit': 2, 'total': 5, 'totalPages': 3}

    def test_limit_above_maximum_rejected(self, client, headers):
        response = client.get('/api/counterparties?page=1&limit=501', headers=headers['admin'])
        assert response.status_code == 400


@pytest.mark.backend
class TestManagersEndpoints:
    """Tests for /api/managers"""

    def test_manager_sees_only_self(self, client, headers, team):
        data = client.get('/api/managers', headers=headers['manager']).json()['data']
        assert [m['id'] for m in data] == [team['manager'].id]

    def test_head_sees_direct_subordinates(self, client, headers, team):
        data = client.get('/api/managers', headers=headers['head']).json()['data']
        assert {m['id'] for m in data} == {team['head'].id, team['manager'].id}

    def test_response_has_graph_but_no_password(self, client, headers, team):
        data = client.get(f"/api/managers/{team['manager'].id}", headers=headers['admin']).json()['data']
        assert data['supervisor_ids'] == [team['head'].id]
        assert 'password_hash' not in data

    def test_create_requires_admin(self, client, headers):
        response = client.post('/api/managers', json={
            'first_name': 'N', 'last_name': 'M', 'email': 'n@example.com', 'password': 'secret1'
        }, headers=headers['head'])
        assert response.status_code == 403

    def test_admin_creates_manager_with_supervisor(self, client, headers, team):
        response = client.post('/api/managers', json={
            'first_name': 'N', 'last_name': 'M', 'email': 'New@Example.com',
            'password': 'secret1', 'role': 'manager', 'supervisor_ids': [team['head'].id]
        }, headers=headers['admin'])
        assert response.status_code == 201
        data = response.json()['data']
        assert data['email'] == 'new@example.com'
        assert data['supervisor_ids'] == [team['head'].id]

        head_view = client.get('/api/managers', headers=headers['head']).json()['data']
        assert data['id'] in {m['id'] for m in head_view}

    def test_duplicate_email_conflict(self, client, headers):
        response = client.post('/api/managers', json={
            'first_name': 'N', 'last_name': 'M', 'email': 'M@example.com', 'password': 'secret1'
        }, headers=headers['admin'])
        assert response.status_code == 409
        assert response.json()['error'] == 'Email already exists'

    def test_invalid_role_rejected(self, client, headers):
        response = client.post('/api/managers', json={
            'first_name': 'N', 'last_name': 'M', 'email': 'x@example.com',
            'password': 'secret1', 'role': 'owner'
        }, headers=headers['admin'])
        assert response.status_code == 400

    def test_unknown_supervisor_is_404(self, client, headers, team):
        response = client.put(f"/api/managers/{team['other'].id}/supervisors", json={
            'supervisor_ids': [999]
        }, headers=headers['admin'])
        assert response.status_code == 404

    def test_self_supervision_rejected(self, client, headers, team):
        response = client.put(f"/api/managers/{team['other'].id}/supervisors", json={
            'supervisor_ids': [team['other'].id]
        }, headers=headers['admin'])
        assert response.status_code == 400

    def test_second_supervisor_extends_visibility(self, client, headers, team):
        response = client.put(f"/api/managers/{team['other'].id}/supervisors", json={
            'supervisor_ids': [team['head'].id]
        }, headers=headers['admin'])
        assert response.status_code == 200
        data = client.get('/api/managers', headers=headers['head']).json()['data']
        assert team['other'].id in {m['id'] for m in data}

    def test_admin_clears_phone_number(self, client, headers, team):
        url = f"/api/managers/{team['other'].id}"
        client.put(url, json={'phone_number': '+380501112233'}, headers=headers['admin'])
        response = client.put(url, json={'phone_number': None}, headers=headers['admin'])
        assert response.status_code == 200
        assert response.json()['data']['phone_number'] is None
        assert response.json()['data']['email'] == 'o@example.com'

    def test_admin_cannot_delete_self(self, client, headers, team):
        response = client.delete(f"/api/managers/{team['admin'].id}", headers=headers['admin'])
        assert response.status_code == 400

    def test_delete_manager_keeps_records(self, client, headers, team, db_session):
        project = create_project(client, headers['manager'])
        response = client.delete(f"/api/managers/{team['manager'].id}", headers=headers['admin'])
        assert response.status_code == 200

        db_session.expire_all()
        kept = db_session.get(Project, project['id'])
        assert kept is not None
        assert kept.main_responsible_manager_id is None


@pytest.mark.backend
class TestSettingsEndpoints:
    """Tests for /api/settings"""

    def test_get_profile(self, client, headers, team):
        data = client.get('/api/settings/profile', headers=headers['manager']).json()['data']
        assert data['id'] == team['manager'].id

    def test_update_profile(self, client, headers):
        response = client.put('/api/settings/profile', json={
            'first_name': 'Renamed', 'phone_number': '+100'
        }, headers=headers['manager'])
        assert response.status_code == 200
        assert response.json()['data']['first_name'] == 'Renamed'
        assert response.json()['data']['phone_number'] == '+100'

    def test_profile_email_taken(self, client, headers):
        response = client.put('/api/settings/profile', json={
            'email': 'head@example.com'
        }, headers=headers['manager'])
        assert response.status_code == 409

    def test_change_password_wrong_current(self, client, headers):
        response = client.post('/api/settings/change-password', json={
            'current_password': 'bad', 'new_password': 'newsecret'
        }, headers=headers['manager'])
        assert response.status_code == 400
        assert response.json()['error'] == 'Current password is incorrect'

    def test_change_password_then_login(self, client, headers):
        response = client.post('/api/settings/change-password', json={
            'current_password': 'secret123', 'new_password': 'newsecret'
        }, headers=headers['manager'])
        assert response.status_code == 200
        login = client.post('/api/auth/login', json={
            'email': 'm@example.com', 'password': 'newsecret'
        })
        assert login.status_code == 200


@pytest.mark.backend
class TestCounterpartiesEndpoints:
    """Tests for /api/counterparties"""

    def test_create_defaults_owner_to_author(self, client, headers, team):
        response = client.post('/api/counterparties', json={
            'name': 'Acme', 'type': 'legal_entity'
        }, headers=headers['manager'])
        assert response.status_code == 201
        data = response.json()['data']
        assert data['responsible_manager_id'] == team['manager'].id
        assert data['type'] == 'legal_entity'

    def test_invalid_type_rejected(self, client, headers):
        response = client.post('/api/counterparties', json={
            'name': 'Acme', 'type': 'company'
        }, headers=headers['manager'])
        assert response.status_code == 400

    def test_scoped_listing(self, client, headers):
        client.post('/api/counterparties', json={'name': 'Mine'}, headers=headers['manager'])
        client.post('/api/counterparties', json={'name': 'Theirs'}, headers=headers['other'])
        names = [c['name'] for c in client.get('/api/counterparties', headers=headers['manager']).json()['data']]
        assert names == ['Mine']
        head_names = [c['name'] for c in client.get('/api/counterparties', headers=headers['head']).json()['data']]
        assert head_names == ['Mine']

    def test_update_and_delete(self, client, headers, db_session):
        counterparty = client.post('/api/counterparties', json={'name': 'Acme'},
                                   headers=headers['manager']).json()['data']
        project = create_project(client, headers['manager'], counterparty_id=counterparty['id'])
        client.post('/api/sales', json={'counterparty_id': counterparty['id']}, headers=headers['manager'])

        url = f"/api/counterparties/{counterparty['id']}"
        updated = client.put(url, json={'phone': '123'}, headers=headers['manager']).json()['data']
        assert updated['phone'] == '123'
        assert updated['name'] == 'Acme'

        assert client.delete(url, headers=headers['manager']).status_code == 200
        db_session.expire_all()
        assert db_session.get(Counterparty, counterparty['id']) is None
        assert db_session.get(Project, project['id']).counterparty_id is None
        assert db_session.query(Sale).count() == 0


@pytest.mark.backend
class TestActivityLog:
    """Tests for /api/activity"""

    def test_admin_only(self, client, headers):
        assert client.get('/api/activity', headers=headers['head']).status_code == 403

    def test_mutations_are_logged(self, client, headers):
        project = create_project(client, headers['manager'])
        body = client.get(f"/api/activity?entity_type=project&entity_id={project['id']}",
                          headers=headers['admin']).json()
        assert [a['action_type'] for a in body['data']] == ['create']

    def test_login_is_logged(self, client, team, db_session):
        client.post('/api/auth/login', json={'email': 'm@example.com', 'password': 'secret123'})
        db_session.expire_all()
        entry = db_session.query(ActivityLog).filter(ActivityLog.action_type == 'login').one()
        assert entry.manager_id == team['manager'].id
