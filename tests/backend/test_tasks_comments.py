"""
Backend Tests - Tasks and Comments
Tests for /api/tasks (creator/assignee rules) and /api/comments
"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from crm_api.database import ProjectComment


@pytest.fixture
def task(client, headers, team):
    """Task created by head H and assigned to manager M"""
    response = client.post('/api/tasks', json={
        'title': 'Measure the room', 'responsible_manager_id': team['manager'].id
    }, headers=headers['head'])
    assert response.status_code == 201
    return response.json()['data']


@pytest.mark.backend
class TestTaskPermissions:
    """Creator edits and deletes, assignee changes status"""

    def test_defaults(self, task, team):
        assert task['status'] == 'new'
        assert task['priority'] == 'medium'
        assert task['creator_manager_id'] == team['head'].id

    def test_assignee_defaults_to_author(self, client, headers, team):
        data = client.post('/api/tasks', json={'title': 'Self'}, headers=headers['other']).json()['data']
        assert data['responsible_manager_id'] == team['other'].id

    def test_assignee_cannot_edit(self, client, headers, task):
        response = client.put(f"/api/tasks/{task['id']}", json={'title': 'X'}, headers=headers['manager'])
        assert response.status_code == 403
        assert response.json()['error'] == 'Only the task creator can edit this task'

    def test_creator_edits(self, client, headers, task):
        response = client.put(f"/api/tasks/{task['id']}", json={'priority': 'high'}, headers=headers['head'])
        assert response.status_code == 200
        assert response.json()['data']['priority'] == 'high'
        assert response.json()['data']['title'] == 'Measure the room'

    def test_creator_cannot_change_status(self, client, headers, task):
        response = client.put(f"/api/tasks/{task['id']}/status", json={'status': 'done'},
                              headers=headers['head'])
        assert response.status_code == 403
        assert response.json()['error'] == 'Only the assignee can change the task status'

    def test_assignee_changes_status(self, client, headers, task):
        response = client.put(f"/api/tasks/{task['id']}/status", json={'status': 'in_progress'},
                              headers=headers['manager'])
        assert response.status_code == 200
        assert response.json()['data']['status'] == 'in_progress'

    def test_invalid_status_rejected(self, client, headers, task):
        response = client.put(f"/api/tasks/{task['id']}/status", json={'status': 'paused'},
                              headers=headers['manager'])
        assert response.status_code == 400

    def test_admin_can_do_both(self, client, headers, task):
        url = f"/api/tasks/{task['id']}"
        assert client.put(url, json={'title': 'Y'}, headers=headers['admin']).status_code == 200
        assert client.put(f"{url}/status", json={'status': 'done'}, headers=headers['admin']).status_code == 200

    def test_assignee_cannot_delete(self, client, headers, task):
        response = client.delete(f"/api/tasks/{task['id']}", headers=headers['manager'])
        assert response.status_code == 403

    def test_outsider_gets_404(self, client, headers, task):
        assert client.get(f"/api/tasks/{task['id']}", headers=headers['other']).status_code == 404
        assert client.delete(f"/api/tasks/{task['id']}", headers=headers['other']).status_code == 404

    def test_creator_deletes(self, client, headers, task):
        assert client.delete(f"/api/tasks/{task['id']}", headers=headers['head']).status_code == 200
        assert client.get(f"/api/tasks/{task['id']}", headers=headers['head']).status_code == 404


@pytest.mark.backend
class TestTaskListing:
    """Task list is scoped by assignee or creator"""

    def test_visible_to_assignee_and_creator(self, client, headers, task):
        for name in ('manager', 'head', 'admin'):
            ids = [t['id'] for t in client.get('/api/tasks', headers=headers[name]).json()['data']]
            assert ids == [task['id']], name
        assert client.get('/api/tasks', headers=headers['other']).json()['data'] == []

    def test_status_filter(self, client, headers, task):
        assert client.get('/api/tasks?status=done', headers=headers['manager']).json()['data'] == []
        data = client.get('/api/tasks?status=new', headers=headers['manager']).json()['data']
        assert len(data) == 1

    def test_link_to_invisible_project(self, client, headers):
        project = client.post('/api/projects', json={'name': 'Theirs'}, headers=headers['other']).json()['data']
        response = client.post('/api/tasks', json={'title': 'T', 'project_id': project['id']},
                               headers=headers['manager'])
        assert response.status_code == 404


@pytest.mark.backend
class TestCommentsEndpoints:
    """Tests for /api/comments/projects and /api/comments/subprojects"""

    @pytest.fixture
    def project(self, client, headers):
        return client.post('/api/projects', json={'name': 'P'}, headers=headers['manager']).json()['data']

    def test_create_and_list_in_order(self, client, headers, project):
        url = f"/api/comments/projects/{project['id']}"
        first = client.post(url, json={'content': 'first'}, headers=headers['manager'])
        assert first.status_code == 201
        client.post(url, json={'content': 'second'}, headers=headers['head'])

        data = client.get(url, headers=headers['manager']).json()['data']
        assert [c['content'] for c in data] == ['first', 'second']
        assert data[0]['project_id'] == project['id']

    def test_empty_comment_rejected(self, client, headers, project):
        response = client.post(f"/api/comments/projects/{project['id']}", json={'content': '  '},
                               headers=headers['manager'])
        assert response.status_code == 400
        assert response.json()['error'] == 'Comment content or file is required'

    def test_file_only_comment(self, client, headers, project):
        response = client.post(f"/api/comments/projects/{project['id']}", json={
            'file_url': '/uploads/1_plan.pdf', 'file_name': 'plan.pdf', 'file_type': 'application/pdf'
        }, headers=headers['manager'])
        assert response.status_code == 201
        assert response.json()['data']['content'] == ''

    def test_only_author_edits(self, client, headers, project):
        url = f"/api/comments/projects/{project['id']}"
        comment = client.post(url, json={'content': 'mine'}, headers=headers['manager']).json()['data']

        response = client.put(f"{url}/{comment['id']}", json={'content': 'hijack'}, headers=headers['admin'])
        assert response.status_code == 403
        assert response.json()['error'] == 'Only the author can edit this comment'

        response = client.put(f"{url}/{comment['id']}", json={'content': 'edited'}, headers=headers['manager'])
        assert response.json()['data']['content'] == 'edited'

    def test_head_cannot_delete_subordinate_comment(self, client, headers, project):
        url = f"/api/comments/projects/{project['id']}"
        comment = client.post(url, json={'content': 'mine'}, headers=headers['manager']).json()['data']
        response = client.delete(f"{url}/{comment['id']}", headers=headers['head'])
        assert response.status_code == 403

    def test_delete_is_soft(self, client, headers, project, db_session):
        url = f"/api/comments/projects/{project['id']}"
        comment = client.post(url, json={'content': 'bye'}, headers=headers['manager']).json()['data']

        assert client.delete(f"{url}/{comment['id']}", headers=headers['admin']).status_code == 200
        assert client.get(url, headers=headers['manager']).json()['data'] == []
        assert client.get(f"{url}/{comment['id']}", headers=headers['manager']).status_code == 404

        db_session.expire_all()
        assert db_session.get(ProjectComment, comment['id']).is_deleted is True

    def test_subproject_comments(self, client, headers, project):
        subproject = client.post('/api/subprojects', json={'name': 'S', 'project_id': project['id']},
                                 headers=headers['manager']).json()['data']
        url = f"/api/comments/subprojects/{subproject['id']}"
        response = client.post(url, json={'content': 'note'}, headers=headers['manager'])
        assert response.status_code == 201
        assert response.json()['data']['subproject_id'] == subproject['id']
        assert client.get(url, headers=headers['other']).status_code == 404

    def test_comment_of_other_project_not_found(self, client, headers, project):
        other_project = client.post('/api/projects', json={'name': 'P2'}, headers=headers['manager']).json()['data']
        comment = client.post(f"/api/comments/projects/{project['id']}", json={'content': 'x'},
                              headers=headers['manager']).json()['data']
        response = client.get(f"/api/comments/projects/{other_project['id']}/{comment['id']}",
                              headers=headers['manager'])
        assert response.status_code == 404
        assert response.json()['error'] == 'Comment not found'
