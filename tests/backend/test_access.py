"""
Backend Tests - Role Scoped Visibility
Tests for crm_api/access.py: supervisor graph, scopes and visibility policies
"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from crm_api.access import (
    Role, Scope, SupervisorIndex, compute_scope, filter_visible, get_visible_or_404,
    is_visible, load_scope, policy_for, scoped_query
)
from crm_api.database import (
    Counterparty, Manager, Project, ProjectComment, Sale, SubProject, Task
)
from crm_api.errors import NotFoundError


@pytest.mark.backend
class TestSupervisorIndex:
    """Tests for the supervisor adjacency graph"""

    def test_direct_subordinates_are_one_hop(self):
        """Only managers listing the head as supervisor are direct subordinates"""
        index = SupervisorIndex([(3, 2), (5, 3)])
        assert index.direct_subordinates(2) == {3}

    def test_manager_with_two_supervisors_counts_for_both(self):
        """The graph is not a tree"""
        index = SupervisorIndex.from_supervisors({4: [2, 5]})
        assert index.direct_subordinates(2) == {4}
        assert index.direct_subordinates(5) == {4}

    def test_all_subordinates_follows_chain(self):
        index = SupervisorIndex([(3, 2), (5, 3), (6, 5)])
        assert index.all_subordinates(2) == {3, 5, 6}

    def test_all_subordinates_survives_cycle(self):
        """A cycle in the graph must not loop forever or include the head itself"""
        index = SupervisorIndex([(3, 2), (2, 3)])
        assert index.all_subordinates(2) == {3}

    def test_unknown_manager_has_no_subordinates(self):
        assert SupervisorIndex().direct_subordinates(42) == set()


@pytest.mark.backend
class TestComputeScope:
    """Tests for role -> scope mapping"""

    def setup_method(self):
        # H(2) supervises M(3); M(3) supervises X(7)
        self.index = SupervisorIndex([(3, 2), (7, 3)])

    def test_admin_is_unrestricted(self):
        scope = compute_scope('admin', 1, self.index)
        assert scope.unrestricted
        assert scope.includes(999)

    def test_head_sees_self_and_direct_subordinates(self):
        scope = compute_scope('head', 2, self.index)
        assert scope.manager_ids == frozenset({2, 3})

    def test_head_transitive_scope(self):
        scope = compute_scope('head', 2, self.index, transitive=True)
        assert scope.manager_ids == frozenset({2, 3, 7})

    def test_manager_sees_only_self(self):
        scope = compute_scope('manager', 3, self.index)
        assert scope.manager_ids == frozenset({3})

    def test_scope_monotonic_across_roles(self):
        """manager scope is within head scope, head scope is within admin scope"""
        manager = compute_scope(Role.MANAGER.value, 2, self.index)
        head = compute_scope(Role.HEAD.value, 2, self.index)
        admin = compute_scope(Role.ADMIN.value, 2, self.index)
        assert manager.issubset(head)
        assert head.issubset(admin)
        assert not admin.issubset(head)

    def test_scope_includes_none_is_false(self):
        assert not Scope.of({1}).includes(None)


@pytest.mark.backend
class TestRecordPolicies:
    """Tests for the pure allows() checks on unsaved records"""

    def test_counterparty_owner(self):
        record = Counterparty(name='A', responsible_manager_id=3)
        assert is_visible(record, Scope.of({2, 3}))
        assert not is_visible(record, Scope.of({4}))

    def test_sale_without_owner_hidden_from_non_admin(self):
        record = Sale(responsible_manager_id=None)
        assert not is_visible(record, Scope.of({3}))
        assert is_visible(record, Scope.everything())

    def test_task_visible_to_assignee_or_creator(self):
        task = Task(title='t', responsible_manager_id=3, creator_manager_id=5)
        assert is_visible(task, Scope.of({3}))
        assert is_visible(task, Scope.of({5}))
        assert not is_visible(task, Scope.of({4}))

    def test_project_secondary_owner_grants_visibility(self):
        secondary = Manager(id=4, first_name='O', last_name='T', email='o@x', password_hash='x')
        project = Project(name='P', main_responsible_manager_id=3)
        project.secondary_managers = [secondary]
        assert is_visible(project, Scope.of({4}))
        assert is_visible(project, Scope.of({3}))
        assert not is_visible(project, Scope.of({5}))

    def test_project_without_owners_hidden_from_everyone_but_admin(self):
        project = Project(name='Orphan')
        assert not is_visible(project, Scope.of({1, 2, 3}))
        assert is_visible(project, Scope.everything())

    def test_subproject_inherits_project(self):
        project = Project(name='P', main_responsible_manager_id=3)
        subproject = SubProject(name='S', project=project)
        assert is_visible(subproject, Scope.of({3}))
        assert not is_visible(subproject, Scope.of({4}))

    def test_comment_inherits_project(self):
        project = Project(name='P', main_responsible_manager_id=3)
        comment = ProjectComment(content='hi', project=project)
        assert is_visible(comment, Scope.of({3}))
        assert not is_visible(comment, Scope.of({4}))

    def test_filter_visible_keeps_order(self):
        records = [
            Counterparty(name='a', responsible_manager_id=3),
            Counterparty(name='b', responsible_manager_id=4),
            Counterparty(name='c', responsible_manager_id=3),
        ]
        visible = filter_visible(Counterparty, records, Scope.of({3}))
        assert [r.name for r in visible] == ['a', 'c']

    def test_unknown_model_has_no_policy(self):
        with pytest.raises(ValueError):
            policy_for(int)


@pytest.mark.backend
class TestScopedQueries:
    """SQL conditions must agree with the pure checks"""

    def test_load_scope_from_database(self, db_session, team):
        scope = load_scope(db_session, team['head'])
        assert scope.manager_ids == frozenset({team['head'].id, team['manager'].id})
        assert load_scope(db_session, team['admin']).unrestricted

    def test_project_condition_matches_main_and_secondary(self, db_session, team):
        main = Project(name='main', main_responsible_manager_id=team['manager'].id)
        shared = Project(name='shared', main_responsible_manager_id=team['admin'].id)
        shared.secondary_managers = [team['manager']]
        hidden = Project(name='hidden', main_responsible_manager_id=team['other'].id)
        db_session.add_all([main, shared, hidden])
        db_session.commit()

        scope = Scope.of({team['manager'].id})
        names = {p.name for p in scoped_query(db_session, Project, scope)}
        assert names == {'main', 'shared'}
        assert names == {p.name for p in filter_visible(Project, [main, shared, hidden], scope)}

    def test_subproject_condition_uses_parent(self, db_session, team):
        project = Project(name='P', main_responsible_manager_id=team['manager'].id)
        project.subprojects = [SubProject(name='S1'), SubProject(name='S2')]
        other = Project(name='Q', main_responsible_manager_id=team['other'].id)
        other.subprojects = [SubProject(name='S3')]
        db_session.add_all([project, other])
        db_session.commit()

        head_scope = load_scope(db_session, team['head'])
        names = sorted(s.name for s in scoped_query(db_session, SubProject, head_scope))
        assert names == ['S1', 'S2']

    def test_get_visible_or_404_hides_existing_record(self, db_session, team):
        counterparty = Counterparty(name='C', responsible_manager_id=team['manager'].id)
        db_session.add(counterparty)
        db_session.commit()

        with pytest.raises(NotFoundError):
            get_visible_or_404(db_session, Counterparty, counterparty.id, Scope.of({team['other'].id}))
        with pytest.raises(NotFoundError):
            get_visible_or_404(db_session, Counterparty, 9999, Scope.everything())
        found = get_visible_or_404(db_session, Counterparty, counterparty.id, Scope.of({team['manager'].id}))
        assert found.id == counterparty.id
