"""
Backend Tests - Funnels, Stages and Boards
Tests for crm_api/pipeline.py
"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from crm_api.database import (
    Funnel, FunnelStage, Project, SubProject, SubProjectFunnel, SubProjectFunnelStage,
    SubProjectStatusType
)
from crm_api.errors import DomainConflictError, NotFoundError, ValidationFailedError
from crm_api.pipeline import (
    append_stage, build_project_board, build_status_board, create_stage, delete_funnel,
    delete_stage, known_subproject_statuses, move_project_to_stage,
    move_subproject_to_status, next_stage_order, reorder_stages
)


@pytest.mark.backend
class TestStageOrder:
    """Tests for appending stages"""

    def test_empty_funnel_starts_at_one(self):
        assert next_stage_order([]) == 1
        assert next_stage_order([None]) == 1

    def test_next_after_max_not_count(self):
        """Orders need not be contiguous"""
        assert next_stage_order([1, 5, 2]) == 6

    def test_append_stage_in_database(self, db_session):
        funnel = Funnel(name='Sales')
        db_session.add(funnel)
        db_session.flush()

        first = append_stage(db_session, Funnel, FunnelStage, funnel.id, 'Lead')
        explicit = create_stage(db_session, Funnel, FunnelStage, funnel.id, 'Deal', order=10)
        last = append_stage(db_session, Funnel, FunnelStage, funnel.id, 'Closed')
        assert (first.order, explicit.order, last.order) == (1, 10, 11)

    def test_stage_requires_existing_funnel(self, db_session):
        with pytest.raises(NotFoundError):
            append_stage(db_session, Funnel, FunnelStage, 404, 'Lead')


@pytest.mark.backend
class TestProjectMoves:
    """Tests for moving projects between stages and deleting funnels"""

    @pytest.fixture
    def pipeline(self, db_session):
        funnel = Funnel(name='Sales')
        other = Funnel(name='Partners')
        db_session.add_all([funnel, other])
        db_session.flush()
        lead = append_stage(db_session, Funnel, FunnelStage, funnel.id, 'Lead')
        deal = append_stage(db_session, Funnel, FunnelStage, funnel.id, 'Deal')
        partner = append_stage(db_session, Funnel, FunnelStage, other.id, 'Intro')
        project = Project(name='P', funnel_id=funnel.id, funnel_stage_id=lead.id)
        db_session.add(project)
        db_session.commit()
        return {'funnel': funnel, 'other': other, 'lead': lead, 'deal': deal,
                'partner': partner, 'project': project}

    def test_move_sets_stage(self, db_session, pipeline):
        move_project_to_stage(db_session, pipeline['project'], pipeline['deal'].id)
        assert pipeline['project'].funnel_stage_id == pipeline['deal'].id

    def test_move_across_funnels_follows_stage(self, db_session, pipeline):
        """funnel_id always agrees with the stage"""
        move_project_to_stage(db_session, pipeline['project'], pipeline['partner'].id)
        assert pipeline['project'].funnel_id == pipeline['other'].id

    def test_move_to_missing_stage(self, db_session, pipeline):
        with pytest.raises(NotFoundError):
            move_project_to_stage(db_session, pipeline['project'], 999)

    def test_delete_stage_keeps_funnel(self, db_session, pipeline):
        delete_stage(db_session, pipeline['lead'])
        db_session.commit()
        project = db_session.get(Project, pipeline['project'].id)
        assert project.funnel_stage_id is None
        assert project.funnel_id == pipeline['funnel'].id

    def test_delete_funnel_clears_projects_and_stages(self, db_session, pipeline):
        funnel_id = pipeline['funnel'].id
        delete_funnel(db_session, pipeline['funnel'])
        db_session.commit()

        project = db_session.get(Project, pipeline['project'].id)
        assert project.funnel_id is None
        assert project.funnel_stage_id is None
        assert db_session.query(FunnelStage).filter(FunnelStage.funnel_id == funnel_id).count() == 0
        assert db_session.query(FunnelStage).count() == 1

    def test_reorder_stages(self, db_session, pipeline):
        stages = reorder_stages(db_session, pipeline['funnel'],
                                [(pipeline['lead'].id, 5), (pipeline['deal'].id, 1)])
        assert [s.name for s in stages] == ['Deal', 'Lead']

    def test_reorder_rejects_foreign_stage(self, db_session, pipeline):
        with pytest.raises(ValidationFailedError):
            reorder_stages(db_session, pipeline['funnel'], [(pipeline['partner'].id, 1)])


@pytest.mark.backend
class TestBoards:
    """Tests for the pure board builders"""

    def test_project_board_groups_by_stage(self):
        lead = FunnelStage(id=1, name='Lead', order=2)
        deal = FunnelStage(id=2, name='Deal', order=1)
        projects = [
            Project(id=10, name='a', funnel_stage_id=1),
            Project(id=11, name='b', funnel_stage_id=None),
            Project(id=12, name='c', funnel_stage_id=2),
        ]
        board = build_project_board([lead, deal], projects)
        assert [c['stage'].name for c in board['stages']] == ['Deal', 'Lead']
        assert [p.name for p in board['stages'][1]['projects']] == ['a']
        assert [p.name for p in board['unassigned']] == ['b']

    def test_status_board_unknown_label_unassigned(self):
        subprojects = [SubProject(name='x', status='Done'), SubProject(name='y', status='Lost')]
        board = build_status_board(['Planning', 'Done'], subprojects)
        assert [c['status'] for c in board['columns']] == ['Planning', 'Done']
        assert [s.name for s in board['columns'][1]['subprojects']] == ['x']
        assert [s.name for s in board['unassigned']] == ['y']


@pytest.mark.backend
class TestSubProjectStatus:
    """Tests for status label validation"""

    def test_any_label_when_nothing_known(self, db_session):
        subproject = SubProject(name='S', status='')
        move_subproject_to_status(db_session, subproject, 'Whatever')
        assert subproject.status == 'Whatever'

    def test_known_labels_from_dictionary_and_funnels(self, db_session):
        db_session.add(SubProjectStatusType(name='Planning'))
        funnel = SubProjectFunnel(name='Build')
        db_session.add(funnel)
        db_session.flush()
        db_session.add(SubProjectFunnelStage(funnel_id=funnel.id, name='Assembly', order=1))
        db_session.commit()

        assert known_subproject_statuses(db_session) == ['Planning', 'Assembly']

        subproject = SubProject(name='S', status='Planning')
        move_subproject_to_status(db_session, subproject, 'Assembly')
        assert subproject.status == 'Assembly'
        with pytest.raises(DomainConflictError):
            move_subproject_to_status(db_session, subproject, 'Unknown')
