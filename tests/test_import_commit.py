"""
Tests for the transactional committer.

Covers reference upserts, drawing resolution, component explosion and the
all-or-nothing behavior on failure.
"""

import pytest

from backend.models import Area, Component, Drawing, ImportBatch, System, TestPackage
from backend.models.import_types import (
    ImportErrorCode, ImportPayload, MetadataToCreate, ParsedRow
)
from services.import_commit_service import ImportCommitService, upsert_reference_values
from services.preview_service import PreviewService, build_import_payload


def payload_from_rows(project_id, headers, rows, session=None):
    preview = PreviewService(session).analyze('takeoff.csv', headers, rows, project_id)
    return build_import_payload(preview, project_id)


def parsed(drawing='P-001', type_='valve', qty=1, cmdty='VB-01', row_number=None, **fields):
    return ParsedRow(drawing=drawing, type=type_, qty=qty, cmdty_code=cmdty,
                     row_number=row_number, **fields)


def counts(session):
    return {
        'components': session.query(Component).count(),
        'drawings': session.query(Drawing).count(),
        'areas': session.query(Area).count(),
        'systems': session.query(System).count(),
        'test_packages': session.query(TestPackage).count(),
        'batches': session.query(ImportBatch).count(),
    }


class TestUpsertReferenceValues:
    """Test create-if-absent reference resolution."""

    def test_creates_missing_values(self, session, project):
        ids, created = upsert_reference_values(session, project.id, 'system', ['HC-05', ' HC-01 ', ''])
        session.commit()

        assert created == 2
        assert set(ids) == {'HC-01', 'HC-05'}
        assert session.query(System).count() == 2

    def test_replay_is_idempotent(self, session, project):
        first, first_created = upsert_reference_values(session, project.id, 'area', ['North', 'South'])
        session.commit()
        second, second_created = upsert_reference_values(session, project.id, 'area', ['North', 'South'])
        session.commit()

        assert first_created == 2
        assert second_created == 0
        assert second == first
        assert session.query(Area).count() == 2

    def test_nothing_requested(self, session, project):
        assert upsert_reference_values(session, project.id, 'test_package', []) == ({}, 0)


class TestCommit:
    """Test successful commits."""

    def test_new_system_created_once_and_linked(self, session, project, takeoff_headers, hc05_rows):
        payload = payload_from_rows(project.id, takeoff_headers, hc05_rows, session)
        assert payload.metadata_to_create.systems == ['HC-05']

        result = ImportCommitService(session).commit(payload)

        assert result.success is True
        assert result.error is None
        assert result.created_counts.components == 156
        assert result.created_counts.systems == 1
        assert result.created_counts.drawings == 16
        assert result.per_type_counts == {'valve': 156}

        system = session.query(System).one()
        assert system.name == 'HC-05'
        linked = session.query(Component).filter(Component.system_id == system.id).count()
        assert linked == 156

    def test_rows_explode_into_components(self, session, project):
        payload = ImportPayload(project_id=project.id, rows=[
            parsed(type_='valve', qty=3, cmdty='VB-01', size='2'),
            parsed(type_='spool', qty=4, cmdty='SP-01'),
        ])

        result = ImportCommitService(session).commit(payload)

        assert result.created_counts.components == 4
        assert result.per_type_counts == {'valve': 3, 'spool': 1}
        keys = sorted(k for (k,) in session.query(Component.identity_key).all())
        assert keys == [
            'spool:P-001-NOSIZE-SP-01-001',
            'valve:P-001-2-VB-01-001',
            'valve:P-001-2-VB-01-002',
            'valve:P-001-2-VB-01-003',
        ]

    def test_component_attributes(self, session, project, takeoff_headers, row_factory):
        payload = payload_from_rows(project.id, takeoff_headers, [row_factory(qty='2')])

        ImportCommitService(session).commit(payload)

        component = session.query(Component).first()
        assert component.attributes['Line Number'] == 'L-100'
        assert component.attributes['spec'] == 'ES-03'
        assert component.attributes['cmdty_code'] == 'VBALU-001'
        assert component.attributes['size'] == '2'
        assert component.attributes['original_qty'] == 2
        assert component.current_milestones == {}

    def test_existing_drawings_reused(self, session, project):
        service = ImportCommitService(session)
        service.commit(ImportPayload(project_id=project.id, rows=[parsed(cmdty='VB-01')]))

        result = ImportCommitService(session).commit(ImportPayload(project_id=project.id, rows=[
            parsed(drawing='p-001', cmdty='VB-02'),
            parsed(drawing='P-002', cmdty='VB-03'),
        ]))

        assert result.success is True
        assert result.created_counts.drawings == 1
        assert result.created_counts.drawings_reused == 1
        assert session.query(Drawing).count() == 2

    def test_drawing_keeps_raw_number(self, session, project, takeoff_headers, row_factory):
        payload = payload_from_rows(project.id, takeoff_headers, [row_factory(drawing='p-001  rev a')])

        ImportCommitService(session).commit(payload)

        drawing = session.query(Drawing).one()
        assert drawing.drawing_no_norm == 'P-001 REV A'
        assert drawing.drawing_no_raw == 'p-001  rev a'

    def test_metadata_created_elsewhere_is_reused(self, session, project):
        session.add(TestPackage(project_id=project.id, name='TP-9'))
        session.commit()

        payload = ImportPayload(
            project_id=project.id,
            rows=[parsed(test_package='TP-9')],
            metadata_to_create=MetadataToCreate(test_packages=['TP-9'])
        )
        result = ImportCommitService(session).commit(payload)

        assert result.success is True
        assert result.created_counts.test_packages == 0
        assert session.query(TestPackage).count() == 1

    def test_import_batch_recorded(self, session, project, takeoff_headers, row_factory):
        payload = payload_from_rows(project.id, takeoff_headers, [row_factory()])

        result = ImportCommitService(session).commit(payload)

        batch = session.query(ImportBatch).one()
        assert batch.row_count == 1
        assert batch.summary['created_counts']['components'] == 1
        assert batch.column_mappings[0]['source_header'] == 'DRAWINGS'
        assert session.query(Component).first().import_batch_id == batch.id
        assert result.duration_ms >= 0

    def test_progress_callback(self, session, project):
        stages = []
        service = ImportCommitService(
            session, progress_callback=lambda stage, percent, message: stages.append(stage)
        )

        service.commit(ImportPayload(project_id=project.id, rows=[parsed()]))

        assert stages[0] == 'validating'
        assert stages[-1] == 'complete'
        assert 'insertion' in stages


class TestCommitFailures:
    """Test that a failed commit leaves the datastore untouched."""

    def test_identical_replay_conflicts(self, session, project, takeoff_headers, hc05_rows):
        payload = payload_from_rows(project.id, takeoff_headers, hc05_rows, session)
        assert ImportCommitService(session).commit(payload).success is True
        before = counts(session)

        result = ImportCommitService(session).commit(payload)

        assert result.success is False
        assert result.error_code == ImportErrorCode.CONFLICT
        assert result.created_counts.is_zero()
        assert result.per_type_counts == {}
        assert 'nothing was imported' in result.error
        assert len(result.details) == 156
        assert result.details[0].issue == 'Component already exists'
        assert counts(session) == before
        assert before['components'] == 156

    def test_partial_collision_rolls_back_everything(self, session, project):
        ImportCommitService(session).commit(ImportPayload(project_id=project.id, rows=[parsed(cmdty='VB-05')]))
        before = counts(session)

        payload = ImportPayload(
            project_id=project.id,
            rows=[parsed(drawing='P-100', cmdty=f"VB-{i:02d}", row_number=i, system='HC-07')
                  for i in range(1, 5)] + [parsed(cmdty='VB-05', row_number=5)],
            metadata_to_create=MetadataToCreate(systems=['HC-07'])
        )
        result = ImportCommitService(session).commit(payload)

        assert result.success is False
        assert result.error_code == ImportErrorCode.CONFLICT
        assert [(d.row, d.context_key) for d in result.details] == [(5, 'valve:P-001-NOSIZE-VB-05-001')]
        assert counts(session) == before

    def test_unresolved_reference_aborts(self, session, project):
        payload = ImportPayload(project_id=project.id, rows=[
            parsed(cmdty='VB-01', row_number=1, system='HC-05'),
            parsed(cmdty='VB-02', row_number=2, system='HC-99'),
        ], metadata_to_create=MetadataToCreate(systems=['HC-05']))

        result = ImportCommitService(session).commit(payload)

        assert result.success is False
        assert result.error_code == ImportErrorCode.UNRESOLVED_REFERENCE
        assert len(result.details) == 1
        assert result.details[0].row == 2
        assert 'HC-99' in result.details[0].issue
        assert counts(session)['systems'] == 0
        assert counts(session)['components'] == 0

    def test_duplicate_keys_within_payload(self, session, project):
        payload = ImportPayload(project_id=project.id, rows=[
            parsed(qty=2, row_number=1),
            parsed(qty=1, row_number=2),
        ])

        result = ImportCommitService(session).commit(payload)

        assert result.success is False
        assert result.details[0].row == 2
        assert counts(session)['components'] == 0
        assert counts(session)['drawings'] == 0

    def test_unknown_component_type(self, session, project):
        result = ImportCommitService(session).commit(
            ImportPayload(project_id=project.id, rows=[parsed(type_='gasket')])
        )

        assert result.success is False
        assert 'gasket' in result.details[0].issue

    def test_project_not_found(self, session):
        result = ImportCommitService(session).commit(ImportPayload(project_id=999, rows=[parsed()]))

        assert result.success is False
        assert result.error_code == ImportErrorCode.PROJECT_NOT_FOUND

    def test_empty_payload(self, session, project):
        result = ImportCommitService(session).commit(ImportPayload(project_id=project.id, rows=[]))

        assert result.success is False
        assert result.error_code == ImportErrorCode.PAYLOAD_LIMIT

    @pytest.mark.parametrize('limits', [{'max_rows': 2}, {'max_payload_bytes': 100}, {'max_components': 2}])
    def test_ceilings_enforced(self, session, project, limits):
        payload = ImportPayload(project_id=project.id, rows=[parsed(cmdty=f"VB-{i}") for i in range(3)])

        result = ImportCommitService(session, **limits).commit(payload)

        assert result.success is False
        assert result.error_code == ImportErrorCode.PAYLOAD_LIMIT
        assert counts(session)['components'] == 0

    def test_exploded_component_ceiling_checked_before_building(self, session, project, monkeypatch):
        def fail_explosion(*args, **kwargs):
            raise AssertionError('components built for an oversized payload')

        monkeypatch.setattr('services.import_commit_service.identity_keys_for_row', fail_explosion)
        payload = ImportPayload(project_id=project.id, rows=[parsed(type_='pipe', qty=10 ** 18)])

        result = ImportCommitService(session).commit(payload)

        assert result.success is False
        assert result.error_code == ImportErrorCode.PAYLOAD_LIMIT
        assert 'components' in result.error
        assert counts(session)['components'] == 0
