"""
Tests for metadata discovery.
"""

from backend.models import Area, Project, System
from backend.models.import_types import MetadataType, ParsedRow, ValidationResult, ValidationStatus
from services.metadata_discovery_service import MetadataDiscoveryService, extract_unique_metadata


def valid(row_number, **fields):
    data = ParsedRow(drawing='P-001', type='valve', qty=1, cmdty_code=f"VB-{row_number}",
                     row_number=row_number, **fields)
    return ValidationResult(row_number=row_number, status=ValidationStatus.VALID, data=data)


def skipped(row_number):
    return ValidationResult(row_number=row_number, status=ValidationStatus.SKIPPED,
                            reason='Unsupported component type: Gasket',
                            category='unsupported_type')


class TestExtractUniqueMetadata:
    """Test collecting distinct values from valid rows."""

    def test_distinct_sorted_trimmed(self):
        results = [
            valid(1, area='North', system='HC-05'),
            valid(2, area=' North ', system='HC-01'),
            valid(3, area='  ', test_package='TP-9'),
        ]

        unique = extract_unique_metadata(results)

        assert unique[MetadataType.AREA] == ['North']
        assert unique[MetadataType.SYSTEM] == ['HC-01', 'HC-05']
        assert unique[MetadataType.TEST_PACKAGE] == ['TP-9']

    def test_non_valid_rows_ignored(self):
        unique = extract_unique_metadata([skipped(1)])
        assert unique == {MetadataType.AREA: [], MetadataType.SYSTEM: [], MetadataType.TEST_PACKAGE: []}


class TestMetadataDiscoveryService:
    """Test existence checks against a project."""

    def test_new_system_reported_as_missing(self, session, project):
        results = [valid(i, system='HC-05') for i in range(1, 157)]

        discovery = MetadataDiscoveryService(session).discover(project.id, results)

        assert len(discovery.systems) == 1
        assert discovery.systems[0].value == 'HC-05'
        assert discovery.systems[0].exists is False
        assert discovery.systems[0].resolved_id is None
        assert discovery.to_create().systems == ['HC-05']
        assert discovery.will_create_count == 1

    def test_existing_values_resolved(self, session, project):
        area = Area(project_id=project.id, name='North')
        session.add(area)
        session.commit()

        results = [valid(1, area='North', system='HC-05'), valid(2, area='South')]
        discovery = MetadataDiscoveryService(session).discover(project.id, results)

        by_value = {d.value: d for d in discovery.areas}
        assert by_value['North'].exists is True
        assert by_value['North'].resolved_id == area.id
        assert by_value['South'].exists is False
        assert discovery.total_count == 3
        assert discovery.existing_count == 1
        assert discovery.will_create_count == 2
        assert discovery.to_create().areas == ['South']

    def test_values_scoped_to_project(self, session, project):
        other = Project(name='Other project')
        session.add(other)
        session.flush()
        session.add(System(project_id=other.id, name='HC-05'))
        session.commit()

        discovery = MetadataDiscoveryService(session).discover(project.id, [valid(1, system='HC-05')])

        assert discovery.systems[0].exists is False

    def test_without_project_everything_is_new(self, session):
        discovery = MetadataDiscoveryService(session).discover(None, [valid(1, area='North')])

        assert discovery.areas[0].exists is False
        assert discovery.will_create_count == 1

    def test_without_session(self):
        discovery = MetadataDiscoveryService().discover(1, [valid(1, system='HC-05')])
        assert discovery.systems[0].exists is False
