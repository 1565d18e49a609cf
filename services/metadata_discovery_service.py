"""
Metadata Discovery Service - find which area/system/test package values exist.

Runs during analysis only and never writes. The commit transaction
re-resolves every value itself, so a value created between analysis and
commit is simply reused.
"""

import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from backend.models.import_types import (
    MetadataDiscovery, MetadataDiscoveryResult, MetadataType, ValidationResult, ValidationStatus
)
from backend.models.schema import REFERENCE_MODELS

logger = logging.getLogger(__name__)

# ParsedRow attribute holding each category type
METADATA_FIELDS = {
    MetadataType.AREA: 'area',
    MetadataType.SYSTEM: 'system',
    MetadataType.TEST_PACKAGE: 'test_package',
}


def extract_unique_metadata(results: Sequence[ValidationResult]) -> Dict[MetadataType, List[str]]:
    """
    Collect distinct metadata values from valid rows.

    Values are trimmed, blanks dropped, deduplicated per type and sorted.
    Skipped and error rows never contribute.
    """
    values: Dict[MetadataType, set] = {t: set() for t in METADATA_FIELDS}

    for result in results:
        if result.status != ValidationStatus.VALID:
            continue
        for metadata_type, attr in METADATA_FIELDS.items():
            value = getattr(result.data, attr)
            if value and value.strip():
                values[metadata_type].add(value.strip())

    return {t: sorted(v) for t, v in values.items()}


class MetadataDiscoveryService:
    """Resolve discovered metadata values against a project."""

    def __init__(self, db_session: Optional[Session] = None):
        """
        Args:
            db_session: SQLAlchemy session; without one every value is
                        reported as not existing
        """
        self.session = db_session

    def _existing_ids(self, project_id: int, metadata_type: MetadataType,
                      names: List[str]) -> Dict[str, int]:
        """One batched IN query for all names of a type."""
        if not names or self.session is None or project_id is None:
            return {}
        model = REFERENCE_MODELS[metadata_type.value]
        rows = (
            self.session.query(model.id, model.name)
            .filter(model.project_id == project_id)
            .filter(model.name.in_(names))
            .all()
        )
        return {name: id_ for id_, name in rows}

    def discover(self, project_id: Optional[int],
                 results: Sequence[ValidationResult]) -> MetadataDiscoveryResult:
        """
        Report every distinct value and whether it already exists.

        Args:
            project_id: Target project, None for a project not yet created
            results: Validation results of the file

        Returns:
            MetadataDiscoveryResult grouped by type
        """
        unique = extract_unique_metadata(results)
        grouped: Dict[MetadataType, List[MetadataDiscovery]] = {}

        for metadata_type, names in unique.items():
            existing = self._existing_ids(project_id, metadata_type, names)
            grouped[metadata_type] = [
                MetadataDiscovery(
                    type=metadata_type,
                    value=name,
                    exists=name in existing,
                    resolved_id=existing.get(name)
                )
                for name in names
            ]

        all_items = [item for items in grouped.values() for item in items]
        existing_count = sum(1 for item in all_items if item.exists)

        logger.info(f"Discovered {len(all_items)} metadata values for project {project_id}: "
                    f"{existing_count} existing, {len(all_items) - existing_count} to create")

        return MetadataDiscoveryResult(
            areas=grouped[MetadataType.AREA],
            systems=grouped[MetadataType.SYSTEM],
            test_packages=grouped[MetadataType.TEST_PACKAGE],
            total_count=len(all_items),
            existing_count=existing_count,
            will_create_count=len(all_items) - existing_count
        )
