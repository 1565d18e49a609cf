"""
Preview Service - the analyze side of a takeoff import.

Runs column mapping, row validation and metadata discovery, then
aggregates everything into a PreviewState the user reviews before
committing. Nothing here writes to the database.
"""

import logging
from collections import OrderedDict
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from backend.models.import_types import (
    ColumnMappingResult, ImportPayload, MetadataDiscoveryResult, PreviewState,
    ValidationResult, ValidationStatus
)
from services.column_mapping_service import map_columns, required_fields_resolved
from services.metadata_discovery_service import MetadataDiscoveryService
from services.normalization_service import component_count
from services.row_validation_service import (
    DEFAULT_VALIDATION_RULES, ValidationRules, RowValidator, summarize
)
from services.tabular_reader import read_tabular_file

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 10
DEFAULT_MAX_PAYLOAD_BYTES = int(5.5 * 1024 * 1024)  # effective limit, under the 6MB transport limit


class PayloadTooLargeError(ValueError):
    """Payload exceeds the row or size ceiling of the commit boundary."""

    def __init__(self, message: str, size_bytes: int = 0, row_count: int = 0):
        super().__init__(message)
        self.size_bytes = size_bytes
        self.row_count = row_count


def payload_size_bytes(payload: ImportPayload) -> int:
    """Size of the payload as sent over the wire (UTF-8 JSON)."""
    return len(payload.model_dump_json().encode('utf-8'))


def check_payload_size(payload: ImportPayload,
                       max_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
                       max_rows: int = DEFAULT_VALIDATION_RULES.max_rows) -> int:
    """
    Client-side ceiling check before sending a payload.

    Advisory only; the committer re-checks authoritatively.

    Returns:
        Payload size in bytes

    Raises:
        PayloadTooLargeError: when either ceiling is exceeded
    """
    row_count = len(payload.rows)
    if row_count > max_rows:
        raise PayloadTooLargeError(
            f"Payload has {row_count} rows; the limit is {max_rows}",
            row_count=row_count
        )

    size = payload_size_bytes(payload)
    if size > max_bytes:
        raise PayloadTooLargeError(
            f"Payload is {size / (1024 * 1024):.2f}MB; the limit is "
            f"{max_bytes / (1024 * 1024):.2f}MB. Split the file and import it in parts.",
            size_bytes=size,
            row_count=row_count
        )
    return size


def _component_counts(results: Sequence[ValidationResult]) -> Dict[str, int]:
    """Components each type will create, in first-seen order."""
    counts: Dict[str, int] = OrderedDict()
    for result in results:
        if result.status != ValidationStatus.VALID:
            continue
        row = result.data
        counts[row.type] = counts.get(row.type, 0) + component_count(row.type, row.qty)
    return dict(counts)


def build_preview(
    file_name: str,
    file_size: int,
    mapping_result: ColumnMappingResult,
    results: List[ValidationResult],
    discovery: MetadataDiscoveryResult,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    rules: ValidationRules = DEFAULT_VALIDATION_RULES
) -> PreviewState:
    """
    Aggregate mapping, validation and discovery into a PreviewState.

    Commit is allowed only when no row has status error and every required
    field is mapped by exactly one header. Row and size ceilings are
    reported as advisory warnings; the committer enforces them.
    """
    summary = summarize(results)
    mappings_ok = required_fields_resolved(mapping_result, rules.required_fields)

    blocking: List[str] = []
    for field in mapping_result.missing_required_fields:
        contested = [h for h, fields in mapping_result.ambiguous_headers.items() if field in fields]
        if contested:
            blocking.append(f"Required column {field} is ambiguous: "
                            f"{', '.join(contested)} match several fields")
        else:
            blocking.append(f"Required column {field} is not mapped")
    if summary.error_count:
        blocking.append(f"{summary.error_count} row(s) have errors")

    warnings: List[str] = []
    if summary.total_rows > rules.max_rows:
        warnings.append(f"File has {summary.total_rows} rows; an import is limited to "
                        f"{rules.max_rows}. Split the file before committing.")
    if file_size > rules.max_file_size:
        warnings.append(f"File is {file_size / (1024 * 1024):.2f}MB; the limit is "
                        f"{rules.max_file_size / (1024 * 1024):.2f}MB")

    valid_rows = [r.data for r in results if r.status == ValidationStatus.VALID]

    preview = PreviewState(
        file_name=file_name,
        file_size=file_size,
        total_rows=summary.total_rows,
        valid_rows=summary.valid_count,
        skipped_rows=summary.skipped_count,
        error_rows=summary.error_count,
        column_mappings=list(mapping_result.mappings),
        unmapped_columns=list(mapping_result.unmapped_columns),
        ambiguous_headers=dict(mapping_result.ambiguous_headers),
        missing_required_fields=list(mapping_result.missing_required_fields),
        validation_results=list(results),
        metadata_discovery=discovery,
        sample_rows=valid_rows[:sample_size],
        component_counts=_component_counts(results),
        blocking_reasons=blocking,
        limit_warnings=warnings,
        can_commit=summary.error_count == 0 and mappings_ok
    )

    logger.info(f"Preview for {file_name}: {preview.valid_rows}/{preview.total_rows} valid, "
                f"can_commit={preview.can_commit}")
    return preview


def build_import_payload(preview: PreviewState, project_id: int) -> ImportPayload:
    """
    Build the commit payload from a preview.

    Carries valid rows only, the mappings as audit trail and the metadata
    that did not exist at analysis time.

    Raises:
        ValueError: when the preview does not allow a commit
    """
    if not preview.can_commit:
        raise ValueError(f"Import is blocked: {'; '.join(preview.blocking_reasons)}")

    return ImportPayload(
        project_id=project_id,
        rows=preview.valid_payload_rows(),
        column_mappings=preview.column_mappings,
        metadata_to_create=preview.metadata_discovery.to_create()
    )


class PreviewService:
    """
    Framework-agnostic analyze workflow.

    Mapper, validator, discoverer and aggregator in sequence, with
    progress callback support for API and CLI integration.
    """

    def __init__(
        self,
        db_session: Optional[Session] = None,
        progress_callback: Optional[Callable[[str, float, str], None]] = None,
        rules: ValidationRules = DEFAULT_VALIDATION_RULES,
        sample_size: int = DEFAULT_SAMPLE_SIZE
    ):
        """
        Initialize preview service.

        Args:
            db_session: SQLAlchemy session used for metadata lookups only
            progress_callback: Optional callback for progress updates
                              Signature: callback(stage: str, percent: float, message: str)
            rules: Validation rule set
            sample_size: Number of valid rows shown as sample
        """
        self.session = db_session
        self.progress_callback = progress_callback or (lambda *args: None)
        self.rules = rules
        self.sample_size = sample_size

    def _emit_progress(self, stage: str, percent: float, message: str):
        """Emit progress update via callback."""
        self.progress_callback(stage, percent, message)
        logger.info(f"Progress: {stage} ({percent:.1f}%) - {message}")

    def analyze(self, file_name: str, headers: Sequence[str], rows: Sequence[Dict[str, str]],
                project_id: Optional[int] = None, file_size: int = 0) -> PreviewState:
        """
        Analyze parsed file contents.

        Args:
            file_name: Original file name
            headers: Header row
            rows: Data rows keyed by header
            project_id: Target project, None when it does not exist yet
            file_size: Size of the uploaded file in bytes

        Returns:
            PreviewState
        """
        self._emit_progress('mapping', 10, 'Detecting columns...')
        mapping_result = map_columns(headers, required_fields=self.rules.required_fields)

        self._emit_progress('validation', 30, f"Validating {len(rows)} rows...")
        validator = RowValidator(mapping_result.lookup(), self.rules)
        results = validator.validate_rows(rows)

        self._emit_progress('discovery', 70, 'Looking up areas, systems and test packages...')
        discovery = MetadataDiscoveryService(self.session).discover(project_id, results)

        self._emit_progress('preview', 90, 'Building preview...')
        preview = build_preview(
            file_name, file_size, mapping_result, results, discovery,
            sample_size=self.sample_size, rules=self.rules
        )

        self._emit_progress('complete', 100, 'Analysis complete')
        return preview

    def analyze_file(self, file_path: str, project_id: Optional[int] = None) -> PreviewState:
        """Read a .csv/.xlsx/.xlsm file and analyze it."""
        path = Path(file_path)
        self._emit_progress('reading', 5, f"Reading {path.name}...")
        headers, rows = read_tabular_file(path)
        return self.analyze(path.name, headers, rows, project_id, file_size=path.stat().st_size)
