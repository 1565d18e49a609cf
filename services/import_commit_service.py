"""
Import Commit Service - the only writer of takeoff data.

Takes an ImportPayload (valid, normalized rows plus the metadata that did
not exist at analysis time) and persists it in one database transaction:

    1. re-check row count and payload size
    2. verify the project
    3. upsert areas / systems / test packages, read back name -> id maps
    4. resolve or create drawings by normalized number
    5. resolve every row reference; unresolved aborts
    6. explode rows into components and bulk insert them
    7. commit

Any exception rolls the whole transaction back and is reported as a failed
ImportResult with zero created counts.
"""

import logging
import time
from collections import OrderedDict
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.models.import_types import (
    CreatedCounts, ErrorDetail, ImportErrorCode, ImportPayload, ImportResult, MetadataType, ParsedRow
)
from backend.models.schema import REFERENCE_MODELS, Component, Drawing, ImportBatch, Project
from services.normalization_service import (
    component_count, identity_keys_for_row, normalize_drawing, normalize_identifier, normalize_size
)
from services.preview_service import DEFAULT_MAX_PAYLOAD_BYTES, payload_size_bytes
from services.row_validation_service import (
    DEFAULT_MAX_COMPONENTS, DEFAULT_MAX_ROWS, VALID_COMPONENT_TYPES
)

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000

_INSERT_BY_DIALECT = {
    'postgresql': postgresql.insert,
    'sqlite': sqlite.insert,
}

# ParsedRow attribute and ImportBatch/CreatedCounts field per category type
_REFERENCE_FIELDS = OrderedDict([
    (MetadataType.AREA, ('area', 'areas')),
    (MetadataType.SYSTEM, ('system', 'systems')),
    (MetadataType.TEST_PACKAGE, ('test_package', 'test_packages')),
])


class CommitError(Exception):
    """Commit aborted; carries itemized details for the caller."""

    error_code = ImportErrorCode.INTERNAL

    def __init__(self, message: str, details: Optional[List[ErrorDetail]] = None):
        super().__init__(message)
        self.details = details or [ErrorDetail(row=0, issue=message)]


class PayloadLimitError(CommitError):
    """Payload exceeds the row or size ceiling."""

    error_code = ImportErrorCode.PAYLOAD_LIMIT


class ProjectNotFoundError(CommitError):
    """Target project does not exist."""

    error_code = ImportErrorCode.PROJECT_NOT_FOUND


class UnresolvedReferenceError(CommitError):
    """A row references a drawing or metadata value with no id."""

    error_code = ImportErrorCode.UNRESOLVED_REFERENCE


def _row_number(row: ParsedRow, index: int) -> int:
    return row.row_number or index + 1


def _chunks(values: Sequence, size: int = BATCH_SIZE) -> Iterable[Sequence]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _select_name_ids(session: Session, model, project_id: int, names: Sequence[str]) -> Dict[str, int]:
    found: Dict[str, int] = {}
    for chunk in _chunks(list(names)):
        rows = (
            session.query(model.id, model.name)
            .filter(model.project_id == project_id)
            .filter(model.name.in_(chunk))
            .all()
        )
        found.update({name: id_ for id_, name in rows})
    return found


def upsert_reference_values(session: Session, project_id: int, category: str,
                            names: Iterable[str]) -> Tuple[Dict[str, int], int]:
    """
    Create missing reference rows and return their ids.

    Uses INSERT ... ON CONFLICT DO NOTHING on (project_id, name), so a
    concurrent writer or a replay never fails and never duplicates.

    Args:
        session: Session inside the commit transaction (not committed here)
        project_id: Owning project
        category: 'area', 'system' or 'test_package'
        names: Values to ensure

    Returns:
        (name -> id for every requested name, number of rows created)
    """
    model = REFERENCE_MODELS[MetadataType(category).value]
    wanted = sorted({n.strip() for n in names if n and n.strip()})
    if not wanted:
        return {}, 0

    before = _select_name_ids(session, model, project_id, wanted)
    missing = [n for n in wanted if n not in before]

    if missing:
        dialect = session.get_bind().dialect.name
        insert = _INSERT_BY_DIALECT.get(dialect)
        if insert is None:
            raise NotImplementedError(f"Reference upsert is not supported on {dialect}")
        for chunk in _chunks(missing):
            stmt = insert(model).values(
                [{'project_id': project_id, 'name': name} for name in chunk]
            ).on_conflict_do_nothing(index_elements=['project_id', 'name'])
            session.execute(stmt)

    resolved = _select_name_ids(session, model, project_id, wanted)
    created = len([n for n in missing if n in resolved])
    logger.debug(f"Upserted {category}: {len(wanted)} requested, {created} created")
    return resolved, created


class ImportCommitService:
    """
    Framework-agnostic transactional committer.

    One instance handles one commit. Natural key -> id maps are built fresh
    inside each transaction and never cached across commits.
    """

    def __init__(
        self,
        db_session: Session,
        progress_callback: Optional[Callable[[str, float, str], None]] = None,
        max_rows: int = DEFAULT_MAX_ROWS,
        max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
        max_components: int = DEFAULT_MAX_COMPONENTS
    ):
        """
        Initialize commit service.

        Args:
            db_session: SQLAlchemy database session
            progress_callback: Optional callback for progress updates
                              Signature: callback(stage: str, percent: float, message: str)
            max_rows: Row ceiling per import
            max_payload_bytes: Effective payload size ceiling
            max_components: Ceiling on components after quantity explosion
        """
        self.session = db_session
        self.progress_callback = progress_callback or (lambda *args: None)
        self.max_rows = max_rows
        self.max_payload_bytes = max_payload_bytes
        self.max_components = max_components
        self._valid_types = {t.lower() for t in VALID_COMPONENT_TYPES}

    def _emit_progress(self, stage: str, percent: float, message: str):
        """Emit progress update via callback."""
        self.progress_callback(stage, percent, message)
        logger.info(f"Progress: {stage} ({percent:.1f}%) - {message}")

    def check_limits(self, payload: ImportPayload):
        """Authoritative ceiling check. Raises PayloadLimitError."""
        if not payload.rows:
            raise PayloadLimitError('Payload contains no rows to import')
        if len(payload.rows) > self.max_rows:
            raise PayloadLimitError(
                f"Payload has {len(payload.rows)} rows; the limit is {self.max_rows}"
            )
        size = payload_size_bytes(payload)
        if size > self.max_payload_bytes:
            raise PayloadLimitError(
                f"Payload too large: {size / (1024 * 1024):.2f}MB "
                f"(max {self.max_payload_bytes / (1024 * 1024):.2f}MB)"
            )
        # Counted arithmetically, before any component is built
        components = sum(component_count(row.type, row.qty) for row in payload.rows)
        if components > self.max_components:
            raise PayloadLimitError(
                f"Payload explodes into {components} components; the limit is {self.max_components}"
            )

    def _resolve_metadata(self, payload: ImportPayload) -> Tuple[Dict[MetadataType, Dict[str, int]], Dict[str, int]]:
        """Upsert metadata_to_create and map every value rows reference."""
        maps: Dict[MetadataType, Dict[str, int]] = {}
        created: Dict[str, int] = {}

        for metadata_type, (attr, plural) in _REFERENCE_FIELDS.items():
            to_create = payload.metadata_to_create.for_type(metadata_type)
            resolved, created_count = upsert_reference_values(
                self.session, payload.project_id, metadata_type.value, to_create
            )

            referenced = {getattr(r, attr).strip() for r in payload.rows if getattr(r, attr)}
            lookup = sorted(referenced - set(resolved))
            if lookup:
                model = REFERENCE_MODELS[metadata_type.value]
                resolved.update(_select_name_ids(self.session, model, payload.project_id, lookup))

            maps[metadata_type] = resolved
            created[plural] = created_count

        return maps, created

    def _resolve_drawings(self, project_id: int, rows: Sequence[ParsedRow]) -> Tuple[Dict[str, int], int]:
        """Map normalized drawing number -> id, creating drawings not yet known."""
        raw_by_norm: Dict[str, str] = OrderedDict()
        for row in rows:
            raw_by_norm.setdefault(normalize_drawing(row.drawing), row.drawing_raw or row.drawing)

        norms = list(raw_by_norm)
        existing: Dict[str, int] = {}
        for chunk in _chunks(norms):
            found = (
                self.session.query(Drawing.id, Drawing.drawing_no_norm)
                .filter(Drawing.project_id == project_id)
                .filter(Drawing.drawing_no_norm.in_(chunk))
                .all()
            )
            existing.update({norm: id_ for id_, norm in found})

        new_drawings = [
            Drawing(project_id=project_id, drawing_no_raw=raw, drawing_no_norm=norm, is_retired=False)
            for norm, raw in raw_by_norm.items()
            if norm not in existing
        ]
        if new_drawings:
            self.session.add_all(new_drawings)
            self.session.flush()

        drawing_ids = dict(existing)
        drawing_ids.update({d.drawing_no_norm: d.id for d in new_drawings})

        if len(drawing_ids) != len(norms):
            raise UnresolvedReferenceError(
                f"Drawing count mismatch after upsert. Expected {len(norms)}, got {len(drawing_ids)}"
            )
        return drawing_ids, len(new_drawings)

    def _build_components(
        self,
        payload: ImportPayload,
        drawing_ids: Dict[str, int],
        metadata_maps: Dict[MetadataType, Dict[str, int]],
        import_batch_id: int
    ) -> Tuple[List[Component], Dict[str, int], Dict[str, int]]:
        """
        Resolve references and explode rows into components.

        Returns:
            (components, per-type counts, identity key -> source row)
        """
        components: List[Component] = []
        per_type: Dict[str, int] = OrderedDict()
        key_rows: Dict[str, int] = {}
        unresolved: List[ErrorDetail] = []

        for index, row in enumerate(payload.rows):
            row_number = _row_number(row, index)
            component_type = row.type.lower()
            drawing_norm = normalize_drawing(row.drawing)

            if component_type not in self._valid_types:
                unresolved.append(ErrorDetail(
                    row=row_number, issue=f"Invalid component type: {row.type}", context_key=drawing_norm
                ))
                continue

            drawing_id = drawing_ids.get(drawing_norm)
            if drawing_id is None:
                unresolved.append(ErrorDetail(
                    row=row_number, issue=f"Drawing not resolved: {row.drawing}", context_key=drawing_norm
                ))
                continue

            reference_ids = {}
            for metadata_type, (attr, _) in _REFERENCE_FIELDS.items():
                value = getattr(row, attr)
                if not value or not value.strip():
                    reference_ids[attr] = None
                    continue
                resolved_id = metadata_maps[metadata_type].get(value.strip())
                if resolved_id is None:
                    unresolved.append(ErrorDetail(
                        row=row_number,
                        issue=f"{metadata_type.value} '{value}' not resolved",
                        context_key=drawing_norm
                    ))
                reference_ids[attr] = resolved_id

            cmdty_code = normalize_identifier(row.cmdty_code)
            size = normalize_size(row.size)
            attributes = dict(row.attributes)
            attributes.update({
                'spec': row.spec or '',
                'description': row.description or '',
                'size': row.size or '',
                'cmdty_code': cmdty_code,
                'comments': row.comments or '',
                'original_qty': row.qty,
            })

            for key in identity_keys_for_row(component_type, drawing_norm, size, cmdty_code, row.qty):
                if key in key_rows:
                    unresolved.append(ErrorDetail(
                        row=row_number,
                        issue=f"Duplicate identity key in payload (first at row {key_rows[key]})",
                        context_key=key
                    ))
                    continue
                key_rows[key] = row_number
                components.append(Component(
                    project_id=payload.project_id,
                    component_type=component_type,
                    identity_key=key,
                    drawing_id=drawing_id,
                    area_id=reference_ids['area'],
                    system_id=reference_ids['system'],
                    test_package_id=reference_ids['test_package'],
                    import_batch_id=import_batch_id,
                    attributes=attributes,
                    current_milestones={}
                ))
                per_type[component_type] = per_type.get(component_type, 0) + 1

        if unresolved:
            raise UnresolvedReferenceError(
                f"{len(unresolved)} row reference(s) could not be resolved", unresolved
            )
        return components, dict(per_type), key_rows

    def bulk_insert_components(self, components: List[Component]):
        """Bulk insert components in batches."""
        total = len(components)
        for i in range(0, total, BATCH_SIZE):
            batch = components[i:i + BATCH_SIZE]

            progress = 55 + (40 * (i / max(total, 1)))
            self._emit_progress('insertion', progress, f"Inserting components {i}/{total}")

            self.session.bulk_save_objects(batch)
            self.session.flush()

            logger.debug(f"Inserted batch {i // BATCH_SIZE + 1} ({len(batch)} components)")

        logger.info(f"Inserted {total} components")

    def existing_identity_keys(self, project_id: int, key_rows: Dict[str, int]) -> List[ErrorDetail]:
        """Itemize identity keys already persisted for the project."""
        details = []
        for chunk in _chunks(list(key_rows)):
            found = (
                self.session.query(Component.identity_key)
                .filter(Component.project_id == project_id)
                .filter(Component.identity_key.in_(chunk))
                .all()
            )
            for (key,) in found:
                details.append(ErrorDetail(
                    row=key_rows[key],
                    issue='Component already exists',
                    context_key=key
                ))
        return sorted(details, key=lambda d: (d.row, d.context_key or ''))

    def commit(self, payload: ImportPayload) -> ImportResult:
        """
        Persist a payload atomically.

        Args:
            payload: Valid rows, column mappings and metadata to create

        Returns:
            ImportResult. success=False means nothing was written.
        """
        started = time.monotonic()
        key_rows: Dict[str, int] = {}
        logger.info(f"Starting commit of {len(payload.rows)} rows into project {payload.project_id}")

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            # Step 1: Ceilings (5%)
            self._emit_progress('validating', 5, 'Checking payload limits...')
            self.check_limits(payload)

            # Step 2: Project (10%)
            if self.session.get(Project, payload.project_id) is None:
                raise ProjectNotFoundError(f"Project {payload.project_id} not found")

            # Step 3: Metadata (15%)
            self._emit_progress('metadata', 15, 'Creating areas, systems and test packages...')
            metadata_maps, metadata_created = self._resolve_metadata(payload)

            # Step 4: Drawings (35%)
            self._emit_progress('drawings', 35, 'Resolving drawings...')
            drawing_ids, drawings_created = self._resolve_drawings(payload.project_id, payload.rows)

            # Audit record, linked from every component
            batch = ImportBatch(
                project_id=payload.project_id,
                column_mappings=[m.model_dump(mode='json') for m in payload.column_mappings],
                summary={},
                row_count=len(payload.rows)
            )
            self.session.add(batch)
            self.session.flush()

            # Step 5: Resolve references (50%)
            self._emit_progress('resolving', 50, 'Resolving row references...')
            components, per_type, key_rows = self._build_components(
                payload, drawing_ids, metadata_maps, batch.id
            )

            # Step 6: Insert (55-95%)
            self.bulk_insert_components(components)

            created = CreatedCounts(
                components=len(components),
                drawings=drawings_created,
                drawings_reused=len(drawing_ids) - drawings_created,
                **metadata_created
            )
            batch.summary = {
                'created_counts': created.model_dump(),
                'per_type_counts': per_type
            }

            # Step 7: Commit (97%)
            self._emit_progress('finalizing', 97, 'Committing transaction...')
            self.session.commit()

        except CommitError as e:
            self.session.rollback()
            logger.warning(f"Commit aborted: {e}")
            return ImportResult.failure(str(e), e.details, elapsed_ms(), e.error_code)

        except IntegrityError as e:
            self.session.rollback()
            logger.warning(f"Commit rejected by constraint: {e.orig}")
            details = self.existing_identity_keys(payload.project_id, key_rows) if key_rows else []
            if details:
                message = (f"{len(details)} component(s) already exist in project "
                           f"{payload.project_id}; nothing was imported")
            else:
                message = f"Constraint violation; nothing was imported: {e.orig}"
                details = [ErrorDetail(row=0, issue=str(e.orig))]
            return ImportResult.failure(message, details, elapsed_ms(), ImportErrorCode.CONFLICT)

        except Exception as e:
            logger.error(f"Commit failed: {e}", exc_info=True)
            self.session.rollback()
            return ImportResult.failure(f"Import failed; nothing was imported: {e}",
                                        [ErrorDetail(row=0, issue=str(e))], elapsed_ms())

        self._emit_progress('complete', 100, 'Import complete')
        result = ImportResult(
            success=True,
            created_counts=created,
            per_type_counts=per_type,
            duration_ms=elapsed_ms()
        )
        logger.info(f"Commit complete: {created.components} components, "
                    f"{created.drawings} new drawings in {result.duration_ms}ms")
        return result
