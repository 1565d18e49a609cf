"""
Pipeline data types for takeoff imports.

These Pydantic models describe one import session: column mappings,
per-row validation results, metadata discovery, the preview state shown
to the user, the payload sent to the commit boundary, and the result that
comes back. They are framework-agnostic and shared by services, tasks and
the API layer.
"""

from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


# ============================================================================
# Column Mapping
# ============================================================================

class MatchTier(str, Enum):
    """Matching tier used to detect a column."""
    EXACT = 'exact'
    CASE_INSENSITIVE = 'case-insensitive'
    SYNONYM = 'synonym'


CONFIDENCE_BY_TIER = {
    MatchTier.EXACT: 100,
    MatchTier.CASE_INSENSITIVE: 95,
    MatchTier.SYNONYM: 85,
}


class ColumnMapping(BaseModel):
    """Detected relationship between a source header and a canonical field."""

    source_header: str = Field(..., description="Header exactly as it appears in the file")
    canonical_field: str = Field(..., description="Canonical field the header maps to")
    confidence: Literal[100, 95, 85] = Field(..., description="Mapping confidence")
    match_tier: MatchTier = Field(..., description="Tier that produced the match")

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "source_header": "DRAWINGS",
                "canonical_field": "DRAWING",
                "confidence": 85,
                "match_tier": "synonym"
            }
        }


class ColumnMappingResult(BaseModel):
    """Result of mapping every header of one file."""

    mappings: List[ColumnMapping] = Field(default_factory=list)
    unmapped_columns: List[str] = Field(default_factory=list)
    ambiguous_headers: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Headers matching several canonical fields at the same tier"
    )
    missing_required_fields: List[str] = Field(default_factory=list)
    has_all_required_fields: bool = False

    class Config:
        frozen = True

    def lookup(self) -> Dict[str, str]:
        """Return source header -> canonical field."""
        return {m.source_header: m.canonical_field for m in self.mappings}

    def header_for(self, canonical_field: str) -> Optional[str]:
        """Return the header mapped to a canonical field, if any."""
        for mapping in self.mappings:
            if mapping.canonical_field == canonical_field:
                return mapping.source_header
        return None


# ============================================================================
# Validation
# ============================================================================

class ValidationStatus(str, Enum):
    """Outcome of validating one row."""
    VALID = 'valid'
    SKIPPED = 'skipped'
    ERROR = 'error'


class ValidationCategory(str, Enum):
    """Reason category for skipped and error rows."""
    MISSING_REQUIRED_FIELD = 'missing_required_field'
    UNSUPPORTED_TYPE = 'unsupported_type'
    ZERO_QUANTITY = 'zero_quantity'
    INVALID_QUANTITY = 'invalid_quantity'
    DUPLICATE_IDENTITY_KEY = 'duplicate_identity_key'


class ParsedRow(BaseModel):
    """Normalized data of an accepted row."""

    drawing: str = Field(..., min_length=1, description="Normalized drawing number")
    drawing_raw: Optional[str] = Field(None, description="Drawing number as written in the file")
    type: str = Field(..., min_length=1, description="Lowercased component type")
    qty: int = Field(..., ge=1, description="Integer quantity")
    cmdty_code: str = Field(..., min_length=1, description="Normalized commodity code")
    size: str = Field('NOSIZE', description="Normalized size")
    spec: Optional[str] = None
    description: Optional[str] = None
    comments: Optional[str] = None
    area: Optional[str] = None
    system: Optional[str] = None
    test_package: Optional[str] = None
    attributes: Dict[str, str] = Field(
        default_factory=dict,
        description="Unmapped columns, preserved verbatim"
    )
    row_number: Optional[int] = Field(None, ge=1, description="Source row number, for error reporting")


class ValidationResult(BaseModel):
    """Validation outcome of a single source row."""

    row_number: int = Field(..., ge=1)
    status: ValidationStatus
    reason: Optional[str] = None
    category: Optional[ValidationCategory] = None
    data: Optional[ParsedRow] = None

    @model_validator(mode='after')
    def _check_shape(self):
        if self.status == ValidationStatus.VALID:
            if self.data is None or self.reason is not None or self.category is not None:
                raise ValueError('valid results carry a payload and no reason')
        else:
            if self.data is not None or not self.reason or self.category is None:
                raise ValueError('skipped/error results carry a reason and category, never a payload')
        return self


class ValidationSummary(BaseModel):
    """Aggregated counts of a validation run."""

    total_rows: int
    valid_count: int
    skipped_count: int
    error_count: int
    can_import: bool
    by_category: Dict[str, int] = Field(default_factory=dict)


# ============================================================================
# Metadata Discovery
# ============================================================================

class MetadataType(str, Enum):
    """Category types of cross-referenced metadata."""
    AREA = 'area'
    SYSTEM = 'system'
    TEST_PACKAGE = 'test_package'


class MetadataDiscovery(BaseModel):
    """A distinct metadata value and whether it already exists."""

    type: MetadataType
    value: str
    exists: bool
    resolved_id: Optional[int] = None

    @model_validator(mode='after')
    def _check_resolution(self):
        if self.exists and self.resolved_id is None:
            raise ValueError('existing metadata must carry its resolved id')
        if not self.exists and self.resolved_id is not None:
            raise ValueError('pending metadata cannot carry a resolved id')
        return self


class MetadataToCreate(BaseModel):
    """Metadata values that do not exist yet, per category type."""

    areas: List[str] = Field(default_factory=list)
    systems: List[str] = Field(default_factory=list)
    test_packages: List[str] = Field(default_factory=list)

    def for_type(self, metadata_type: MetadataType) -> List[str]:
        return {
            MetadataType.AREA: self.areas,
            MetadataType.SYSTEM: self.systems,
            MetadataType.TEST_PACKAGE: self.test_packages,
        }[MetadataType(metadata_type)]


class MetadataDiscoveryResult(BaseModel):
    """Metadata discovery grouped by category type."""

    areas: List[MetadataDiscovery] = Field(default_factory=list)
    systems: List[MetadataDiscovery] = Field(default_factory=list)
    test_packages: List[MetadataDiscovery] = Field(default_factory=list)
    total_count: int = 0
    existing_count: int = 0
    will_create_count: int = 0

    def to_create(self) -> MetadataToCreate:
        """Subset of values that the commit has to create."""
        return MetadataToCreate(
            areas=[d.value for d in self.areas if not d.exists],
            systems=[d.value for d in self.systems if not d.exists],
            test_packages=[d.value for d in self.test_packages if not d.exists],
        )


# ============================================================================
# Preview
# ============================================================================

class PreviewState(BaseModel):
    """Reviewable summary of an import before anything is committed."""

    file_name: str
    file_size: int = 0
    total_rows: int
    valid_rows: int
    skipped_rows: int
    error_rows: int
    column_mappings: List[ColumnMapping]
    unmapped_columns: List[str] = Field(default_factory=list)
    ambiguous_headers: Dict[str, List[str]] = Field(default_factory=dict)
    missing_required_fields: List[str] = Field(default_factory=list)
    validation_results: List[ValidationResult]
    metadata_discovery: MetadataDiscoveryResult
    sample_rows: List[ParsedRow] = Field(default_factory=list)
    component_counts: Dict[str, int] = Field(default_factory=dict)
    blocking_reasons: List[str] = Field(default_factory=list)
    limit_warnings: List[str] = Field(default_factory=list)
    can_commit: bool

    def valid_payload_rows(self) -> List[ParsedRow]:
        """Rows that would be sent to the commit boundary."""
        return [r.data for r in self.validation_results if r.status == ValidationStatus.VALID]


# ============================================================================
# Commit boundary
# ============================================================================

class ImportPayload(BaseModel):
    """Request sent to the commit boundary. Valid rows only, never raw file data."""

    project_id: int = Field(..., ge=1)
    rows: List[ParsedRow]
    column_mappings: List[ColumnMapping] = Field(default_factory=list)
    metadata_to_create: MetadataToCreate = Field(default_factory=MetadataToCreate)


class ErrorDetail(BaseModel):
    """Itemized failure information."""

    row: int = Field(..., ge=0, description="Source row number, 0 when not row-specific")
    issue: str
    context_key: Optional[str] = Field(None, description="Drawing or identity key for context")


class CreatedCounts(BaseModel):
    """Per-entity counts of rows created by a commit."""

    components: int = 0
    drawings: int = 0
    drawings_reused: int = 0
    areas: int = 0
    systems: int = 0
    test_packages: int = 0

    def is_zero(self) -> bool:
        return not any(self.model_dump().values())


class ImportErrorCode(str, Enum):
    """Classification of a failed commit."""
    INVALID_PAYLOAD = 'invalid_payload'
    PAYLOAD_LIMIT = 'payload_limit'
    PROJECT_NOT_FOUND = 'project_not_found'
    UNRESOLVED_REFERENCE = 'unresolved_reference'
    CONFLICT = 'conflict'
    INTERNAL = 'internal'


class ImportResult(BaseModel):
    """Outcome of a commit. A failed result never reports created rows."""

    success: bool
    created_counts: CreatedCounts = Field(default_factory=CreatedCounts)
    per_type_counts: Dict[str, int] = Field(default_factory=dict)
    duration_ms: int = 0
    error: Optional[str] = None
    error_code: Optional[ImportErrorCode] = None
    details: Optional[List[ErrorDetail]] = None

    @model_validator(mode='after')
    def _failed_means_nothing_created(self):
        if not self.success and (not self.created_counts.is_zero() or self.per_type_counts):
            raise ValueError('failed imports must report zero created rows')
        return self

    @classmethod
    def failure(cls, error: str, details: Optional[List[ErrorDetail]] = None,
                duration_ms: int = 0,
                error_code: ImportErrorCode = ImportErrorCode.INTERNAL) -> 'ImportResult':
        return cls(success=False, error=error, error_code=error_code,
                   details=details or [], duration_ms=duration_ms)
