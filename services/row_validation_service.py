"""
Row Validation Service - classify and normalize takeoff rows.

Every source row receives exactly one status:

- valid:   normalized and eligible for the commit payload
- skipped: a warning; the row is left out but the import proceeds
- error:   blocks the whole import

Rules are applied in order and the first failing rule decides. Issues are
classified and returned, never raised.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from backend.models.import_types import (
    ParsedRow, ValidationCategory, ValidationResult, ValidationStatus, ValidationSummary
)
from services.column_mapping_service import REQUIRED_FIELDS
from services.normalization_service import (
    clean_text, component_count, identity_keys_for_row, normalize_drawing, normalize_identifier,
    normalize_size
)

logger = logging.getLogger(__name__)

VALID_COMPONENT_TYPES: Tuple[str, ...] = (
    'Spool',
    'Field_Weld',
    'Valve',
    'Instrument',
    'Support',
    'Pipe',
    'Fitting',
    'Flange',
    'Tubing',
    'Hose',
    'Misc_Component',
    'Threaded_Pipe',
)

DEFAULT_MAX_ROWS = 10000
DEFAULT_MAX_FILE_SIZE = 5 * 1024 * 1024  # 5MB
DEFAULT_MAX_COMPONENTS = 100000  # exploded components per import

# Plain decimal text only: no exponents, underscores or hex
_QUANTITY_PATTERN = re.compile(r"^([+-]?)(\d+)(?:\.(\d+))?$")


@dataclass(frozen=True)
class ValidationRules:
    """Rule set applied to every row of a file."""

    required_fields: Tuple[str, ...] = REQUIRED_FIELDS
    valid_types: Tuple[str, ...] = VALID_COMPONENT_TYPES
    max_rows: int = DEFAULT_MAX_ROWS
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    max_components: int = DEFAULT_MAX_COMPONENTS


DEFAULT_VALIDATION_RULES = ValidationRules()


def parse_quantity(raw: str) -> Tuple[Optional[int], Optional[ValidationCategory], Optional[str]]:
    """
    Coerce a quantity cell to an integer.

    Returns (qty, None, None) on success or (None, category, reason).
    Fractional values are rejected, never rounded. Only plain decimal text
    is accepted, so "3e6" or "1_000" are not numbers here.
    """
    text = str(raw).strip().replace(',', '')
    match = _QUANTITY_PATTERN.match(text)
    if match is None:
        return None, ValidationCategory.INVALID_QUANTITY, f"Quantity '{raw}' is not a number"

    sign, whole, fraction = match.groups()
    if fraction and fraction.strip('0'):
        return None, ValidationCategory.INVALID_QUANTITY, f"Quantity '{raw}' must be a whole number"
    value = int(whole)
    if value == 0:
        return None, ValidationCategory.ZERO_QUANTITY, 'Component quantity is 0'
    if sign == '-':
        return None, ValidationCategory.INVALID_QUANTITY, f"Quantity '{raw}' must not be negative"
    return value, None, None


class RowValidator:
    """
    Stateful validator for the rows of one file.

    Keeps the identity keys accepted so far, so duplicate detection follows
    input order. Persisted data is not consulted here; collisions with
    earlier imports surface at commit time.
    """

    def __init__(self, column_lookup: Dict[str, str],
                 rules: ValidationRules = DEFAULT_VALIDATION_RULES):
        """
        Args:
            column_lookup: Source header -> canonical field
            rules: Validation rule set
        """
        self.rules = rules
        self.column_lookup = dict(column_lookup)
        self.field_to_header = {f: h for h, f in self.column_lookup.items()}
        self.accepted_keys: Dict[str, int] = {}
        self._types_by_lower = {t.lower(): t for t in rules.valid_types}

    def _value(self, row: Dict[str, str], canonical_field: str) -> Optional[str]:
        header = self.field_to_header.get(canonical_field)
        if header is None:
            return None
        return clean_text(row.get(header))

    def _reject(self, row_number: int, status: ValidationStatus,
                category: ValidationCategory, reason: str) -> ValidationResult:
        return ValidationResult(
            row_number=row_number,
            status=status,
            category=category,
            reason=reason
        )

    def validate_row(self, row: Dict[str, str], row_number: int) -> ValidationResult:
        """Validate and normalize one row (row_number is 1-based)."""
        # Rule 1: required fields
        for required in self.rules.required_fields:
            if self._value(row, required) is None:
                return self._reject(
                    row_number, ValidationStatus.ERROR,
                    ValidationCategory.MISSING_REQUIRED_FIELD,
                    f"Required field {required} is empty"
                )

        # Rule 2: component type
        raw_type = self._value(row, 'TYPE')
        matched_type = self._types_by_lower.get(raw_type.lower())
        if matched_type is None:
            return self._reject(
                row_number, ValidationStatus.SKIPPED,
                ValidationCategory.UNSUPPORTED_TYPE,
                f"Unsupported component type: {raw_type}"
            )

        # Rule 3: quantity
        qty, qty_category, qty_reason = parse_quantity(self._value(row, 'QTY'))
        if qty is None:
            return self._reject(row_number, ValidationStatus.SKIPPED, qty_category, qty_reason)

        # Rule 4: file-local identity
        component_type = matched_type.lower()
        drawing_raw = self._value(row, 'DRAWING')
        drawing = normalize_drawing(drawing_raw)
        cmdty_code = normalize_identifier(self._value(row, 'CMDTY CODE'))
        size = normalize_size(self._value(row, 'SIZE'))

        count = component_count(component_type, qty)
        if len(self.accepted_keys) + count > self.rules.max_components:
            return self._reject(
                row_number, ValidationStatus.SKIPPED,
                ValidationCategory.INVALID_QUANTITY,
                f"Quantity {qty} would exceed the limit of "
                f"{self.rules.max_components} components per import"
            )

        keys = identity_keys_for_row(component_type, drawing, size, cmdty_code, qty)
        for key in keys:
            if key in self.accepted_keys:
                first_row = self.accepted_keys[key]
                return self._reject(
                    row_number, ValidationStatus.ERROR,
                    ValidationCategory.DUPLICATE_IDENTITY_KEY,
                    f"Duplicate identity key {key} (first seen at row {first_row})"
                )
        for key in keys:
            self.accepted_keys[key] = row_number

        # Rule 5: normalize
        attributes = {
            header: str(value).strip()
            for header, value in row.items()
            if header not in self.column_lookup and clean_text(value) is not None
        }

        parsed = ParsedRow(
            drawing=drawing,
            drawing_raw=drawing_raw,
            type=component_type,
            qty=qty,
            cmdty_code=cmdty_code,
            size=size,
            spec=self._value(row, 'SPEC'),
            description=self._value(row, 'DESCRIPTION'),
            comments=self._value(row, 'COMMENTS'),
            area=self._value(row, 'AREA'),
            system=self._value(row, 'SYSTEM'),
            test_package=self._value(row, 'TEST_PACKAGE'),
            attributes=attributes,
            row_number=row_number
        )
        return ValidationResult(row_number=row_number, status=ValidationStatus.VALID, data=parsed)

    def validate_rows(self, rows: Sequence[Dict[str, str]]) -> List[ValidationResult]:
        """Validate every row in input order."""
        results = [self.validate_row(row, index) for index, row in enumerate(rows, 1)]
        summary = summarize(results)
        logger.info(f"Validated {summary.total_rows} rows: {summary.valid_count} valid, "
                    f"{summary.skipped_count} skipped, {summary.error_count} errors")
        return results


def validate_rows(rows: Sequence[Dict[str, str]], column_lookup: Dict[str, str],
                  rules: ValidationRules = DEFAULT_VALIDATION_RULES) -> List[ValidationResult]:
    """Validate the rows of one file with a fresh validator."""
    return RowValidator(column_lookup, rules).validate_rows(rows)


def summarize(results: Sequence[ValidationResult]) -> ValidationSummary:
    """Aggregate counts. total_rows always equals valid + skipped + error."""
    statuses = Counter(r.status for r in results)
    categories = Counter(r.category.value for r in results if r.category is not None)
    error_count = statuses[ValidationStatus.ERROR]
    return ValidationSummary(
        total_rows=len(results),
        valid_count=statuses[ValidationStatus.VALID],
        skipped_count=statuses[ValidationStatus.SKIPPED],
        error_count=error_count,
        can_import=error_count == 0,
        by_category=dict(categories)
    )


def issue_details(results: Sequence[ValidationResult],
                  status: ValidationStatus) -> List[Dict[str, object]]:
    """Row number, reason and category of every skipped or error row."""
    return [
        {'row_number': r.row_number, 'reason': r.reason, 'category': r.category.value}
        for r in results
        if r.status == status
    ]
