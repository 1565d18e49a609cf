"""
Column Mapping Service - detect what each source header means.

Headers from third-party exports are matched against the canonical field
vocabulary with three tiers of descending confidence:

    exact            100   header equals the canonical name
    case-insensitive  95   trimmed header is the canonical name in one case
    synonym           85   normalized header is the name or a known alias

The synonym table is plain data; extend it without touching the matcher.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from backend.models.import_types import (
    CONFIDENCE_BY_TIER, ColumnMapping, ColumnMappingResult, MatchTier
)

logger = logging.getLogger(__name__)

CANONICAL_FIELDS_VERSION = 1

# Order matters: it is the order fields are reported in
CANONICAL_FIELDS: Tuple[str, ...] = (
    'DRAWING',
    'TYPE',
    'QTY',
    'CMDTY CODE',
    'SIZE',
    'SPEC',
    'DESCRIPTION',
    'COMMENTS',
    'AREA',
    'SYSTEM',
    'TEST_PACKAGE',
)

REQUIRED_FIELDS: Tuple[str, ...] = ('DRAWING', 'TYPE', 'QTY', 'CMDTY CODE')

COLUMN_SYNONYMS: Dict[str, List[str]] = {
    'DRAWING': ['DRAWINGS', 'DRAWING NUMBER', 'DWG', 'DWG NO', 'DWG NUM'],
    'TYPE': ['COMPONENT TYPE', 'COMP TYPE'],
    'QTY': ['QUANTITY', 'COUNT', 'CNT'],
    'CMDTY CODE': ['COMMODITY CODE', 'CMDTY', 'COMMODITY', 'CODE', 'PART CODE'],
    'SIZE': ['NOM SIZE', 'NOMINAL SIZE', 'NOMSIZE'],
    'SPEC': ['SPECIFICATION', 'MATERIAL SPEC', 'MAT SPEC'],
    'DESCRIPTION': ['DESC', 'ITEM DESCRIPTION'],
    'COMMENTS': ['COMMENT', 'NOTES', 'NOTE', 'REMARKS'],
    'AREA': ['AREAS', 'LOCATION', 'ZONE'],
    'SYSTEM': ['SYSTEMS', 'SYS'],
    'TEST_PACKAGE': ['TEST PACKAGE', 'TEST PKG', 'PKG', 'PACKAGE'],
}

_WHITESPACE = re.compile(r'\s+')


def _collapse(header: str) -> str:
    return _WHITESPACE.sub(' ', header.strip())


def _exact_candidates(header: str, fields: Sequence[str]) -> List[str]:
    return [f for f in fields if header == f]


def _case_candidates(header: str, fields: Sequence[str]) -> List[str]:
    collapsed = _collapse(header)
    # Single-case renderings only; mixed case falls through to aliases
    if collapsed not in (collapsed.upper(), collapsed.lower()):
        return []
    return [f for f in fields if collapsed.upper() == f.upper()]


def _synonym_candidates(header: str, fields: Sequence[str],
                        synonyms: Dict[str, Iterable[str]]) -> List[str]:
    key = _collapse(header).upper()
    candidates = []
    for field in fields:
        aliases = {_collapse(a).upper() for a in synonyms.get(field, [])}
        aliases.add(field.upper())
        if key in aliases:
            candidates.append(field)
    return candidates


def match_header(
    header: str,
    fields: Sequence[str] = CANONICAL_FIELDS,
    synonyms: Optional[Dict[str, Iterable[str]]] = None
) -> Tuple[Optional[MatchTier], List[str]]:
    """
    Match one header against the vocabulary.

    Returns the first tier that produced any candidate together with the
    candidate fields at that tier. More than one candidate means the header
    is ambiguous. (None, []) means no match at all.
    """
    synonyms = COLUMN_SYNONYMS if synonyms is None else synonyms

    tiers = (
        (MatchTier.EXACT, lambda: _exact_candidates(header, fields)),
        (MatchTier.CASE_INSENSITIVE, lambda: _case_candidates(header, fields)),
        (MatchTier.SYNONYM, lambda: _synonym_candidates(header, fields, synonyms)),
    )
    for tier, find in tiers:
        candidates = find()
        if candidates:
            return tier, candidates
    return None, []


def map_columns(
    headers: Sequence[str],
    synonyms: Optional[Dict[str, Iterable[str]]] = None,
    required_fields: Sequence[str] = REQUIRED_FIELDS,
    fields: Sequence[str] = CANONICAL_FIELDS
) -> ColumnMappingResult:
    """
    Map raw headers onto canonical fields.

    Args:
        headers: Header row in file order
        synonyms: Alias table (canonical field -> aliases); defaults to COLUMN_SYNONYMS
        required_fields: Fields that must be mapped for a commit
        fields: Canonical vocabulary

    Returns:
        ColumnMappingResult. Each header maps to at most one field and each
        field is claimed by at most one header (the earliest). Ambiguous and
        unmatched headers stay unmapped and travel with each row as opaque
        attributes.
    """
    mappings: List[ColumnMapping] = []
    unmapped: List[str] = []
    ambiguous: Dict[str, List[str]] = {}
    claimed = set()
    seen_headers = set()

    for header in headers:
        if header is None:
            continue
        if header in seen_headers:
            # Repeated header: the first occurrence already decided
            logger.debug(f"Duplicate header '{header}' ignored")
            continue
        seen_headers.add(header)

        tier, candidates = match_header(header, fields, synonyms)

        if tier is None:
            unmapped.append(header)
            continue

        if len(candidates) > 1:
            logger.warning(f"Header '{header}' is ambiguous at tier {tier.value}: {candidates}")
            ambiguous[header] = list(candidates)
            unmapped.append(header)
            continue

        field = candidates[0]
        if field in claimed:
            logger.info(f"Header '{header}' also matches {field}; earlier header kept")
            unmapped.append(header)
            continue

        claimed.add(field)
        mappings.append(ColumnMapping(
            source_header=header,
            canonical_field=field,
            confidence=CONFIDENCE_BY_TIER[tier],
            match_tier=tier
        ))

    missing = [f for f in required_fields if f not in claimed]

    logger.info(f"Mapped {len(mappings)}/{len(seen_headers)} headers "
                f"({len(unmapped)} unmapped, {len(ambiguous)} ambiguous, "
                f"{len(missing)} required missing)")

    return ColumnMappingResult(
        mappings=mappings,
        unmapped_columns=unmapped,
        ambiguous_headers=ambiguous,
        missing_required_fields=missing,
        has_all_required_fields=not missing
    )


def required_fields_resolved(result: ColumnMappingResult,
                             required_fields: Sequence[str] = REQUIRED_FIELDS) -> bool:
    """
    True when every required field has exactly one unambiguous mapping.

    Ambiguous headers never produce a mapping, so a required field whose
    only candidate header was ambiguous counts as unmapped.
    """
    mapped = [m.canonical_field for m in result.mappings]
    return all(mapped.count(field) == 1 for field in required_fields)
