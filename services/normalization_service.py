"""
Normalization helpers for takeoff rows.

Drawing numbers, sizes and identity keys must be computed identically in
the preview (file-local duplicate detection) and in the commit transaction
(drawing resolution, component identity), so both import them from here.
"""

import re
from typing import List, Optional

NO_SIZE = 'NOSIZE'

# Types that always produce one component regardless of quantity
SINGLE_COMPONENT_TYPES = frozenset({'spool', 'field_weld', 'instrument'})

_WHITESPACE = re.compile(r'\s+')
_SIZE_STRIP = re.compile(r'["\'\s]')


def clean_text(value) -> Optional[str]:
    """Trim a cell value; blank or missing becomes None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_identifier(raw: str) -> str:
    """Uppercase and collapse whitespace (drawing numbers, commodity codes)."""
    return _WHITESPACE.sub(' ', str(raw).strip()).upper()


def normalize_drawing(raw: str) -> str:
    """Normalized drawing number, the natural key of a drawing."""
    return normalize_identifier(raw)


def normalize_size(raw: Optional[str]) -> str:
    """
    Normalize a nominal size.

    Quotes and whitespace are removed and fractions use X instead of /,
    so 1/2" becomes 1X2. Missing sizes map to the NOSIZE sentinel.
    """
    if raw is None or str(raw).strip() == '':
        return NO_SIZE
    return _SIZE_STRIP.sub('', str(raw).strip()).replace('/', 'X').upper()


def component_count(component_type: str, qty: int) -> int:
    """Number of components a row explodes into."""
    if component_type.lower() in SINGLE_COMPONENT_TYPES:
        return 1
    return qty


def identity_key(component_type: str, drawing_norm: str, size_norm: str,
                 cmdty_code: str, seq: int) -> str:
    """Natural key of one component."""
    return f"{component_type.lower()}:{drawing_norm}-{size_norm}-{cmdty_code}-{seq:03d}"


def identity_keys_for_row(component_type: str, drawing_norm: str, size_norm: str,
                          cmdty_code: str, qty: int) -> List[str]:
    """All component natural keys of a row, seq 1..n."""
    count = component_count(component_type, qty)
    return [
        identity_key(component_type, drawing_norm, size_norm, cmdty_code, seq)
        for seq in range(1, count + 1)
    ]
