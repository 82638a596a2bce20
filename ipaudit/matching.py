"""
IPAudit Field and Identifier Matching
Header canonicalization, application-number normalization and weighted
keyword scoring of field names.
"""

import logging
import re
from typing import Any, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)

# Keyword weights: an exact name must always beat a longer name that merely
# contains the keyword ("id" vs "valid_id").
EXACT_MATCH_SCORE = 100
PREFIX_MATCH_SCORE = 50
SUBSTRING_MATCH_SCORE = 20

DEFAULT_MIN_SUFFIX_LENGTH = 5

NON_PRINTABLE_PATTERN = re.compile(r'[^\x20-\x7E]')
COUNTRY_PREFIX_PATTERN = re.compile(r'^\s*[a-z]{2}(?=[\s\-/.,]*\d)')
NON_DIGIT_PATTERN = re.compile(r'\D')
# Spreadsheet exports write whole-number ids as "16123456.0"
INTEGRAL_DECIMAL_PATTERN = re.compile(r'^(\d+)\.0+$')


def canonicalize_header(name: Any) -> str:
    """Strip non-printable/non-ASCII characters (BOMs included) and trim whitespace"""
    if name is None:
        return ""
    return NON_PRINTABLE_PATTERN.sub('', str(name)).strip()


def normalize_id(value: Any) -> str:
    """
    Reduce an application identifier to a comparable digit sequence.

    "16/123,456", "US16123456" and "0016123456" all normalize to "16123456".
    Different applications sharing the same digits collide; this is accepted
    because identifiers are cited with and without country codes and
    punctuation.
    """
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip().lower()
    if not text:
        return ""
    text = INTEGRAL_DECIMAL_PATTERN.sub(r'\1', text)
    text = COUNTRY_PREFIX_PATTERN.sub('', text, count=1)
    digits = NON_DIGIT_PATTERN.sub('', text)
    return digits.lstrip('0')


def score_field(field_name: Any, keywords: Iterable[str]) -> int:
    """Accumulated keyword score of one field name"""
    name = canonicalize_header(field_name).lower()
    score = 0
    for keyword in keywords:
        kw = keyword.lower()
        if not kw:
            continue
        if name == kw:
            score += EXACT_MATCH_SCORE
        elif name.startswith(kw):
            score += PREFIX_MATCH_SCORE
        elif kw in name:
            score += SUBSTRING_MATCH_SCORE
    return score


def best_key(record: Any, keywords: Iterable[str]) -> Optional[str]:
    """
    Return the field of `record` that best matches the concept `keywords`.

    Ties go to the first field encountered. Returns None when no field scores
    above zero (or `record` is not a mapping), which is distinct from a match
    on an empty-string field name.
    """
    if not isinstance(record, Mapping):
        return None

    keywords = list(keywords)
    best: Optional[str] = None
    highest = 0
    for key in record.keys():
        if key is None:
            continue
        score = score_field(key, keywords)
        if score > highest:
            highest = score
            best = key
    return best


def ids_match(json_id: str, csv_id: str,
              min_suffix_length: int = DEFAULT_MIN_SUFFIX_LENGTH) -> Optional[str]:
    """
    Compare two normalized identifiers.

    Returns "exact" for equality, "suffix" when one ends with the other and
    the shorter side is longer than `min_suffix_length`, else None.
    """
    if not json_id or not csv_id:
        return None
    if json_id == csv_id:
        return "exact"

    shorter, longer = sorted((json_id, csv_id), key=len)
    if len(shorter) > min_suffix_length and longer.endswith(shorter):
        return "suffix"
    return None
