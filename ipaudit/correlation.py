"""
IPAudit Case Correlator
Correlates AI strategy records (JSON) with ground-truth granted claims (CSV)
by application number and assembles one merged case per strategy record.
"""

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .extraction import DEFAULT_MAX_DEPTH, deep_extract
from .keywords import (
    CSV_ID, DETECTED_ID_FIELD, GRANTED_CLAIMS, JSON_ID, OFFICE_ACTION,
    ORIGINAL_CLAIMS, SPECIFICATION, STRATEGIES,
)
from .matching import DEFAULT_MIN_SUFFIX_LENGTH, best_key, canonicalize_header, ids_match, normalize_id

logger = logging.getLogger(__name__)

UNKNOWN_APP_NUMBER = "Unknown"

CSV_FIELD_SIZE_LIMIT = 64 * 1024 * 1024


class InputError(Exception):
    """Raised when the strategy or ground-truth input cannot be used at all"""


@dataclass(frozen=True)
class MergedCase:
    """One AI strategy record joined with its (possibly missing) granted claims"""
    app_number: str
    original_claims: str = ""
    office_action_summary: str = ""
    generated_strategies: str = ""
    specification: str = ""
    granted_claims: str = ""
    normalized_id: str = ""
    match_type: Optional[str] = None

    @property
    def is_matched(self) -> bool:
        return bool(self.granted_claims)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'appNumber': self.app_number,
            'originalClaims': self.original_claims,
            'officeActionSummary': self.office_action_summary,
            'generatedStrategies': self.generated_strategies,
            'specification': self.specification,
            'grantedClaims': self.granted_claims,
        }


@dataclass
class CorrelationSettings:
    min_suffix_length: int = DEFAULT_MIN_SUFFIX_LENGTH
    max_depth: int = DEFAULT_MAX_DEPTH

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "CorrelationSettings":
        section = config.get('correlation') or {}
        return cls(
            min_suffix_length=int(section.get('min_suffix_length', DEFAULT_MIN_SUFFIX_LENGTH)),
            max_depth=int(section.get('max_depth', DEFAULT_MAX_DEPTH)),
        )


@dataclass
class CorrelationResult:
    cases: List[MergedCase] = field(default_factory=list)
    csv_headers: List[str] = field(default_factory=list)
    csv_id_column: Optional[str] = None
    csv_claims_column: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def matched_count(self) -> int:
        return sum(1 for c in self.cases if c.is_matched)

    @property
    def fuzzy_matches(self) -> List[MergedCase]:
        return [c for c in self.cases if c.match_type == "suffix"]


# =============================================================================
# INPUT PARSING
# =============================================================================
def parse_strategies_json(text: str) -> Any:
    """Parse the strategy file, converting decode failures into InputError"""
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise InputError(f"Strategy file is not valid JSON: {e}") from e
    except RecursionError as e:
        raise InputError("Strategy file is nested too deeply to parse") from e


def parse_csv_rows(text: str) -> Tuple[List[str], List[Dict[str, Any]]]:
    """
    Parse ground-truth CSV text into (headers, rows).

    Headers are canonicalized and rows whose cells are all blank are skipped.
    Malformed CSV raises InputError.
    """
    # Granted claim cells can run past the csv module's 128 KiB default
    csv.field_size_limit(CSV_FIELD_SIZE_LIMIT)
    try:
        reader = csv.DictReader(io.StringIO(text or ""))
        if reader.fieldnames is None:
            return [], []

        reader.fieldnames = [canonicalize_header(h) for h in reader.fieldnames]
        rows = []
        for row in reader:
            if not any((v or "").strip() for k, v in row.items() if isinstance(v, str)):
                continue
            rows.append(row)
    except csv.Error as e:
        raise InputError(f"Ground truth CSV could not be parsed: {e}") from e
    return list(reader.fieldnames), rows


def load_inputs(strategies_path: str, ground_truth_path: str) -> Tuple[Any, List[str], List[Dict[str, Any]]]:
    """Read both input files from disk"""
    json_path = Path(strategies_path)
    csv_path = Path(ground_truth_path)
    for label, path in (("Strategy JSON", json_path), ("Ground truth CSV", csv_path)):
        if not path.is_file():
            raise InputError(f"{label} not found: {path}")

    json_raw = parse_strategies_json(json_path.read_text(encoding='utf-8-sig', errors='replace'))
    headers, rows = parse_csv_rows(csv_path.read_text(encoding='utf-8', errors='replace'))
    logger.info(f"Loaded strategies from {json_path.name} and {len(rows)} ground-truth rows from {csv_path.name}")
    return json_raw, headers, rows


# =============================================================================
# CORRELATION
# =============================================================================
def flatten_json_root(json_raw: Any) -> List[Dict[str, Any]]:
    """Standardize the strategy JSON into a list of candidate records"""
    if isinstance(json_raw, list):
        return [item if isinstance(item, dict) else {'content': item} for item in json_raw]

    if isinstance(json_raw, dict):
        records = []
        for key, value in json_raw.items():
            record: Dict[str, Any] = {DETECTED_ID_FIELD: key}
            if isinstance(value, dict):
                record.update(value)
            else:
                record['content'] = value
            records.append(record)
        return records

    raise InputError(
        f"Strategy JSON must be an array or an object keyed by application number, "
        f"got {type(json_raw).__name__}"
    )


def _resolve_app_number(record: Dict[str, Any]) -> str:
    key = best_key(record, JSON_ID + (DETECTED_ID_FIELD,))
    raw = record.get(key) if key is not None else None
    if isinstance(raw, (dict, list)):
        # e.g. {"application": {"number": "16/123,456", "filed": ...}}
        raw = deep_extract(raw, JSON_ID)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raw = record.get(DETECTED_ID_FIELD)
    if raw is None:
        return UNKNOWN_APP_NUMBER
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    return str(raw).strip() or UNKNOWN_APP_NUMBER


def _extract_concept(record: Dict[str, Any], keywords: Tuple[str, ...], max_depth: int) -> str:
    content_fields = {k: v for k, v in record.items() if k != DETECTED_ID_FIELD}
    key = best_key(content_fields, keywords)
    if key is None:
        return ""
    return deep_extract(content_fields[key], keywords, max_depth=max_depth)


def _find_csv_row(normalized_id: str, csv_rows: List[Dict[str, Any]],
                  settings: CorrelationSettings) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    if not normalized_id:
        return None, None
    for row in csv_rows:
        id_key = best_key(row, CSV_ID)
        if id_key is None:
            continue
        match_type = ids_match(normalized_id, normalize_id(row.get(id_key)), settings.min_suffix_length)
        if match_type:
            return row, match_type
    return None, None


def build_case(record: Dict[str, Any], csv_rows: List[Dict[str, Any]],
               settings: CorrelationSettings) -> MergedCase:
    """Assemble the merged case for one candidate strategy record"""
    app_number = _resolve_app_number(record)
    normalized = normalize_id(app_number) if app_number != UNKNOWN_APP_NUMBER else ""

    row, match_type = _find_csv_row(normalized, csv_rows, settings)
    granted = ""
    if row is not None:
        claims_key = best_key(row, GRANTED_CLAIMS)
        if claims_key is not None:
            granted = deep_extract(row.get(claims_key), GRANTED_CLAIMS, max_depth=settings.max_depth)
        if match_type == "suffix":
            logger.warning(
                f"Fuzzy ID match for {app_number}: matched CSV id "
                f"'{row.get(best_key(row, CSV_ID))}' by suffix; verify manually"
            )

    return MergedCase(
        app_number=app_number,
        original_claims=_extract_concept(record, ORIGINAL_CLAIMS, settings.max_depth),
        office_action_summary=_extract_concept(record, OFFICE_ACTION, settings.max_depth),
        generated_strategies=_extract_concept(record, STRATEGIES, settings.max_depth),
        specification=_extract_concept(record, SPECIFICATION, settings.max_depth),
        granted_claims=granted,
        normalized_id=normalized,
        match_type=match_type if granted else None,
    )


def correlate(json_raw: Any, csv_rows: List[Dict[str, Any]],
              settings: Optional[CorrelationSettings] = None,
              csv_headers: Optional[List[str]] = None) -> CorrelationResult:
    """
    Correlate strategy records with ground-truth rows.

    Raises InputError only when the strategy JSON root is unusable. Missing
    identifier columns and unmatched records are reported as warnings on the
    result so the user can fix column names and retry.
    """
    settings = settings or CorrelationSettings()
    if csv_headers is None:
        csv_headers = list(csv_rows[0].keys()) if csv_rows else []
    csv_headers = [h for h in csv_headers if h is not None]

    header_map = {h: None for h in csv_headers}
    result = CorrelationResult(
        csv_headers=csv_headers,
        csv_id_column=best_key(header_map, CSV_ID),
        csv_claims_column=best_key(header_map, GRANTED_CLAIMS),
    )

    records = flatten_json_root(json_raw)
    logger.info(f"Correlating {len(records)} strategy record(s) against {len(csv_rows)} CSV row(s)")

    for record in records:
        result.cases.append(build_case(record, csv_rows, settings))

    _collect_warnings(result, csv_rows)
    for warning in result.warnings:
        logger.warning(warning)
    logger.info(f"Correlation complete: {result.matched_count} match(es) / {len(result.cases)} JSON record(s)")
    return result


def _collect_warnings(result: CorrelationResult, csv_rows: List[Dict[str, Any]]) -> None:
    detected = ", ".join(f'"{h}"' for h in result.csv_headers) or "(none)"
    if not csv_rows:
        result.warnings.append("Ground truth CSV contains no data rows")
    if result.csv_id_column is None:
        result.warnings.append(
            f"No application number column found in ground truth CSV. Detected headers: {detected}. "
            f"Rename the identifier column (e.g. \"Application Number\") and retry."
        )
    elif result.csv_claims_column is None:
        result.warnings.append(
            f"No granted claims column found in ground truth CSV. Detected headers: {detected}."
        )
    if result.cases and result.matched_count == 0 and result.csv_id_column is not None:
        result.warnings.append(
            f"No strategy record matched a ground truth row using column \"{result.csv_id_column}\". "
            f"Check that both files cite the same application numbers."
        )
    unknown = sum(1 for c in result.cases if c.app_number == UNKNOWN_APP_NUMBER)
    if unknown:
        result.warnings.append(f"{unknown} strategy record(s) have no discoverable application number")
    if result.fuzzy_matches:
        result.warnings.append(
            f"{len(result.fuzzy_matches)} record(s) matched by ID suffix only: "
            + ", ".join(c.app_number for c in result.fuzzy_matches)
        )
