"""
IPAudit Concept Keywords
Named keyword lists used to discover identifier and content fields in
schema-free strategy JSON and ground-truth CSV files.
"""

from typing import Dict, Tuple

# Synthetic field carrying the top-level key when the strategy JSON is an
# object keyed by application number.
DETECTED_ID_FIELD = "__detected_id"

# Identifier discovery
JSON_ID = ("application", "app", "number", "id", "case")
CSV_ID = ("application", "app", "number", "id", "serial")

# Content discovery
ORIGINAL_CLAIMS = ("original", "pre", "claims", "initial")
OFFICE_ACTION = ("office", "action", "rejection", "oa")
STRATEGIES = ("strategy", "strategies", "options", "proposed")
SPECIFICATION = ("description", "specification", "spec", "content")
GRANTED_CLAIMS = ("granted", "final", "allowed", "claims")

# Field names that usually hold the text payload of an AI-authored object
PRIORITY_CONTENT = (
    "text", "content", "summary", "body", "value",
    "description", "strategies", "claims",
)

CONCEPTS: Dict[str, Tuple[str, ...]] = {
    "json_id": JSON_ID,
    "csv_id": CSV_ID,
    "original_claims": ORIGINAL_CLAIMS,
    "office_action": OFFICE_ACTION,
    "strategies": STRATEGIES,
    "specification": SPECIFICATION,
    "granted_claims": GRANTED_CLAIMS,
    "priority_content": PRIORITY_CONTENT,
}


def with_priority(keywords: Tuple[str, ...]) -> Tuple[str, ...]:
    """Priority content keywords followed by any concept keywords not already listed"""
    extra = tuple(kw for kw in keywords if kw not in PRIORITY_CONTENT)
    return PRIORITY_CONTENT + extra
