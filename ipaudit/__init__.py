"""
IPAudit - AI Strategy Audit against Granted Claims
Correlates AI-generated prosecution strategies with granted claims and scores them
"""

from .matching import canonicalize_header, normalize_id, best_key, ids_match
from .extraction import deep_extract
from .correlation import (
    MergedCase, CorrelationResult, CorrelationSettings, InputError,
    correlate, load_inputs, parse_csv_rows, parse_strategies_json,
)
from .ai_providers import AIProviderFactory, AuthorizationError
from .auditor import AuditResult, BatchSummary, CaseAuditor, RoiPolicy, summarize
from .database import DatabaseManager
from .report_generator import ReportGenerator, export_results_csv

__version__ = "1.0.0"
__all__ = [
    "canonicalize_header",
    "normalize_id",
    "best_key",
    "ids_match",
    "deep_extract",
    "MergedCase",
    "CorrelationResult",
    "CorrelationSettings",
    "InputError",
    "correlate",
    "load_inputs",
    "parse_csv_rows",
    "parse_strategies_json",
    "AIProviderFactory",
    "AuthorizationError",
    "AuditResult",
    "BatchSummary",
    "CaseAuditor",
    "RoiPolicy",
    "summarize",
    "DatabaseManager",
    "ReportGenerator",
    "export_results_csv",
]
