"""
IPAudit Report Generator
CSV export, Markdown performance report and console tables for audit runs
"""

import csv
import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

from .auditor import AuditResult, BatchSummary, summarize
from .correlation import CorrelationResult
from .database import DatabaseManager

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "Application ID",
    "Audit Score",
    "Winning Limitation",
    "Specification Reference",
    "Accuracy Level",
    "Agent Reasoning",
]

# A content field counts as populated above this many characters
POPULATED_MIN_LENGTH = 10


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:.1f}"


def export_row(result: AuditResult) -> Dict[str, Any]:
    evaluation = result.evaluation_result
    return {
        "Application ID": result.app_number,
        "Audit Score": _format_number(evaluation.final_score),
        "Winning Limitation": evaluation.winning_amendment.technical_delta,
        "Specification Reference": evaluation.winning_amendment.evidence_link,
        "Accuracy Level": evaluation.strategy_evaluation.prediction_accuracy,
        "Agent Reasoning": evaluation.auditor_reasoning,
    }


def export_results_csv(results: List[AuditResult], path) -> Path:
    """Write one row per audit result with the export columns"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=EXPORT_COLUMNS)
        writer.writeheader()
        for result in results:
            writer.writerow(export_row(result))
    logger.info(f"Exported {len(results)} audit result(s) to {path}")
    return path


# =============================================================================
# CONSOLE RENDERING
# =============================================================================
def field_status(text: str) -> str:
    return "Populated" if text and len(text.strip()) > POPULATED_MIN_LENGTH else "Empty"


def format_correlation_table(result: CorrelationResult) -> str:
    """Plain-text data map: one row per case with field and ground truth status"""
    headers = ["Application ID", "Claims", "Strategies", "Office Action", "Description", "Ground Truth"]
    rows = []
    for case in result.cases:
        ground_truth = "CONNECTED" if case.is_matched else "NO CSV MATCH"
        if case.match_type == "suffix":
            ground_truth += " (suffix)"
        rows.append([
            case.app_number,
            field_status(case.original_claims),
            field_status(case.generated_strategies),
            field_status(case.office_action_summary),
            field_status(case.specification),
            ground_truth,
        ])

    widths = [max(len(str(r[i])) for r in [headers] + rows) for i in range(len(headers))]
    lines = [
        f"Data Map: {result.matched_count} Matches / {len(result.cases)} JSON Records",
        "  ".join(h.ljust(w) for h, w in zip(headers, widths)),
        "  ".join("-" * w for w in widths),
    ]
    for row in rows:
        lines.append("  ".join(str(c).ljust(w) for c, w in zip(row, widths)))
    return "\n".join(lines)


def format_summary(summary: BatchSummary) -> str:
    lines = [
        f"Audited Total:         {summary.total_apps}",
        f"Average Quality:       {summary.avg_score:.1f}%",
        f"Value Created:         ${summary.total_savings:,.0f}",
        f"Attorney Productivity: {_format_number(summary.total_hours)} hrs",
        "Accuracy Distribution: " + _format_distribution(summary.accuracy_distribution),
        "Source Distribution:   " + _format_distribution(summary.source_distribution),
    ]
    return "\n".join(lines)


def _format_distribution(distribution: Dict[str, int]) -> str:
    if not distribution:
        return "(none)"
    return ", ".join(f"{label or '(blank)'}: {count}" for label, count in distribution.items())


def score_band(score: float) -> str:
    if score >= 85:
        return "high"
    if score >= 70:
        return "medium"
    return "low"


# =============================================================================
# REPORTS
# =============================================================================
class ReportGenerator:
    """Generates audit performance reports for stored runs"""

    def __init__(self, db_manager: DatabaseManager, output_dir: str):
        self.db_manager = db_manager
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def _sanitize_filename(self, name: str) -> str:
        """Sanitize string for use in filenames"""
        if not name:
            return "unknown"
        name = re.sub(r'[\\/*?:"<>|]', '_', name)
        return name.strip(' .,')

    def generate_report(self, run_id: str, format: str = "both") -> Dict[str, str]:
        """Generate the export CSV, Markdown report and JSON data for a run"""
        run = self.db_manager.get_run(run_id)
        if not run:
            raise ValueError(f"Audit run not found: {run_id}")

        results = self.db_manager.get_results(run_id)
        summary = summarize(results)

        stamp = (run['start_time'] or datetime.utcnow()).strftime('%Y-%m-%d')
        safe_name = self._sanitize_filename(f"{stamp}_{run_id[:8]}")
        output_files = {}

        if format in ["csv", "both"]:
            csv_path = export_results_csv(results, self.output_dir / f"audit_report_{safe_name}.csv")
            output_files['csv'] = str(csv_path)

        if format in ["markdown", "both"]:
            md_path = self.output_dir / f"audit_report_{safe_name}.md"
            md_path.write_text(self._generate_markdown(run, results, summary), encoding="utf-8")
            output_files['markdown'] = str(md_path)

        json_path = self.output_dir / f"audit_data_{safe_name}.json"
        json_path.write_text(json.dumps({
            'run': run,
            'summary': summary.__dict__,
            'results': [r.to_dict() for r in results],
        }, indent=2, default=str), encoding="utf-8")
        output_files['json'] = str(json_path)

        return output_files

    def _generate_markdown(self, run: Dict[str, Any], results: List[AuditResult],
                           summary: BatchSummary) -> str:
        lines = [
            "# Intelligence Performance Report",
            "",
            f"**Run**: `{run['id']}`  ",
            f"**Model**: {run['ai_provider']} / {run['ai_model']}  ",
            f"**Status**: {run['status']}  ",
            f"**Inputs**: {run.get('strategies_file') or '-'} + {run.get('ground_truth_file') or '-'}  ",
            f"**Ground truth matches**: {run['cases_matched']} / {run['cases_total']}",
            "",
        ]
        if run.get('halt_reason'):
            lines += [f"> **Batch halted:** {run['halt_reason']}", ""]

        lines += [
            "## Summary",
            "",
            f"- **Value Created**: ${summary.total_savings:,.0f} (avoided second office actions)",
            f"- **Attorney Productivity**: {_format_number(summary.total_hours)} hrs",
            f"- **Average Quality**: {summary.avg_score:.1f}%",
            f"- **Audited Total**: {summary.total_apps}",
            "",
            "## Prediction Accuracy",
            "",
        ]
        lines += self._distribution_table(summary.accuracy_distribution)
        lines += ["", "## Winning Amendment Source", ""]
        lines += self._distribution_table(summary.source_distribution)

        lines += ["", "## Cases", "", "| Application ID | Score | Band | Accuracy | Winning Limitation |",
                  "|---|---|---|---|---|"]
        for r in results:
            delta = self._cell(r.evaluation_result.winning_amendment.technical_delta)
            lines.append(f"| {self._cell(r.app_number)} | {_format_number(r.final_score)} | "
                         f"{score_band(r.final_score)} | {self._cell(r.prediction_accuracy)} | {delta} |")
        if not results:
            lines.append("| (none) | | | | |")

        for r in results:
            amendment = r.evaluation_result.winning_amendment
            strategy = r.evaluation_result.strategy_evaluation
            lines += [
                "",
                f"### {r.app_number} ({_format_number(r.final_score)}%)",
                "",
                f"- **Winning amendment**: {amendment.summary}",
                f"- **Source**: {amendment.source_type} ({amendment.source_details})",
                f"- **Evidence**: {amendment.evidence_link}",
                f"- **Best matching strategy**: {strategy.best_matching_strategy_name} "
                f"({strategy.prediction_accuracy}, retrieval {_format_number(strategy.retrieval_success_rate)}%)",
                f"- **Match analysis**: {strategy.match_analysis}",
                "",
                r.evaluation_result.auditor_reasoning,
            ]

        if run.get('errors'):
            lines += ["", "## Failed Cases", ""]
            for app_number, message in run['errors']:
                lines.append(f"- `{app_number}`: {message}")

        lines.append("")
        return "\n".join(lines)

    @staticmethod
    def _distribution_table(distribution: Dict[str, int]) -> List[str]:
        lines = ["| Label | Count |", "|---|---|"]
        for label, count in sorted(distribution.items(), key=lambda kv: -kv[1]):
            lines.append(f"| {label or '(blank)'} | {count} |")
        if not distribution:
            lines.append("| (none) | 0 |")
        return lines

    @staticmethod
    def _cell(text: str) -> str:
        return (text or "").replace("|", "\\|").replace("\n", " ")
