"""
IPAudit Audit Service
Sends each merged case to the AI provider, parses the structured evaluation
and aggregates batch results.
"""

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .ai_providers import AIProvider, AuthorizationError
from .correlation import MergedCase
from .prompts import RESPONSE_SCHEMA, SYSTEM_PROMPT, build_audit_prompt

logger = logging.getLogger(__name__)

PREDICTION_ACCURACY_LABELS = ("Exact Match", "Concept Match", "Partial Match", "Miss")
SOURCE_TYPE_LABELS = ("Dependent Claim", "Specification", "Argument Only", "New Matter")

AUTHORIZATION_REMEDIATION = (
    "The AI provider rejected the API key or the key has no access to the configured model. "
    "Select a valid API key (config.yaml api_keys or the provider's *_API_KEY environment "
    "variable) and re-run the audit."
)


def _safe_float(val, default: float = 0.0) -> float:
    """Coerce a value to float, returning default on failure."""
    if val is None or isinstance(val, bool):
        return default
    try:
        return float(val)
    except (ValueError, TypeError):
        return default


def _text(val) -> str:
    return "" if val is None else str(val)


# =============================================================================
# RESULT MODEL
# =============================================================================
@dataclass
class RoiPolicy:
    """Business value credited to a case whose score clears the threshold"""
    score_threshold: float = 70
    cost_saved: float = 4500
    hours_saved: float = 15

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RoiPolicy":
        section = config.get('roi') or {}
        return cls(
            score_threshold=_safe_float(section.get('score_threshold'), 70),
            cost_saved=_safe_float(section.get('cost_saved'), 4500),
            hours_saved=_safe_float(section.get('hours_saved'), 15),
        )

    def metrics_for(self, final_score: float) -> "RoiMetrics":
        avoided = final_score >= self.score_threshold
        return RoiMetrics(
            cost_saved=self.cost_saved if avoided else 0,
            hours_saved=self.hours_saved if avoided else 0,
            avoided_second_oa=avoided,
        )


@dataclass
class RoiMetrics:
    cost_saved: float = 0
    hours_saved: float = 0
    avoided_second_oa: bool = False


@dataclass
class WinningAmendment:
    summary: str = ""
    source_type: str = ""
    source_details: str = ""
    technical_delta: str = ""
    evidence_link: str = ""


@dataclass
class StrategyEvaluation:
    best_matching_strategy_name: str = ""
    prediction_accuracy: str = ""
    match_analysis: str = ""
    retrieval_success_rate: float = 0.0


@dataclass
class EvaluationResult:
    winning_amendment: WinningAmendment = field(default_factory=WinningAmendment)
    strategy_evaluation: StrategyEvaluation = field(default_factory=StrategyEvaluation)
    final_score: float = 0.0
    auditor_reasoning: str = ""


@dataclass
class AuditResult:
    """
    Evaluation of one case.

    The provider response is untrusted: labels outside the known
    enumerations are kept verbatim, missing fields default to empty, and
    numeric fields are coerced to float.
    """
    app_number: str
    evaluation_result: EvaluationResult
    roi_metrics: RoiMetrics

    @property
    def final_score(self) -> float:
        return self.evaluation_result.final_score

    @property
    def prediction_accuracy(self) -> str:
        return self.evaluation_result.strategy_evaluation.prediction_accuracy

    @property
    def source_type(self) -> str:
        return self.evaluation_result.winning_amendment.source_type

    @classmethod
    def from_response(cls, app_number: str, payload: Any,
                      roi_policy: Optional[RoiPolicy] = None) -> "AuditResult":
        roi_policy = roi_policy or RoiPolicy()
        data = payload.get('evaluation_result', payload) if isinstance(payload, dict) else {}
        if not isinstance(data, dict):
            data = {}

        amendment = data.get('winning_amendment') or {}
        strategy = data.get('strategy_evaluation') or {}
        if not isinstance(amendment, dict):
            amendment = {'summary': amendment}
        if not isinstance(strategy, dict):
            strategy = {'match_analysis': strategy}

        evaluation = EvaluationResult(
            winning_amendment=WinningAmendment(
                summary=_text(amendment.get('summary')),
                source_type=_text(amendment.get('source_type')),
                source_details=_text(amendment.get('source_details')),
                technical_delta=_text(amendment.get('technical_delta')),
                evidence_link=_text(amendment.get('evidence_link')),
            ),
            strategy_evaluation=StrategyEvaluation(
                best_matching_strategy_name=_text(strategy.get('best_matching_strategy_name')),
                prediction_accuracy=_text(strategy.get('prediction_accuracy')),
                match_analysis=_text(strategy.get('match_analysis')),
                retrieval_success_rate=_safe_float(strategy.get('retrieval_success_rate')),
            ),
            final_score=_safe_float(data.get('final_score')),
            auditor_reasoning=_text(data.get('auditor_reasoning')),
        )

        if evaluation.strategy_evaluation.prediction_accuracy not in PREDICTION_ACCURACY_LABELS:
            logger.debug(f"{app_number}: unrecognized prediction_accuracy "
                         f"'{evaluation.strategy_evaluation.prediction_accuracy}' kept as-is")
        if evaluation.winning_amendment.source_type not in SOURCE_TYPE_LABELS:
            logger.debug(f"{app_number}: unrecognized source_type "
                         f"'{evaluation.winning_amendment.source_type}' kept as-is")

        return cls(
            app_number=app_number,
            evaluation_result=evaluation,
            roi_metrics=roi_policy.metrics_for(evaluation.final_score),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditResult":
        """Rebuild a result from `to_dict` output (ROI metrics are taken as stored)"""
        result = cls.from_response(data.get('appNumber', ''), data)
        roi = data.get('roi_metrics') or {}
        result.roi_metrics = RoiMetrics(
            cost_saved=_safe_float(roi.get('cost_saved')),
            hours_saved=_safe_float(roi.get('hours_saved')),
            avoided_second_oa=bool(roi.get('avoided_second_oa', False)),
        )
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {
            'appNumber': self.app_number,
            'evaluation_result': asdict(self.evaluation_result),
            'roi_metrics': asdict(self.roi_metrics),
        }


@dataclass
class BatchSummary:
    total_apps: int
    avg_score: float
    total_savings: float
    total_hours: float
    accuracy_distribution: Dict[str, int]
    source_distribution: Dict[str, int]


def summarize(results: List[AuditResult]) -> BatchSummary:
    """Aggregate KPIs and label distributions over completed audits"""
    return BatchSummary(
        total_apps=len(results),
        avg_score=sum(r.final_score for r in results) / (len(results) or 1),
        total_savings=sum(r.roi_metrics.cost_saved for r in results),
        total_hours=sum(r.roi_metrics.hours_saved for r in results),
        accuracy_distribution=dict(Counter(r.prediction_accuracy for r in results)),
        source_distribution=dict(Counter(r.source_type for r in results)),
    )


# =============================================================================
# BATCH AUDIT
# =============================================================================
@dataclass
class BatchOutcome:
    results: List[AuditResult] = field(default_factory=list)
    failures: List[Tuple[str, str]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    halted: bool = False
    halt_reason: str = ""


ProgressCallback = Callable[[int, int, MergedCase, Optional[AuditResult]], None]


class CaseAuditor:
    """Runs the technical delta audit for merged cases, one provider call at a time"""

    def __init__(self, provider: AIProvider, roi_policy: Optional[RoiPolicy] = None,
                 skip_unmatched: bool = False):
        self.provider = provider
        self.roi_policy = roi_policy or RoiPolicy()
        self.skip_unmatched = skip_unmatched

    @classmethod
    def from_config(cls, provider: AIProvider, config: Dict[str, Any]) -> "CaseAuditor":
        return cls(
            provider,
            roi_policy=RoiPolicy.from_config(config),
            skip_unmatched=bool((config.get('audit') or {}).get('skip_unmatched', False)),
        )

    def audit_case(self, case: MergedCase) -> AuditResult:
        """Audit a single case; provider errors propagate"""
        payload = self.provider.complete_json(
            build_audit_prompt(case),
            system_prompt=SYSTEM_PROMPT,
            response_schema=RESPONSE_SCHEMA,
        )
        return AuditResult.from_response(case.app_number, payload, self.roi_policy)

    def run_batch(self, cases: List[MergedCase],
                  progress: Optional[ProgressCallback] = None,
                  on_result: Optional[Callable[[AuditResult], None]] = None) -> BatchOutcome:
        """
        Audit cases sequentially.

        A failing case is logged and skipped. An AuthorizationError stops the
        batch; results accumulated so far are kept in the outcome.
        """
        outcome = BatchOutcome()
        total = len(cases)

        for index, case in enumerate(cases, start=1):
            if self.skip_unmatched and not case.is_matched:
                logger.info(f"Skipping {case.app_number}: no ground truth match")
                outcome.skipped.append(case.app_number)
                if progress:
                    progress(index, total, case, None)
                continue

            try:
                result = self.audit_case(case)
            except AuthorizationError as e:
                logger.error(f"Authorization failure while auditing {case.app_number}: {e}")
                outcome.halted = True
                outcome.halt_reason = AUTHORIZATION_REMEDIATION
                break
            except Exception as e:
                logger.error(f"Audit error for {case.app_number}: {e}")
                outcome.failures.append((case.app_number, str(e)))
                if progress:
                    progress(index, total, case, None)
                continue

            outcome.results.append(result)
            if on_result:
                on_result(result)
            if progress:
                progress(index, total, case, result)

        logger.info(
            f"Batch audit finished: {len(outcome.results)} completed, "
            f"{len(outcome.failures)} failed, {len(outcome.skipped)} skipped"
            + (" (halted)" if outcome.halted else "")
        )
        return outcome
