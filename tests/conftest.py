"""Shared fixtures for the audit tests."""

import pytest

from ipaudit.correlation import MergedCase


def audit_payload(score=90, accuracy="Exact Match", source="Specification", delta="wherein the sensor is optical"):
    return {
        "evaluation_result": {
            "winning_amendment": {
                "summary": "Added optical sensor limitation",
                "source_type": source,
                "source_details": "Paragraph [0042]",
                "technical_delta": delta,
                "evidence_link": "[0042]",
            },
            "strategy_evaluation": {
                "best_matching_strategy_name": "Strategy 2",
                "prediction_accuracy": accuracy,
                "match_analysis": "Strategy 2 proposed the optical sensor",
                "retrieval_success_rate": 80,
            },
            "final_score": score,
            "auditor_reasoning": "The tool located the winning paragraph.",
        }
    }


@pytest.fixture
def matched_case():
    return MergedCase(
        app_number="16/123,456",
        original_claims="1. A device comprising a sensor.",
        office_action_summary="Claim 1 rejected under 102 over Smith.",
        generated_strategies="Strategy 2: specify the sensor is optical.",
        specification="[0042] The sensor may be an optical sensor.",
        granted_claims="1. A device comprising an optical sensor.",
        normalized_id="16123456",
        match_type="exact",
    )


@pytest.fixture
def unmatched_case():
    return MergedCase(
        app_number="17/000,001",
        original_claims="1. A method of brewing.",
        normalized_id="17000001",
    )
