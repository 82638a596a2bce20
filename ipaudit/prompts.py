"""
IPAudit Prompts
System instruction, per-case audit prompt and response schema for the
technical delta audit.
"""

SYSTEM_PROMPT = """# SYSTEM ROLE
You are an expert AI Patent Auditor specializing in technical delta analysis. Your goal is to determine if an AI strategy tool successfully extracted the winning technical concept from a patent application's description.

# MANDATORY WORKFLOW
1. **Technical Delta Analysis**: Compare Original vs. Granted Claims. Identify the *specific* phrase or limitation that was added.
2. **Evidence Search**: Locate this winning limitation in the Specification. Note the context (e.g., paragraph number or technical section).
3. **Strategy Matching**: Audit all provided AI strategies. Look for semantic matches, technical synonyms, or direct paragraph references.
4. **Retrieval Success Mapping**: Rate how well the tool performed at finding the correct "needle" in the specification "haystack".

# SCORING ENGINE
- **100 (Direct Hit)**: The tool suggested the exact winning limitation or referenced the exact spec paragraph.
- **85 (Strategic Hit)**: The tool suggested the correct technical feature but used different wording.
- **70 (Proximate Hit)**: The tool suggested a limitation closely related to the winning one.
- **Below 70**: The tool missed the winning concept.

# CLASSIFICATION
- source_type: one of "Dependent Claim", "Specification", "Argument Only", "New Matter"
- prediction_accuracy: one of "Exact Match", "Concept Match", "Partial Match", "Miss"

# OUTPUT
Return a structured JSON response reflecting this detailed audit."""


AUDIT_PROMPT = """# AUDIT DATA

APP NUMBER: {app_number}

1. ORIGINAL CLAIMS:
{original_claims}

2. GRANTED CLAIMS (Ground Truth):
{granted_claims}

3. OFFICE ACTION SUMMARY:
{office_action_summary}

4. AI STRATEGIES (Evaluation Subject):
{generated_strategies}

5. APPLICATION SPECIFICATION:
{specification}

# TASK
Perform the Delta Audit. Extract the technical delta, find its source in the spec, and evaluate if the AI strategies found it."""


def _string(description: str = None) -> dict:
    field = {"type": "STRING"}
    if description:
        field["description"] = description
    return field


RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "evaluation_result": {
            "type": "OBJECT",
            "properties": {
                "winning_amendment": {
                    "type": "OBJECT",
                    "properties": {
                        "summary": _string(),
                        "source_type": _string(),
                        "source_details": _string(),
                        "technical_delta": _string("The exact technical limitation added to the claims"),
                        "evidence_link": _string("Specific paragraph or section in the spec where this delta originated"),
                    },
                    "required": ["summary", "source_type", "source_details", "technical_delta", "evidence_link"],
                },
                "strategy_evaluation": {
                    "type": "OBJECT",
                    "properties": {
                        "best_matching_strategy_name": _string(),
                        "prediction_accuracy": _string(),
                        "match_analysis": _string(),
                        "retrieval_success_rate": {"type": "NUMBER"},
                    },
                    "required": ["best_matching_strategy_name", "prediction_accuracy",
                                 "match_analysis", "retrieval_success_rate"],
                },
                "final_score": {"type": "NUMBER"},
                "auditor_reasoning": _string(),
            },
            "required": ["winning_amendment", "strategy_evaluation", "final_score", "auditor_reasoning"],
        }
    },
    "required": ["evaluation_result"],
}


def build_audit_prompt(case) -> str:
    """Fill the audit prompt from a MergedCase"""
    return AUDIT_PROMPT.format(
        app_number=case.app_number,
        original_claims=case.original_claims,
        granted_claims=case.granted_claims,
        office_action_summary=case.office_action_summary,
        generated_strategies=case.generated_strategies,
        specification=case.specification,
    )
