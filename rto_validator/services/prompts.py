"""Prompt builders for requirement validation and smart question generation."""

import json
from typing import Optional

from rto_validator.schemas.validation import (
    RequirementCategory,
    RequirementInput,
    RequirementOutcomeData,
    ValidationContext,
)

VALIDATION_SYSTEM_INSTRUCTION = (
    "You are an expert RTO (Registered Training Organisation) assessment validator. "
    "You have access to the organisation's assessment documents through file search. "
    "Judge only against the evidence you can find in those documents."
)

CATEGORY_GUIDANCE = {
    RequirementCategory.KNOWLEDGE_EVIDENCE: (
        "Look for assessment questions that test this specific knowledge. "
        "Note question numbers and page numbers."
    ),
    RequirementCategory.PERFORMANCE_EVIDENCE: (
        "Look for practical tasks, observations or projects in which the learner "
        "demonstrates this performance, including frequency or volume requirements."
    ),
    RequirementCategory.FOUNDATION_SKILLS: (
        "Look for tasks that require the learner to use this foundation skill "
        "(reading, writing, oral communication, numeracy and similar) in context."
    ),
    RequirementCategory.ELEMENTS_PERFORMANCE_CRITERIA: (
        "Check that at least one assessment task or question maps to this "
        "performance criterion within its element."
    ),
    RequirementCategory.ASSESSMENT_CONDITIONS: (
        "Check that the assessment instructions, resources and environment described "
        "in the documents satisfy this condition."
    ),
}

RESPONSE_FORMAT = {
    "status": "met | partially_met | not_met",
    "reasoning": "why the status was chosen",
    "mapped_content": "assessment content that addresses the requirement, with locations",
    "unmapped_content": "what is missing or only partially covered",
    "citations": [{"document_name": "file name", "page_numbers": [1], "snippet": "quoted text"}],
    "smart_questions": [{"question": "a question that closes the gap", "benchmark_answer": "expected answer"}],
    "confidence": 0.0,
}


def build_validation_prompt(context: ValidationContext, requirement: RequirementInput) -> str:
    """Prompt for validating one requirement against the session's documents."""
    lines = [
        f"Unit of competency: {context.unit_code}",
        f"Requirement category: {requirement.category.label}",
        f"Requirement number: {requirement.number}",
    ]
    if requirement.element_text:
        lines.append(f"Element: {requirement.element_text}")
    lines.append(f"Requirement: {requirement.text}")
    lines.append("")
    lines.append(CATEGORY_GUIDANCE[requirement.category])
    lines.append("")
    lines.append(
        "Decide whether the assessment documents meet, partially meet or do not meet "
        "this requirement. Only provide smart_questions when the status is not met "
        "or partially met."
    )
    lines.append("Respond with a single JSON object in exactly this shape:")
    lines.append(json.dumps(RESPONSE_FORMAT, indent=2))
    return "\n".join(lines)


def build_smart_question_prompt(
    context: ValidationContext,
    requirement: RequirementInput,
    outcome: RequirementOutcomeData,
    user_context: Optional[str] = None,
) -> str:
    """Prompt for generating a gap-closing question for a non-met requirement.

    With ``user_context`` the prompt becomes a regeneration request: the
    current question (if any) is shown and the reviewer's feedback steers
    the replacement.
    """
    lines = [
        f"Unit of competency: {context.unit_code}",
        f"Requirement ({requirement.category.label} {requirement.number}): {requirement.text}",
        f"Validation status: {outcome.status.value}",
        f"Gaps identified: {outcome.unmapped_content or outcome.reasoning}",
    ]
    if user_context is not None:
        if outcome.smart_questions:
            current = outcome.smart_questions[0]
            lines.append(f"Current question: {current.question}")
            if current.benchmark_answer:
                lines.append(f"Current benchmark answer: {current.benchmark_answer}")
        lines.append(f"Reviewer feedback: {user_context.strip() or 'Please improve this question'}")
        lines.append("")
        lines.append("Write one improved assessment question that addresses the feedback, with a benchmark answer.")
    else:
        lines.append("")
        lines.append("Write one assessment question that would close the gap, with a benchmark answer.")
    lines.append('Respond with JSON: {"question": "...", "benchmark_answer": "..."}')
    return "\n".join(lines)
