"""Tests for the tiered validation response parser."""

import json

import pytest

from rto_validator.schemas.validation import (
    OutcomeStatus,
    ParseTier,
    RequirementCategory,
    RequirementInput,
)
from rto_validator.services.response_parser import (
    UNPARSEABLE_REASONING,
    ResponseParser,
    extract_grounding_citations,
    normalize_key,
    normalize_status,
)


@pytest.fixture
def parser():
    return ResponseParser()


@pytest.fixture
def requirement():
    return RequirementInput(
        category=RequirementCategory.KNOWLEDGE_EVIDENCE,
        number="3",
        text="Knowledge of hazard identification",
    )


class TestTiers:
    def test_strict_json(self, parser):
        raw = json.dumps({
            "status": "Met",
            "reasoning": "Q4 asks the learner to identify hazards.",
            "mapped_content": "Assessment task 2, Q4",
            "citations": [{"document_name": "assessment.pdf", "page_numbers": [3, 4]}],
            "confidence": 0.85,
        })

        outcome = parser.parse(raw)

        assert outcome.parse_tier == ParseTier.STRICT
        assert outcome.status == OutcomeStatus.MET
        assert outcome.mapped_content == "Assessment task 2, Q4"
        assert outcome.citations[0].document_name == "assessment.pdf"
        assert outcome.citations[0].page_numbers == [3, 4]
        assert outcome.confidence == 0.85
        assert outcome.validation_error is False

    def test_fenced_json_with_prose(self, parser):
        raw = (
            "Here is my assessment:\n"
            "```json\n"
            '{"status": "not met", "reasoning": "No question covers it."}\n'
            "```\n"
            "Let me know if you need more."
        )

        outcome = parser.parse(raw)

        assert outcome.parse_tier == ParseTier.FENCED
        assert outcome.status == OutcomeStatus.NOT_MET
        assert outcome.reasoning == "No question covers it."

    def test_embedded_object_in_free_text(self, parser):
        raw = 'Result {"status": "partially_met", "reasoning": "Only one of two hazards."} done'

        outcome = parser.parse(raw)

        assert outcome.parse_tier == ParseTier.EMBEDDED
        assert outcome.status == OutcomeStatus.PARTIALLY_MET

    def test_heuristic_labels(self, parser):
        raw = (
            "STATUS: Partially Met\n"
            "REASONING: The workbook covers reporting but not control measures.\n"
            "GAPS: Hierarchy of control"
        )

        outcome = parser.parse(raw)

        assert outcome.parse_tier == ParseTier.HEURISTIC
        assert outcome.status == OutcomeStatus.PARTIALLY_MET
        assert outcome.reasoning == "The workbook covers reporting but not control measures."
        assert outcome.unmapped_content == "Hierarchy of control"

    def test_heuristic_keywords(self, parser):
        outcome = parser.parse("After review, the requirement is not met by the provided tasks.")

        assert outcome.parse_tier == ParseTier.HEURISTIC
        assert outcome.status == OutcomeStatus.NOT_MET

    @pytest.mark.parametrize("raw", ["", "   ", "I cannot help with that.", "{not json", None])
    def test_garbage_is_unparseable_not_an_exception(self, parser, raw):
        outcome = parser.parse(raw)

        assert outcome.parse_tier == ParseTier.UNPARSEABLE
        assert outcome.status == OutcomeStatus.NOT_MET
        assert outcome.reasoning == UNPARSEABLE_REASONING
        assert outcome.validation_error is True

    def test_json_without_status_falls_through(self, parser):
        outcome = parser.parse('{"reasoning": "looks fine"}')

        assert outcome.parse_tier == ParseTier.UNPARSEABLE

    def test_unknown_status_is_treated_as_not_met(self, parser):
        outcome = parser.parse('{"status": "maybe", "reasoning": "unclear"}')

        assert outcome.status == OutcomeStatus.NOT_MET
        assert outcome.validation_error is False


class TestNormalization:
    @pytest.mark.parametrize("raw, expected", [
        ("Met", OutcomeStatus.MET),
        ("MET", OutcomeStatus.MET),
        ("Partially Met", OutcomeStatus.PARTIALLY_MET),
        ("partially-met", OutcomeStatus.PARTIALLY_MET),
        ("NOT_MET", OutcomeStatus.NOT_MET),
        ("Not Met", OutcomeStatus.NOT_MET),
        ("non-compliant", OutcomeStatus.NOT_MET),
        ("unknown", None),
    ])
    def test_status_vocabulary(self, raw, expected):
        assert normalize_status(raw) == expected

    @pytest.mark.parametrize("raw, expected", [
        ("requirementNumber", "requirement_number"),
        ("Requirement Number", "requirement_number"),
        ("mapped-content", "mapped_content"),
        ("status", "status"),
    ])
    def test_key_spellings(self, raw, expected):
        assert normalize_key(raw) == expected

    def test_camel_case_payload(self, parser):
        raw = json.dumps({
            "validationStatus": "Met",
            "justification": "Covered",
            "evidenceFound": "Q1",
            "confidenceScore": "high",
        })

        outcome = parser.parse(raw)

        assert outcome.status == OutcomeStatus.MET
        assert outcome.reasoning == "Covered"
        assert outcome.mapped_content == "Q1"
        assert outcome.confidence == 0.9

    def test_percentage_confidence(self, parser):
        outcome = parser.parse('{"status": "met", "confidence": "80%"}')

        assert outcome.confidence == pytest.approx(0.8)


class TestBatchAndQuestions:
    def test_batch_payload_selects_matching_requirement(self, parser, requirement):
        raw = json.dumps({
            "requirementValidations": [
                {"requirementNumber": "1", "status": "Met", "reasoning": "one"},
                {"requirementNumber": "3", "status": "Not Met", "reasoning": "three"},
            ]
        })

        outcome = parser.parse(raw, requirement=requirement)

        assert outcome.status == OutcomeStatus.NOT_MET
        assert outcome.reasoning == "three"

    def test_top_level_array_is_treated_as_batch(self, parser, requirement):
        raw = json.dumps([
            {"requirement_number": "3", "status": "Partially Met", "reasoning": "three"},
        ])

        outcome = parser.parse(raw, requirement=requirement)

        assert outcome.status == OutcomeStatus.PARTIALLY_MET

    def test_smart_questions_kept_for_gaps(self, parser):
        raw = json.dumps({
            "status": "Not Met",
            "reasoning": "Missing",
            "smart_question": "How would you control a slip hazard?",
            "benchmark_answer": "Remove the spill and signpost.",
        })

        outcome = parser.parse(raw)

        assert len(outcome.smart_questions) == 1
        assert outcome.smart_questions[0].question == "How would you control a slip hazard?"
        assert outcome.smart_questions[0].benchmark_answer == "Remove the spill and signpost."

    def test_met_outcome_drops_smart_questions(self, parser):
        raw = json.dumps({"status": "Met", "smart_questions": ["Ask anyway?"]})

        assert parser.parse(raw).smart_questions == []

    def test_placeholder_question_is_ignored(self, parser):
        raw = json.dumps({"status": "Not Met", "smart_question": "N/A"})

        assert parser.parse(raw).smart_questions == []


class TestGrounding:
    def test_grounding_chunks_merge_and_deduplicate(self, parser):
        raw = json.dumps({
            "status": "Met",
            "citations": [{"document_name": "workbook.pdf", "page_numbers": [2]}],
        })
        grounding = {
            "grounding_chunks": [
                {"file_search_chunk": {"document_name": "workbook.pdf", "page_numbers": [2]}},
                {"retrieved_context": {"title": "assessment.pdf", "text": "Q4. Identify hazards"}},
                {"retrieved_context": {"title": "assessment.pdf", "text": "Q4. Identify hazards"}},
            ]
        }

        outcome = parser.parse(raw, grounding_metadata=grounding)

        assert [c.document_name for c in outcome.citations] == ["workbook.pdf", "assessment.pdf"]

    def test_camel_case_grounding(self):
        citations = extract_grounding_citations({
            "groundingChunks": [{"fileSearchChunk": {"documentName": "plan.docx", "pageNumbers": "4-5"}}]
        })

        assert citations[0].document_name == "plan.docx"
        assert citations[0].page_numbers == [4, 5]

    def test_malformed_grounding_is_ignored(self, parser):
        outcome = parser.parse('{"status": "Met"}', grounding_metadata={"grounding_chunks": ["oops"]})

        assert outcome.status == OutcomeStatus.MET
        assert outcome.citations == []
