"""Turns raw model text into a normalized requirement outcome.

Parsing is a chain of tiers, tried in order. Every tier either returns a
payload or None, so ``ResponseParser.parse`` never raises: when all tiers
give up the result is a deterministic "unparseable" outcome flagged as a
validation error.
"""

import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from rto_validator.schemas.validation import (
    Citation,
    OutcomeStatus,
    ParseTier,
    RequirementInput,
    RequirementOutcomeData,
    SmartQuestion,
)
from rto_validator.utils.json_parser import extract_fenced_block, find_embedded_json, load_strict
from rto_validator.utils.logging import get_logger

LOGGER = get_logger(__name__)

UNPARSEABLE_REASONING = "Unable to parse validation response. Manual review required."

STATUS_ALIASES = {
    "met": OutcomeStatus.MET,
    "pass": OutcomeStatus.MET,
    "passed": OutcomeStatus.MET,
    "compliant": OutcomeStatus.MET,
    "fully met": OutcomeStatus.MET,
    "satisfied": OutcomeStatus.MET,
    "partially met": OutcomeStatus.PARTIALLY_MET,
    "partial": OutcomeStatus.PARTIALLY_MET,
    "partially": OutcomeStatus.PARTIALLY_MET,
    "partially compliant": OutcomeStatus.PARTIALLY_MET,
    "not met": OutcomeStatus.NOT_MET,
    "notmet": OutcomeStatus.NOT_MET,
    "unmet": OutcomeStatus.NOT_MET,
    "fail": OutcomeStatus.NOT_MET,
    "failed": OutcomeStatus.NOT_MET,
    "non compliant": OutcomeStatus.NOT_MET,
    "noncompliant": OutcomeStatus.NOT_MET,
    "not compliant": OutcomeStatus.NOT_MET,
}

# Canonical field name -> accepted spellings after key normalization
FIELD_ALIASES = {
    "status": ("status", "validation_status", "result", "verdict"),
    "reasoning": ("reasoning", "justification", "rationale", "explanation", "summary"),
    "mapped_content": ("mapped_content", "evidence_found", "evidence", "mapped_questions"),
    "unmapped_content": ("unmapped_content", "gaps", "recommendations", "missing_content"),
    "citations": ("citations", "doc_references", "document_references", "references"),
    "smart_questions": ("smart_questions", "smart_question", "smart_task", "practical_task"),
    "benchmark_answer": ("benchmark_answer", "model_answer"),
    "confidence": ("confidence", "confidence_score"),
}

BATCH_KEYS = ("requirement_validations", "validations", "results")

_CONFIDENCE_WORDS = {"high": 0.9, "medium": 0.6, "moderate": 0.6, "low": 0.3}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

_LABEL_PATTERN = r"^\s*\**\s*{label}\s*\**\s*[:\-]\s*"
_SECTION_LABELS = ("STATUS", "REASONING", "SUMMARY", "MAPPED CONTENT", "UNMAPPED CONTENT", "GAPS", "CITATIONS")


def normalize_key(key: str) -> str:
    """``requirementNumber`` / ``Requirement Number`` -> ``requirement_number``."""
    key = _CAMEL_BOUNDARY.sub("_", str(key).strip())
    return re.sub(r"[\s\-]+", "_", key).lower()


def normalize_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {normalize_key(k): normalize_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize_keys(v) for v in value]
    return value


def normalize_status(raw: Any) -> Optional[OutcomeStatus]:
    """Map a free-form status onto the fixed vocabulary, or None if unknown."""
    if raw is None:
        return None
    text = re.sub(r"[\s_\-]+", " ", str(raw)).strip().lower()
    return STATUS_ALIASES.get(text)


def _pick(payload: Dict[str, Any], field: str) -> Any:
    for alias in FIELD_ALIASES[field]:
        if alias in payload and payload[alias] not in (None, ""):
            return payload[alias]
    return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        return "\n".join(_as_text(v) for v in value if v not in (None, ""))
    if isinstance(value, dict):
        return "; ".join(f"{k}: {_as_text(v)}" for k, v in value.items())
    return str(value)


def _parse_confidence(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in _CONFIDENCE_WORDS:
        return _CONFIDENCE_WORDS[value.strip().lower()]
    try:
        number = float(str(value).strip().rstrip("%"))
    except ValueError:
        return None
    if 1.0 < number <= 100.0:
        number /= 100.0
    return max(0.0, min(1.0, number))


def _parse_pages(value: Any) -> List[int]:
    if value is None:
        return []
    if isinstance(value, int):
        return [value]
    if isinstance(value, str):
        return [int(n) for n in re.findall(r"\d+", value)]
    if isinstance(value, list):
        pages = []
        for item in value:
            pages.extend(_parse_pages(item))
        return pages
    return []


def _parse_citations(value: Any) -> List[Citation]:
    if not value:
        return []
    items = value if isinstance(value, list) else [value]
    citations = []
    for item in items:
        if isinstance(item, str) and item.strip():
            citations.append(Citation(document_name=item.strip()))
        elif isinstance(item, dict):
            name = (
                item.get("document_name") or item.get("document") or item.get("doc")
                or item.get("source") or item.get("title") or item.get("file")
            )
            if not name:
                continue
            pages = _parse_pages(
                item.get("page_numbers") or item.get("pages") or item.get("page")
            )
            snippet = item.get("snippet") or item.get("text") or item.get("quote")
            citations.append(
                Citation(document_name=str(name), page_numbers=pages, snippet=_as_text(snippet) or None)
            )
    return citations


def _parse_smart_questions(payload: Dict[str, Any]) -> List[SmartQuestion]:
    value = _pick(payload, "smart_questions")
    if value is None:
        return []
    benchmark = _as_text(_pick(payload, "benchmark_answer"))
    items = value if isinstance(value, list) else [value]
    questions = []
    for item in items:
        if isinstance(item, dict):
            item = normalize_keys(item)
            question = _as_text(item.get("question") or item.get("text") or item.get("task"))
            answer = _as_text(_pick(item, "benchmark_answer")) or benchmark
        else:
            question = _as_text(item)
            answer = benchmark
        if question and question.upper() not in ("N/A", "NA", "NONE"):
            questions.append(SmartQuestion(question=question, benchmark_answer=answer))
    return questions


def extract_grounding_citations(grounding_metadata: Optional[Dict[str, Any]]) -> List[Citation]:
    """Citations from provider grounding chunks.

    Accepts both the SDK's snake_case dump and the REST camelCase shape, with
    File Search chunks or generic retrieved contexts.
    """
    if not grounding_metadata:
        return []
    chunks = grounding_metadata.get("grounding_chunks") or grounding_metadata.get("groundingChunks") or []
    citations = []
    for chunk in chunks:
        file_chunk = chunk.get("file_search_chunk") or chunk.get("fileSearchChunk") or {}
        context = chunk.get("retrieved_context") or chunk.get("retrievedContext") or {}
        name = (
            file_chunk.get("document_name") or file_chunk.get("documentName")
            or context.get("title") or context.get("uri") or "Unknown document"
        )
        pages = _parse_pages(file_chunk.get("page_numbers") or file_chunk.get("pageNumbers"))
        snippet = file_chunk.get("content") or context.get("text")
        citations.append(
            Citation(document_name=name, page_numbers=pages, snippet=snippet[:500] if snippet else None)
        )
    return citations


def merge_citations(primary: List[Citation], extra: List[Citation]) -> List[Citation]:
    merged = []
    seen = set()
    for citation in list(primary) + list(extra):
        key = citation.dedupe_key()
        if key in seen:
            continue
        seen.add(key)
        merged.append(citation)
    return merged


class ResponseParser:
    """Tiered parser for validation responses."""

    def __init__(self):
        self.tiers: List[Tuple[ParseTier, Callable[[str], Optional[Any]]]] = [
            (ParseTier.STRICT, load_strict),
            (ParseTier.FENCED, self._fenced),
            (ParseTier.EMBEDDED, find_embedded_json),
        ]

    def parse(
        self,
        raw: str,
        grounding_metadata: Optional[Dict[str, Any]] = None,
        requirement: Optional[RequirementInput] = None,
    ) -> RequirementOutcomeData:
        """Parse model output into an outcome. Never raises."""
        outcome = None
        for tier, parse_tier in self.tiers:
            try:
                payload = parse_tier(raw or "")
                if payload is None:
                    continue
                outcome = self._from_payload(payload, tier, requirement)
            except Exception as e:
                LOGGER.debug(f"Parser tier {tier.value} rejected response: {e}")
                outcome = None
            if outcome is not None:
                break

        if outcome is None:
            try:
                outcome = self._heuristic(raw or "")
            except Exception as e:
                LOGGER.debug(f"Heuristic parse failed: {e}")
                outcome = None

        if outcome is None:
            LOGGER.warning(
                "Validation response could not be parsed",
                extra={"requirement": requirement.number if requirement else None, "length": len(raw or "")},
            )
            outcome = self.unparseable()

        return self._attach_grounding(outcome, grounding_metadata)

    @staticmethod
    def unparseable() -> RequirementOutcomeData:
        return RequirementOutcomeData(
            status=OutcomeStatus.NOT_MET,
            reasoning=UNPARSEABLE_REASONING,
            validation_error=True,
            parse_tier=ParseTier.UNPARSEABLE,
        )

    @staticmethod
    def _fenced(raw: str) -> Optional[Any]:
        block = extract_fenced_block(raw)
        if block is None:
            return None
        return load_strict(block) or find_embedded_json(block)

    def _select_entry(
        self, payload: Any, requirement: Optional[RequirementInput]
    ) -> Optional[Dict[str, Any]]:
        """Reduce a single or batch-shaped payload to one requirement's dict."""
        if isinstance(payload, list):
            payload = {"requirement_validations": payload}
        if not isinstance(payload, dict):
            return None
        payload = normalize_keys(payload)

        entries = None
        for key in BATCH_KEYS:
            if isinstance(payload.get(key), list) and payload[key]:
                entries = [e for e in payload[key] if isinstance(e, dict)]
                break
        if entries is None:
            return payload
        if not entries:
            return None

        if requirement is not None:
            for entry in entries:
                number = entry.get("requirement_number") or entry.get("number")
                if number is not None and str(number).strip() == requirement.number:
                    return entry
        return entries[0]

    def _from_payload(
        self, payload: Any, tier: ParseTier, requirement: Optional[RequirementInput]
    ) -> Optional[RequirementOutcomeData]:
        entry = self._select_entry(payload, requirement)
        if entry is None:
            return None

        raw_status = _pick(entry, "status")
        if raw_status is None:
            return None
        status = normalize_status(raw_status)
        if status is None:
            LOGGER.warning(f"Unknown validation status {raw_status!r}, treating as not_met")
            status = OutcomeStatus.NOT_MET

        smart_questions = [] if status == OutcomeStatus.MET else _parse_smart_questions(entry)

        return RequirementOutcomeData(
            status=status,
            reasoning=_as_text(_pick(entry, "reasoning")),
            mapped_content=_as_text(_pick(entry, "mapped_content")),
            unmapped_content=_as_text(_pick(entry, "unmapped_content")),
            citations=_parse_citations(_pick(entry, "citations")),
            smart_questions=smart_questions,
            confidence=_parse_confidence(_pick(entry, "confidence")),
            parse_tier=tier,
        )

    def _heuristic(self, raw: str) -> Optional[RequirementOutcomeData]:
        """Last-resort extraction from labelled prose."""
        if not raw.strip():
            return None

        status = None
        labelled = self._section(raw, "STATUS")
        if labelled:
            status = normalize_status(labelled.splitlines()[0].strip(" *.:"))
        if status is None:
            status = self._status_from_keywords(raw)
        if status is None:
            return None

        reasoning = self._section(raw, "REASONING") or self._section(raw, "SUMMARY") or raw.strip()[:2000]
        return RequirementOutcomeData(
            status=status,
            reasoning=reasoning,
            mapped_content=self._section(raw, "MAPPED CONTENT") or "",
            unmapped_content=self._section(raw, "UNMAPPED CONTENT") or self._section(raw, "GAPS") or "",
            parse_tier=ParseTier.HEURISTIC,
        )

    @staticmethod
    def _section(raw: str, label: str) -> Optional[str]:
        start = re.search(_LABEL_PATTERN.format(label=re.escape(label)), raw, re.IGNORECASE | re.MULTILINE)
        if not start:
            return None
        rest = raw[start.end():]
        others = "|".join(re.escape(l) for l in _SECTION_LABELS if l != label)
        end = re.search(_LABEL_PATTERN.format(label=f"(?:{others})"), rest, re.IGNORECASE | re.MULTILINE)
        text = rest[: end.start()] if end else rest
        return text.strip() or None

    @staticmethod
    def _status_from_keywords(raw: str) -> Optional[OutcomeStatus]:
        lowered = raw.lower()
        if re.search(r"\bpartially[\s_\-]*met\b|\bpartially meets\b", lowered):
            return OutcomeStatus.PARTIALLY_MET
        if re.search(r"\bnot[\s_\-]*met\b|\bdoes not meet\b|\bnon[\s\-]?compliant\b", lowered):
            return OutcomeStatus.NOT_MET
        if re.search(r"\bfully met\b|\bis met\b|\bstatus\W+met\b|\bmeets the requirement\b", lowered):
            return OutcomeStatus.MET
        return None

    @staticmethod
    def _attach_grounding(
        outcome: RequirementOutcomeData, grounding_metadata: Optional[Dict[str, Any]]
    ) -> RequirementOutcomeData:
        if not grounding_metadata:
            return outcome
        try:
            grounded = extract_grounding_citations(grounding_metadata)
            if grounded:
                outcome = outcome.model_copy(
                    update={"citations": merge_citations(outcome.citations, grounded)}
                )
        except Exception as e:
            LOGGER.warning(f"Failed to extract grounding citations: {e}")
        return outcome
