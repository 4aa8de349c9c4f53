"""Parse the language model's JSON answer into the answer contract.

Models wrap JSON in markdown fences, emit partially valid objects, or answer
in prose. Valid pieces are kept field by field; when nothing usable remains
the raw text becomes a single uncited paragraph.
"""

import json
import logging
import re
from typing import Any, Optional

from pydantic import ValidationError

from schemas.answer import AnswerParagraph, ExternalReference, ModelAnswer, wire_name

logger = logging.getLogger(__name__)

CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


def strip_code_fences(raw: str) -> str:
    return CODE_FENCE.sub("", raw).strip()


def raw_text_answer(raw: str) -> ModelAnswer:
    return ModelAnswer(paragraphs=[AnswerParagraph(content=raw)])


def parse_model_output(raw: Optional[str]) -> ModelAnswer:
    """Convert raw model output into a ``ModelAnswer``.

    Blank output gives an empty answer; callers treat that as a failed
    completion. Output that is not a JSON object, or has no paragraph with
    non-blank content, gives one paragraph holding the raw text unchanged
    with no external references or followups.
    """
    if not raw or not raw.strip():
        return ModelAnswer()

    try:
        parsed = json.loads(strip_code_fences(raw))
    except json.JSONDecodeError as e:
        logger.warning("Model output is not valid JSON (%s); using raw text", e)
        return raw_text_answer(raw)

    if not isinstance(parsed, dict):
        logger.warning("Model output is JSON but not an object; using raw text")
        return raw_text_answer(raw)

    paragraphs = [
        p for p in map(_paragraph, _as_list(parsed, "paragraphs")) if p is not None
    ]
    if not paragraphs:
        logger.warning("Model output has no usable paragraphs; using raw text")
        return raw_text_answer(raw)

    references = [
        r for r in map(_external_reference, _as_list(parsed, "external_references"))
        if r is not None
    ]
    followups = [
        item for item in _as_list(parsed, "followups")
        if isinstance(item, str) and item.strip()
    ]
    return ModelAnswer(
        paragraphs=paragraphs,
        external_references=references,
        followups=followups,
    )


def _as_list(parsed: dict, field_name: str) -> list:
    value = parsed.get(wire_name(ModelAnswer, field_name))
    return value if isinstance(value, list) else []


def _paragraph(item: Any) -> Optional[AnswerParagraph]:
    if not isinstance(item, dict):
        return None
    try:
        return AnswerParagraph.model_validate(item)
    except ValidationError:
        pass
    # Retry without the citation list: a bad contextIds drops the ids, not the paragraph
    ids_key = wire_name(AnswerParagraph, "context_ids")
    without_ids = {k: v for k, v in item.items() if k not in (ids_key, "context_ids")}
    try:
        return AnswerParagraph.model_validate(without_ids)
    except ValidationError:
        return None


def _external_reference(item: Any) -> Optional[ExternalReference]:
    if not isinstance(item, dict):
        return None
    fields = {
        key: item.get(key)
        for key in (wire_name(ExternalReference, name) for name in ExternalReference.model_fields)
    }
    if not isinstance(fields.get("title"), str):
        return None
    return ExternalReference.model_validate(
        {key: value for key, value in fields.items() if isinstance(value, str)}
    )
