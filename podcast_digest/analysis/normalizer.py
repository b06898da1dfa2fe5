"""Decode model JSON into an AnalysisOutput without ever raising"""

import json
from typing import Any, List, Optional

from ..models import AnalysisOutput, KeyPoint, Keyword
from ..utils.logging import get_logger

logger = get_logger(__name__)

PARSE_FAILED_SUMMARY = "Analysis result could not be parsed"
UNAVAILABLE_SUMMARY = "Analysis result unavailable"


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _decode_key_point(item: Any) -> Optional[KeyPoint]:
    if isinstance(item, str):
        return KeyPoint(title=item, detail="")
    if isinstance(item, dict):
        return KeyPoint(title=_text(item.get('title')), detail=_text(item.get('detail')))
    return None


def _decode_keyword(item: Any) -> Optional[Keyword]:
    if not isinstance(item, dict):
        return None
    term = _text(item.get('word')) or _text(item.get('term'))
    context = _text(item.get('context')) or _text(item.get('explanation'))
    return Keyword(term=term, context=context)


def _decode_list(value: Any, decoder) -> List:
    if not isinstance(value, list):
        return []
    decoded = (decoder(item) for item in value)
    return [item for item in decoded if item is not None]


def normalize_analysis_result(raw: Optional[str]) -> AnalysisOutput:
    """Fields of the wrong shape fall back to placeholders or empty values"""
    try:
        data = json.loads(raw or "")
    except (TypeError, ValueError) as e:
        logger.error(f"Failed to parse analysis result: {e}; raw: {(raw or '')[:500]}")
        return AnalysisOutput(summary=PARSE_FAILED_SUMMARY)

    if not isinstance(data, dict):
        logger.error(f"Analysis result is not a JSON object: {str(raw)[:500]}")
        return AnalysisOutput(summary=PARSE_FAILED_SUMMARY)

    summary = data.get('summary')
    return AnalysisOutput(
        summary=summary if isinstance(summary, str) else UNAVAILABLE_SUMMARY,
        key_points=_decode_list(data.get('keyPoints'), _decode_key_point),
        keywords=_decode_list(data.get('keywords'), _decode_keyword),
        full_recap=_text(data.get('fullRecap')),
    )
