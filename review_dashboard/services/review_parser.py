"""
Review Response Parser

Interprets the raw text a provider returns for a review request.

Parsing never fails: valid JSON gives a structured review, otherwise the
legacy ``REVIEW SCORE: <n>`` line is searched for, and otherwise the raw
text becomes the summary with no score. Scores are clamped into [1, 10];
malformed comment entries are dropped one by one.
"""

import json
import math
import re
from typing import Any, Dict, List, Optional

from review_dashboard.logging_config import get_logger
from review_dashboard.models import ParsedReview, ReviewFinding, Severity

logger = get_logger(__name__)

MIN_SCORE = 1
MAX_SCORE = 10

LEGACY_SCORE_PATTERN = re.compile(r"REVIEW SCORE:\s*(\d+(?:\.\d+)?)", re.IGNORECASE)

_VALID_SEVERITIES = {severity.value for severity in Severity}

EMPTY_SUMMARY = "No summary provided."


def clamp_score(value: Any) -> Optional[int]:
    """
    Coerce a provider score into an integer in [1, 10].

    Out-of-range numbers are clamped, not rejected. Anything that is not a
    finite number (including booleans) yields None.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return int(min(MAX_SCORE, max(MIN_SCORE, round(number))))


def strip_code_fence(raw: str) -> str:
    """Remove one outer ```json ... ``` fence, leaving inner backticks alone."""
    cleaned = re.sub(r"^```(?:json)?\s*", "", raw.strip())
    return re.sub(r"\s*```$", "", cleaned.strip())


def normalize_finding(item: Any) -> Optional[ReviewFinding]:
    """Build a ReviewFinding from one comment entry, or None if unusable."""
    if not isinstance(item, dict):
        return None

    severity = str(item.get("severity") or "").strip().lower()
    if severity not in _VALID_SEVERITIES:
        severity = Severity.INFO.value

    line_number: Optional[int] = None
    raw_line = item.get("line_number")
    if raw_line is not None and not isinstance(raw_line, bool):
        try:
            line_number = int(raw_line)
        except (TypeError, ValueError):
            line_number = None
        if line_number is not None and line_number < 1:
            line_number = None

    def text(key: str, default: str = "") -> str:
        value = item.get(key)
        if value is None:
            return default
        return str(value) or default

    return ReviewFinding(
        file_path=text("file_path", "unknown"),
        line_number=line_number,
        severity=severity,
        title=text("title", "Code Issue"),
        content=text("content"),
        code_snippet=text("code_snippet"),
        suggested_fix=text("suggested_fix"),
    )


def _parse_comments(raw_comments: Any) -> List[ReviewFinding]:
    if not isinstance(raw_comments, list):
        return []

    findings: List[ReviewFinding] = []
    for index, item in enumerate(raw_comments):
        finding = normalize_finding(item)
        if finding is None:
            logger.warning("Skipping malformed review comment", index=index)
            continue
        findings.append(finding)
    return findings


def parse_review_response(raw: str) -> ParsedReview:
    """
    Interpret a provider response.

    Args:
        raw: Raw completion text

    Returns:
        ParsedReview; ``structured`` tells whether JSON was recovered
    """
    raw = raw or ""

    data: Optional[Dict[str, Any]] = None
    try:
        decoded = json.loads(strip_code_fence(raw))
        if isinstance(decoded, dict):
            data = decoded
    except json.JSONDecodeError:
        data = None

    if data is not None:
        summary = data.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            summary = raw.strip()
        return ParsedReview(
            summary=summary or EMPTY_SUMMARY,
            score=clamp_score(data.get("score")),
            comments=_parse_comments(data.get("comments")),
            structured=True,
        )

    logger.warning("Review response is not valid JSON, using legacy format", response_length=len(raw))

    score: Optional[int] = None
    match = LEGACY_SCORE_PATTERN.search(raw)
    if match:
        score = clamp_score(match.group(1))

    return ParsedReview(
        summary=raw.strip() or EMPTY_SUMMARY,
        score=score,
        comments=[],
        structured=False,
    )
