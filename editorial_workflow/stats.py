"""Manuscript statistics, progress estimates and style scoring."""
from __future__ import annotations

import math
import re
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from .models import Document, EditSession, ManuscriptInfo, Mark, Progress, ensure_document, parse_iso
from .workflow import PHASE_LABELS, PHASE_ORDER, phase_index

MANUSCRIPT_PAGE_CHARS = 200
BOOK_PAGE_CHARS = 500
PRINT_RUN = 1000
COST_PER_PAGE_MIN = 30
COST_PER_PAGE_MAX = 50

SEVERITY_WEIGHTS = {"high": 5, "medium": 3, "low": 1}

WHITESPACE_RE = re.compile(r"\s")


def _round_half_up(value: float, digits: int = 0) -> float:
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def count_visible_chars(text: str) -> int:
    return len(WHITESPACE_RE.sub("", text))


def publishing_category(manuscript_pages: int) -> str:
    if manuscript_pages <= 200:
        return "short story"
    if manuscript_pages <= 600:
        return "novella"
    return "novel"


def format_cost(low: int, high: int) -> str:
    return f"approx. {low:,} - {high:,} KRW ({PRINT_RUN:,} copies)"


def calculate_manuscript_info(text: Document | str) -> ManuscriptInfo:
    total = count_visible_chars(ensure_document(text).text)
    manuscript_pages = math.ceil(total / MANUSCRIPT_PAGE_CHARS)
    book_pages = math.ceil(total / BOOK_PAGE_CHARS)
    low = book_pages * COST_PER_PAGE_MIN * PRINT_RUN
    high = book_pages * COST_PER_PAGE_MAX * PRINT_RUN
    return ManuscriptInfo(
        total_chars=total,
        manuscript_pages=manuscript_pages,
        estimated_book_pages=book_pages,
        publishing_category=publishing_category(manuscript_pages),
        estimated_print_cost=format_cost(low, high),
        print_cost_min=low,
        print_cost_max=high,
    )


def _estimate_completion(session: EditSession, phases_left: int, now: datetime) -> str:
    durations = [
        (parse_iso(record.completed_at) - parse_iso(record.started_at)).total_seconds()
        for record in session.phases
        if record.completed_at
    ]
    if not durations:
        return "not available"

    remaining = sum(durations) / len(durations) * phases_left
    hours = int(_round_half_up(remaining / 3600))
    if hours < 1:
        return "<1h"
    if hours < 24:
        return f"~{hours}h"
    days = int(_round_half_up(hours / 24))
    finish = now + timedelta(seconds=remaining)
    return f"~{days}d ({finish.date().isoformat()})"


def get_progress(session: EditSession, *, now_iso: str | None = None) -> Progress:
    index = phase_index(session.current_phase)
    total = len(PHASE_ORDER)
    now = parse_iso(now_iso) if now_iso else datetime.now(timezone.utc)
    return Progress(
        percentage=int(_round_half_up((index + 1) / total * 100)),
        current_phase=PHASE_LABELS[session.current_phase],
        remaining_phases=tuple(PHASE_LABELS[phase] for phase in PHASE_ORDER[index + 1 :]),
        estimated_completion=_estimate_completion(session, total - index - 1, now),
    )


def calculate_style_score(document: Document | str, marks: Iterable[Mark]) -> float:
    """Score prose naturalness from 0 to 100.

    Each mark costs its severity weight; the total is normalized per 1000
    visible characters and doubled before being subtracted from 100.
    """
    chars = count_visible_chars(ensure_document(document).text)
    if chars == 0:
        return 100.0
    penalty = sum(SEVERITY_WEIGHTS.get(mark.severity, SEVERITY_WEIGHTS["medium"]) for mark in marks)
    normalized = penalty / chars * 1000
    score = max(0.0, min(100.0, 100 - normalized * 2))
    return _round_half_up(score, 1)


def summarize_marks(marks: Iterable[Mark]) -> dict[str, Any]:
    items = list(marks)
    return {
        "total": len(items),
        "by_status": dict(Counter(mark.status for mark in items)),
        "by_category": dict(Counter(mark.category for mark in items)),
        "by_severity": dict(Counter(mark.severity for mark in items)),
    }
