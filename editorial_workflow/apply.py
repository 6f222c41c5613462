"""Apply resolved marks to a document snapshot."""
from __future__ import annotations

import logging
from typing import Iterable

from .errors import OverlapConflictError, StaleOriginalTextError
from .marks import check_slice_equality
from .models import ApplyResult, Document, Mark, ensure_document

logger = logging.getLogger(__name__)


def _replacement(mark: Mark) -> str | None:
    if mark.suggested_text is not None:
        return mark.suggested_text
    if mark.type == "deletion":
        return ""
    return None


def select_applicable(marks: Iterable[Mark], *, include_modified: bool = False) -> list[Mark]:
    statuses = {"accepted", "modified"} if include_modified else {"accepted"}
    return [mark for mark in marks if mark.status in statuses and _replacement(mark) is not None]


def find_conflicts(marks: Iterable[Mark]) -> list[tuple[Mark, Mark]]:
    """Return every pair of marks whose spans cannot both be applied."""
    ordered = sorted(marks, key=lambda mark: (mark.start_offset, mark.end_offset))
    conflicts: list[tuple[Mark, Mark]] = []
    active: list[Mark] = []
    for mark in ordered:
        active = [
            prior
            for prior in active
            if prior.end_offset > mark.start_offset or prior.start_offset == mark.start_offset
        ]
        conflicts.extend((prior, mark) for prior in active if prior.overlaps(mark))
        active.append(mark)
    return conflicts


def _splice(text: str, marks: Iterable[Mark]) -> str:
    for mark in sorted(marks, key=lambda m: (m.start_offset, m.end_offset), reverse=True):
        text = text[: mark.start_offset] + _replacement(mark) + text[mark.end_offset :]
    return text


def apply_accepted(
    document: Document | str,
    marks: Iterable[Mark],
    *,
    include_modified: bool = False,
) -> Document:
    """Return a new document with every accepted mark spliced in.

    All-or-nothing: stale marks raise ``StaleOriginalTextError`` and
    intersecting marks raise ``OverlapConflictError`` before any edit is made.
    """
    doc = ensure_document(document)
    selected = select_applicable(marks, include_modified=include_modified)
    if not selected:
        return doc

    stale = [mark for mark in selected if not check_slice_equality(mark, doc)]
    if stale:
        logger.warning("Refusing to apply: %d mark(s) no longer match the document", len(stale))
        raise StaleOriginalTextError(
            f"{len(stale)} mark(s) no longer match the document text.",
            marks=stale,
        )

    conflicts = find_conflicts(selected)
    if conflicts:
        logger.warning("Refusing to apply: %d overlapping mark pair(s)", len(conflicts))
        raise OverlapConflictError(
            f"{len(conflicts)} pair(s) of accepted marks overlap.",
            conflicts=conflicts,
        )

    return Document(_splice(doc.text, selected))


def apply_accepted_with_report(
    document: Document | str,
    marks: Iterable[Mark],
    *,
    include_modified: bool = False,
) -> ApplyResult:
    """Apply what can be applied and report the rest.

    Marks are visited from the end of the document backwards; a mark is kept
    unless it overlaps one already kept. Stale marks are skipped.
    """
    doc = ensure_document(document)
    selected = select_applicable(marks, include_modified=include_modified)
    ordered = sorted(selected, key=lambda mark: (mark.start_offset, mark.end_offset), reverse=True)

    kept: list[Mark] = []
    stale: list[Mark] = []
    conflicts: list[tuple[Mark, Mark]] = []
    for mark in ordered:
        if not check_slice_equality(mark, doc):
            stale.append(mark)
            continue
        blocker = next((prior for prior in kept if prior.overlaps(mark)), None)
        if blocker is not None:
            conflicts.append((blocker, mark))
            continue
        kept.append(mark)

    if stale or conflicts:
        logger.warning(
            "Partial apply: %d applied, %d stale, %d conflicting",
            len(kept),
            len(stale),
            len(conflicts),
        )
    return ApplyResult(
        document=Document(_splice(doc.text, kept)) if kept else doc,
        applied=tuple(kept),
        conflicts=tuple(conflicts),
        stale=tuple(stale),
    )
