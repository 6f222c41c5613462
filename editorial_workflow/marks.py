"""Mark creation, resolution and the per-document resolution ledger."""
from __future__ import annotations

import hashlib
import logging
import threading
import uuid
from dataclasses import replace
from typing import Any, Iterable, Mapping

from .errors import (
    DuplicateMarkError,
    InvalidDecisionError,
    InvalidSpanError,
    MarkAlreadyResolvedError,
    UnknownMarkError,
)
from .models import (
    AUTHORS,
    CATEGORIES,
    MARK_TYPES,
    SEVERITIES,
    Document,
    Mark,
    ResolutionDecision,
    utc_now_iso,
)
from .schema_validator import validate_payload, validate_records

logger = logging.getLogger(__name__)

MARK_SCHEMA = "mark.schema.json"

DECISION_STATUS = {
    "accept": "accepted",
    "reject": "rejected",
    "modify": "modified",
}


def derive_mark_id(document_ref: str, rule_id: str, start: int, end: int, original_text: str = "") -> str:
    """Stable id for a rule mark; the covered text is hashed so snapshots never share ids."""
    key = "\x1f".join((document_ref, rule_id, str(start), str(end), original_text))
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
    return f"mk_{digest[:16]}"


def validate_span(document: Document, start: int, end: int) -> None:
    if start < 0 or end < 0:
        raise InvalidSpanError(f"Span [{start}, {end}) has a negative offset.")
    if start > end:
        raise InvalidSpanError(f"Span [{start}, {end}) starts after it ends.")
    if end > document.length:
        raise InvalidSpanError(f"Span [{start}, {end}) exceeds document length {document.length}.")


def create_mark(
    document: Document,
    start: int,
    end: int,
    *,
    type: str,
    category: str,
    document_ref: str = "",
    author: str = "ai",
    suggested_text: str | None = None,
    comment: str | None = None,
    phase: str | None = None,
    rule_id: str | None = None,
    severity: str = "medium",
    mark_id: str | None = None,
    now_iso: str | None = None,
) -> Mark:
    """Create a pending mark over ``document[start:end]``.

    The span is checked against the document and never clamped; the original
    text is always the exact slice so later application can detect drift.
    """
    validate_span(document, start, end)
    if type not in MARK_TYPES:
        raise ValueError(f"Unknown mark type '{type}'.")
    if category not in CATEGORIES:
        raise ValueError(f"Unknown mark category '{category}'.")
    if author not in AUTHORS:
        raise ValueError(f"Unknown mark author '{author}'.")
    if severity not in SEVERITIES:
        raise ValueError(f"Unknown mark severity '{severity}'.")

    original_text = document.slice(start, end)
    if mark_id is None:
        if rule_id:
            mark_id = derive_mark_id(document_ref, rule_id, start, end, original_text)
        else:
            mark_id = f"mk_{uuid.uuid4().hex}"

    return Mark(
        id=mark_id,
        document_ref=document_ref,
        type=type,
        category=category,
        start_offset=start,
        end_offset=end,
        original_text=original_text,
        created_at=now_iso or utc_now_iso(),
        status="pending",
        author=author,
        suggested_text=suggested_text,
        comment=comment,
        phase=phase,
        rule_id=rule_id,
        severity=severity,
    )


def resolve_mark(
    mark: Mark,
    decision: str,
    *,
    new_text: str | None = None,
    resolved_by: str = "human",
    now_iso: str | None = None,
) -> Mark:
    if not mark.is_pending:
        raise MarkAlreadyResolvedError(f"Mark {mark.id} is already {mark.status}.")
    status = DECISION_STATUS.get(decision)
    if status is None:
        raise InvalidDecisionError(f"Unknown decision '{decision}' for mark {mark.id}.")
    if resolved_by not in AUTHORS:
        raise InvalidDecisionError(f"Unknown resolver '{resolved_by}' for mark {mark.id}.")

    updates: dict[str, Any] = {
        "status": status,
        "resolved_at": now_iso or utc_now_iso(),
        "resolved_by": resolved_by,
    }
    if decision == "modify":
        if new_text is None:
            raise InvalidDecisionError(f"Modify decision for mark {mark.id} requires new text.")
        updates["suggested_text"] = new_text
    return replace(mark, **updates)


def validate_mark_payload(payload: Mapping[str, object]) -> Mark:
    validate_payload(payload, MARK_SCHEMA, f"mark {payload.get('id', '<unknown>')}")
    return Mark.from_dict(dict(payload))


def load_marks(payloads: Iterable[Mapping[str, object]]) -> list[Mark]:
    records = list(payloads)
    validate_records(records, MARK_SCHEMA, "mark")
    return [Mark.from_dict(dict(record)) for record in records]


def check_slice_equality(mark: Mark, document: Document) -> bool:
    if mark.end_offset > document.length or mark.start_offset > mark.end_offset:
        return False
    return document.slice(mark.start_offset, mark.end_offset) == mark.original_text


class MarkLedger:
    """Single-writer store of one document's marks.

    Resolution is a compare-and-set on ``status`` performed under a lock, so
    two concurrent decisions for the same mark cannot both succeed.
    """

    def __init__(self, document_ref: str, marks: Iterable[Mark] = ()):
        self.document_ref = document_ref
        self._lock = threading.Lock()
        self._marks: dict[str, Mark] = {}
        self.add(marks)

    def add(self, marks: Iterable[Mark]) -> list[Mark]:
        added: list[Mark] = []
        with self._lock:
            for mark in marks:
                if mark.document_ref and self.document_ref and mark.document_ref != self.document_ref:
                    raise ValueError(
                        f"Mark {mark.id} belongs to '{mark.document_ref}', not '{self.document_ref}'."
                    )
                existing = self._marks.get(mark.id)
                if existing is not None:
                    if existing == mark:
                        continue
                    raise DuplicateMarkError(
                        f"Mark id {mark.id} is already used by a different mark in '{self.document_ref}'.",
                        existing=existing,
                        incoming=mark,
                    )
                self._marks[mark.id] = mark
                added.append(mark)
        return added

    def get(self, mark_id: str) -> Mark:
        try:
            return self._marks[mark_id]
        except KeyError:
            raise UnknownMarkError(f"No mark with id {mark_id} in '{self.document_ref}'.") from None

    def marks(self) -> list[Mark]:
        return list(self._marks.values())

    def pending(self, phase: str | None = None) -> list[Mark]:
        return [
            mark
            for mark in self._marks.values()
            if mark.is_pending and (phase is None or mark.phase in (None, phase))
        ]

    def resolve(
        self,
        mark_id: str,
        decision: str,
        *,
        new_text: str | None = None,
        resolved_by: str = "human",
        now_iso: str | None = None,
    ) -> Mark:
        with self._lock:
            current = self.get(mark_id)
            resolved = resolve_mark(
                current,
                decision,
                new_text=new_text,
                resolved_by=resolved_by,
                now_iso=now_iso,
            )
            self._marks[mark_id] = resolved
        logger.debug("Resolved mark %s as %s", mark_id, resolved.status)
        return resolved

    def apply_decisions(
        self,
        decisions: Iterable[ResolutionDecision | Mapping[str, Any]],
        *,
        now_iso: str | None = None,
    ) -> list[Mark]:
        resolved: list[Mark] = []
        for raw in decisions:
            decision = raw if isinstance(raw, ResolutionDecision) else ResolutionDecision.from_dict(dict(raw))
            resolved.append(
                self.resolve(
                    decision.mark_id,
                    decision.decision,
                    new_text=decision.new_text,
                    resolved_by=decision.resolved_by,
                    now_iso=now_iso,
                )
            )
        return resolved
