from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator

MARK_TYPES = {"correction", "suggestion", "comment", "deletion", "insertion", "rewrite"}

MARK_STATUSES = {"pending", "accepted", "rejected", "modified"}

AUTHORS = {"ai", "human"}

SEVERITIES = {"high", "medium", "low"}

CATEGORIES = {
    "spelling",
    "grammar",
    "style",
    "consistency",
    "translation_style",
    "cliche",
    "pacing",
    "dialogue",
    "description",
    "plot",
    "character",
    "other",
}

SESSION_STATUSES = {"in_progress", "review", "approved"}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Document:
    text: str

    @property
    def length(self) -> int:
        return len(self.text)

    def slice(self, start: int, end: int) -> str:
        return self.text[start:end]


@dataclass(frozen=True)
class Mark:
    id: str
    document_ref: str
    type: str
    category: str
    start_offset: int
    end_offset: int
    original_text: str
    created_at: str
    status: str = "pending"
    author: str = "ai"
    suggested_text: str | None = None
    comment: str | None = None
    resolved_at: str | None = None
    resolved_by: str | None = None
    phase: str | None = None
    rule_id: str | None = None
    severity: str = "medium"

    @property
    def span(self) -> tuple[int, int]:
        return (self.start_offset, self.end_offset)

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    def overlaps(self, other: "Mark") -> bool:
        if self.start_offset < other.end_offset and other.start_offset < self.end_offset:
            return True
        # Two edits anchored at the same offset have no defined order when either is an insertion.
        if self.start_offset == other.start_offset:
            return self.start_offset == self.end_offset or other.start_offset == other.end_offset
        return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "document_ref": self.document_ref,
            "type": self.type,
            "status": self.status,
            "author": self.author,
            "category": self.category,
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
            "original_text": self.original_text,
            "suggested_text": self.suggested_text,
            "comment": self.comment,
            "created_at": self.created_at,
            "resolved_at": self.resolved_at,
            "resolved_by": self.resolved_by,
            "phase": self.phase,
            "rule_id": self.rule_id,
            "severity": self.severity,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Mark":
        return cls(
            id=str(payload["id"]),
            document_ref=str(payload.get("document_ref", "")),
            type=str(payload["type"]),
            category=str(payload.get("category", "other")),
            start_offset=int(payload["start_offset"]),
            end_offset=int(payload["end_offset"]),
            original_text=str(payload.get("original_text", "")),
            created_at=str(payload.get("created_at", "")),
            status=str(payload.get("status", "pending")),
            author=str(payload.get("author", "ai")),
            suggested_text=payload.get("suggested_text"),
            comment=payload.get("comment"),
            resolved_at=payload.get("resolved_at"),
            resolved_by=payload.get("resolved_by"),
            phase=payload.get("phase"),
            rule_id=payload.get("rule_id"),
            severity=str(payload.get("severity", "medium")),
        )


@dataclass(frozen=True)
class PhaseRecord:
    phase: str
    started_at: str
    editor_type: str
    completed_at: str | None = None
    marks_created: int = 0
    marks_resolved: int = 0
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "editor_type": self.editor_type,
            "marks_created": self.marks_created,
            "marks_resolved": self.marks_resolved,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "PhaseRecord":
        return cls(
            phase=str(payload["phase"]),
            started_at=str(payload["started_at"]),
            editor_type=str(payload.get("editor_type", "ai")),
            completed_at=payload.get("completed_at"),
            marks_created=int(payload.get("marks_created", 0)),
            marks_resolved=int(payload.get("marks_resolved", 0)),
            notes=payload.get("notes"),
        )


@dataclass(frozen=True)
class EditSession:
    id: str
    project_id: str
    document_ref: str
    current_phase: str
    phases: tuple[PhaseRecord, ...]
    created_at: str
    updated_at: str
    status: str = "in_progress"
    total_marks: int = 0
    resolved_marks: int = 0
    accepted_marks: int = 0
    rejected_marks: int = 0

    @property
    def active_record(self) -> PhaseRecord | None:
        for record in reversed(self.phases):
            if record.phase == self.current_phase:
                return record
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "document_ref": self.document_ref,
            "status": self.status,
            "current_phase": self.current_phase,
            "phases": [record.to_dict() for record in self.phases],
            "total_marks": self.total_marks,
            "resolved_marks": self.resolved_marks,
            "accepted_marks": self.accepted_marks,
            "rejected_marks": self.rejected_marks,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "EditSession":
        return cls(
            id=str(payload["id"]),
            project_id=str(payload.get("project_id", "")),
            document_ref=str(payload.get("document_ref", "")),
            current_phase=str(payload["current_phase"]),
            phases=tuple(PhaseRecord.from_dict(row) for row in payload.get("phases", [])),
            created_at=str(payload.get("created_at", "")),
            updated_at=str(payload.get("updated_at", "")),
            status=str(payload.get("status", "in_progress")),
            total_marks=int(payload.get("total_marks", 0)),
            resolved_marks=int(payload.get("resolved_marks", 0)),
            accepted_marks=int(payload.get("accepted_marks", 0)),
            rejected_marks=int(payload.get("rejected_marks", 0)),
        )


@dataclass(frozen=True)
class ManuscriptInfo:
    total_chars: int
    manuscript_pages: int
    estimated_book_pages: int
    publishing_category: str
    estimated_print_cost: str
    print_cost_min: int = 0
    print_cost_max: int = 0

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class Progress:
    percentage: int
    current_phase: str
    remaining_phases: tuple[str, ...]
    estimated_completion: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "percentage": self.percentage,
            "current_phase": self.current_phase,
            "remaining_phases": list(self.remaining_phases),
            "estimated_completion": self.estimated_completion,
        }


@dataclass(frozen=True)
class RuleFailure:
    rule_id: str
    phase: str
    reason: str
    detail: str

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class AnalysisResult:
    marks: tuple[Mark, ...] = ()
    failures: tuple[RuleFailure, ...] = ()

    def __iter__(self) -> Iterator[Mark]:
        return iter(self.marks)

    def __len__(self) -> int:
        return len(self.marks)

    def merge(self, other: "AnalysisResult") -> "AnalysisResult":
        return AnalysisResult(marks=self.marks + other.marks, failures=self.failures + other.failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "marks": [mark.to_dict() for mark in self.marks],
            "failures": [failure.to_dict() for failure in self.failures],
        }


@dataclass(frozen=True)
class ApplyResult:
    document: Document
    applied: tuple[Mark, ...] = ()
    conflicts: tuple[tuple[Mark, Mark], ...] = ()
    stale: tuple[Mark, ...] = ()

    @property
    def clean(self) -> bool:
        return not self.conflicts and not self.stale


@dataclass(frozen=True)
class ResolutionDecision:
    mark_id: str
    decision: str
    new_text: str | None = None
    resolved_by: str = "human"

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ResolutionDecision":
        mark_id = payload.get("mark_id", payload.get("markId"))
        new_text = payload.get("new_text", payload.get("newText"))
        return cls(
            mark_id=str(mark_id),
            decision=str(payload.get("decision", "")),
            new_text=new_text,
            resolved_by=str(payload.get("resolved_by", payload.get("resolvedBy", "human"))),
        )


@dataclass
class ParagraphSpan:
    start: int
    end: int
    text: str = field(repr=False)

    @property
    def length(self) -> int:
        return self.end - self.start


def ensure_document(value: Document | str) -> Document:
    if isinstance(value, Document):
        return value
    return Document(str(value))
