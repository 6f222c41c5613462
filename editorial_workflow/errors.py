from __future__ import annotations


class EditorialError(Exception):
    """Base error for the editorial workflow engine."""


class InvalidSpanError(EditorialError):
    pass


class OverlapConflictError(EditorialError):
    def __init__(self, message: str, *, conflicts=None):
        super().__init__(message)
        self.conflicts = conflicts or []


class StaleOriginalTextError(EditorialError):
    def __init__(self, message: str, *, marks=None):
        super().__init__(message)
        self.marks = marks or []


class PhaseOrderViolation(EditorialError):
    """Base for refused phase transitions."""


class PendingMarksError(PhaseOrderViolation):
    def __init__(self, message: str, *, pending=None):
        super().__init__(message)
        self.pending = pending or []


class PhaseAlreadyFinalError(PhaseOrderViolation):
    pass


class UnknownPhaseError(PhaseOrderViolation):
    pass


class MarkAlreadyResolvedError(EditorialError):
    pass


class UnknownMarkError(EditorialError):
    pass


class InvalidDecisionError(EditorialError):
    pass


class RuleConfigError(EditorialError):
    pass


class DuplicateMarkError(EditorialError):
    def __init__(self, message: str, *, existing=None, incoming=None):
        super().__init__(message)
        self.existing = existing
        self.incoming = incoming
