"""Editorial workflow engine: span-anchored marks, phase gating and mark application."""
from .analyzer import AnalysisContext, analyze, analyze_phases
from .apply import apply_accepted, apply_accepted_with_report
from .config import AnalyzerSettings, RuleConfig, default_rule_config, load_rule_config
from .errors import (
    DuplicateMarkError,
    EditorialError,
    InvalidDecisionError,
    InvalidSpanError,
    MarkAlreadyResolvedError,
    OverlapConflictError,
    PendingMarksError,
    PhaseAlreadyFinalError,
    PhaseOrderViolation,
    RuleConfigError,
    StaleOriginalTextError,
    UnknownMarkError,
    UnknownPhaseError,
)
from .marks import MarkLedger, create_mark, resolve_mark
from .models import (
    AnalysisResult,
    ApplyResult,
    Document,
    EditSession,
    ManuscriptInfo,
    Mark,
    PhaseRecord,
    Progress,
    ResolutionDecision,
    RuleFailure,
)
from .stats import calculate_manuscript_info, calculate_style_score, get_progress, summarize_marks
from .workflow import (
    PHASE_ORDER,
    advance_phase,
    create_session,
    get_all_phases,
    get_category_label,
    get_phase_label,
    record_marks,
    record_resolution,
)

__version__ = "0.1.0"
