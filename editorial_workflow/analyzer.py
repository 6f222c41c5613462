"""Rule-based manuscript analyzers that emit pending marks per editing phase.

Each editing phase maps to one detector family:

  structural_edit -> paragraph balance, dialogue ratio, cast presence, length
  line_edit       -> clichés, translation-style patterns, repetition, telling, long sentences,
                     subject streaks, connector overuse, nominal endings, tense mixing
  copy_edit       -> spelling / punctuation / loanword substitutions, double passives
  proofread       -> spelled-out numbers, proper-noun spacing, particle repetition

Every rule runs in isolation: a broken pattern, an exception, or a rule that
exceeds ``max_matches_per_rule`` is skipped and reported as a ``RuleFailure``
while the rest of the pass continues.
"""
from __future__ import annotations

import logging
import math
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Sequence

from .config import AdvisoryRule, AnalyzerSettings, RuleConfig, SubstitutionRule, default_rule_config
from .errors import UnknownPhaseError
from .marks import create_mark
from .models import (
    AnalysisResult,
    Document,
    Mark,
    ParagraphSpan,
    RuleFailure,
    ensure_document,
    utc_now_iso,
)
from .workflow import PHASE_ORDER

logger = logging.getLogger(__name__)

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
SENTENCE_BREAK = re.compile(r"(?<=[.?!])\s+")
SENTENCE_END = re.compile(r"[.?!]\s")
PARTICLE_SENTENCE_BREAK = re.compile(r"[.?!]\s*")
WHITESPACE = re.compile(r"\s")
TENSE_PARAGRAPH_MIN_CHARS = 20


@dataclass(frozen=True)
class AnalysisContext:
    document_ref: str = ""
    participants: tuple[str, ...] = ()
    rules: RuleConfig = field(default_factory=default_rule_config)
    settings: AnalyzerSettings = field(default_factory=AnalyzerSettings)


class MatchCapExceeded(Exception):
    pass


def _trimmed_span(text: str, start: int, end: int) -> tuple[int, int] | None:
    segment = text[start:end]
    stripped = segment.strip()
    if not stripped:
        return None
    leading = len(segment) - len(segment.lstrip())
    return start + leading, start + leading + len(stripped)


def _split_spans(text: str, separator: re.Pattern[str]) -> list[ParagraphSpan]:
    spans: list[ParagraphSpan] = []
    cursor = 0
    bounds = [(match.start(), match.end()) for match in separator.finditer(text)]
    bounds.append((len(text), len(text)))
    for sep_start, sep_end in bounds:
        trimmed = _trimmed_span(text, cursor, sep_start)
        if trimmed is not None:
            spans.append(ParagraphSpan(start=trimmed[0], end=trimmed[1], text=text[trimmed[0] : trimmed[1]]))
        cursor = sep_end
    return spans


def split_paragraphs(text: str) -> list[ParagraphSpan]:
    return _split_spans(text, PARAGRAPH_BREAK)


def split_sentences(text: str) -> list[ParagraphSpan]:
    return _split_spans(text, SENTENCE_BREAK)


class _Pass:
    """Collects marks and failures for one phase over one document."""

    def __init__(self, document: Document, phase: str, context: AnalysisContext, now_iso: str):
        self.document = document
        self.text = document.text
        self.phase = phase
        self.context = context
        self.settings = context.settings
        self.now_iso = now_iso
        self.marks: list[Mark] = []
        self.failures: list[RuleFailure] = []
        self._seen_ids: set[str] = set()

    def matches(self, pattern: str | re.Pattern[str], text: str | None = None) -> Iterator[re.Match[str]]:
        regex = pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)
        cap = self.settings.max_matches_per_rule
        count = 0
        for match in regex.finditer(self.text if text is None else text):
            if match.start() == match.end():
                continue
            count += 1
            if count > cap:
                raise MatchCapExceeded(f"more than {cap} matches")
            yield match

    def count(self, pattern: str | re.Pattern[str], text: str | None = None) -> int:
        """Number of non-empty matches. Not subject to ``max_matches_per_rule``."""
        regex = pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)
        return sum(1 for match in regex.finditer(self.text if text is None else text) if match.end() > match.start())

    def mark(
        self,
        rule_id: str,
        start: int,
        end: int,
        *,
        type: str,
        category: str,
        comment: str | None = None,
        suggested_text: str | None = None,
        severity: str = "medium",
    ) -> Mark:
        return create_mark(
            self.document,
            start,
            end,
            type=type,
            category=category,
            document_ref=self.context.document_ref,
            author="ai",
            suggested_text=suggested_text,
            comment=comment,
            phase=self.phase,
            rule_id=rule_id,
            severity=severity,
            now_iso=self.now_iso,
        )

    def _fail(self, rule_id: str, reason: str, detail: str) -> None:
        logger.warning("Skipping rule %s in %s: %s (%s)", rule_id, self.phase, reason, detail)
        self.failures.append(RuleFailure(rule_id=rule_id, phase=self.phase, reason=reason, detail=detail))

    def run(self, rule_id: str, producer: Callable[[], Iterable[Mark]]) -> None:
        cap = self.settings.max_matches_per_rule
        produced: list[Mark] = []
        try:
            for mark in producer():
                produced.append(mark)
                if len(produced) > cap:
                    raise MatchCapExceeded(f"more than {cap} marks")
        except MatchCapExceeded as exc:
            self._fail(rule_id, "match_cap", str(exc))
            return
        except re.error as exc:
            self._fail(rule_id, "error", f"invalid pattern: {exc}")
            return
        except Exception as exc:  # noqa: BLE001
            self._fail(rule_id, "error", f"{type(exc).__name__}: {exc}")
            return

        for mark in produced:
            if mark.id in self._seen_ids:
                continue
            self._seen_ids.add(mark.id)
            self.marks.append(mark)

    def result(self) -> AnalysisResult:
        return AnalysisResult(marks=tuple(self.marks), failures=tuple(self.failures))


# ---------------------------------------------------------------------------
# structural
# ---------------------------------------------------------------------------


def _long_paragraphs(run: _Pass, paragraphs: Sequence[ParagraphSpan]) -> Iterator[Mark]:
    if not paragraphs:
        return
    mean = sum(p.length for p in paragraphs) / len(paragraphs)
    threshold = mean * run.settings.long_paragraph_factor
    for paragraph in paragraphs:
        if paragraph.length > threshold and paragraph.length > run.settings.long_paragraph_floor:
            yield run.mark(
                "structural.long_paragraph",
                paragraph.start,
                paragraph.end,
                type="suggestion",
                category="pacing",
                comment=(
                    f"Paragraph is {paragraph.length} chars, {paragraph.length / mean:.1f}x the "
                    f"average of {round(mean)}. Consider splitting the scene or the paragraph."
                ),
            )


def _short_runs(run: _Pass, paragraphs: Sequence[ParagraphSpan]) -> Iterator[Mark]:
    size = run.settings.short_run_length
    quotes = run.context.rules.dialogue_quotes

    def is_dialogue(paragraph: ParagraphSpan) -> bool:
        return any(quote in paragraph.text for quote in quotes)

    flagged: list[int] = []
    for index in range(len(paragraphs) - size + 1):
        window = paragraphs[index : index + size]
        if all(p.length < run.settings.short_paragraph_max for p in window) and not all(
            is_dialogue(p) for p in window
        ):
            flagged.append(index)

    # Overlapping windows collapse into one run.
    runs: list[tuple[int, int]] = []
    for index in flagged:
        if runs and index <= runs[-1][1] + 1:
            runs[-1] = (runs[-1][0], index + size - 1)
        else:
            runs.append((index, index + size - 1))

    for first, last in runs:
        count = last - first + 1
        yield run.mark(
            "structural.short_paragraph_run",
            paragraphs[first].start,
            paragraphs[last].end,
            type="suggestion",
            category="pacing",
            comment=(
                f"{count} short paragraphs in a row. Add description or interiority to vary the rhythm."
            ),
        )


def _dialogue_ratio(run: _Pass) -> Iterator[Mark]:
    text = run.text
    quoted = run.count(run.context.rules.dialogue_pattern)
    sentences = run.count(SENTENCE_END) + 1
    ratio = quoted / sentences
    head_end = min(len(text), 100)
    if ratio > run.settings.dialogue_ratio_max:
        yield run.mark(
            "structural.dialogue_ratio_high",
            0,
            head_end,
            type="comment",
            category="pacing",
            comment=(
                f"Dialogue makes up {round(ratio * 100)}% of sentences. Balance it with interiority, "
                "setting and action."
            ),
        )
    elif ratio < run.settings.dialogue_ratio_min and len(text) > run.settings.low_dialogue_min_chars:
        yield run.mark(
            "structural.dialogue_ratio_low",
            0,
            head_end,
            type="comment",
            category="dialogue",
            comment=(
                f"Dialogue makes up only {round(ratio * 100)}% of sentences. Let dialogue reveal "
                "character and conflict."
            ),
        )


def _missing_participants(run: _Pass) -> Iterator[Mark]:
    missing = [name for name in run.context.participants if name and name not in run.text]
    if missing:
        yield run.mark(
            "structural.missing_participants",
            0,
            min(len(run.text), 50),
            type="comment",
            category="character",
            comment=f"Characters [{', '.join(missing)}] do not appear in this text. Confirm this is intended.",
        )


def _short_document(run: _Pass) -> Iterator[Mark]:
    if len(run.text) < run.settings.short_document_chars:
        yield run.mark(
            "structural.short_document",
            0,
            len(run.text),
            type="comment",
            category="pacing",
            comment=f"The text is only {len(run.text)} chars. Develop the scene further.",
        )


def analyze_structure(run: _Pass) -> None:
    paragraphs = split_paragraphs(run.text)
    run.run("structural.long_paragraph", lambda: _long_paragraphs(run, paragraphs))
    run.run("structural.short_paragraph_run", lambda: _short_runs(run, paragraphs))
    run.run("structural.dialogue_ratio", lambda: _dialogue_ratio(run))
    run.run("structural.missing_participants", lambda: _missing_participants(run))
    run.run("structural.short_document", lambda: _short_document(run))


# ---------------------------------------------------------------------------
# line
# ---------------------------------------------------------------------------


def _advisory_matches(
    run: _Pass,
    rule: AdvisoryRule,
    *,
    type: str,
    category: str,
    prefix: str = "",
) -> Iterator[Mark]:
    for match in run.matches(rule.pattern):
        yield run.mark(
            rule.id,
            match.start(),
            match.end(),
            type=type,
            category=category,
            comment=f"{prefix}{rule.suggestion}",
            severity=rule.severity,
        )


def _repetition(run: _Pass, word: str) -> Iterator[Mark]:
    # At most one mark per word, so every occurrence is scanned.
    positions = [match.start() for match in re.finditer(re.escape(word), run.text)]
    needed = run.settings.repetition_min_count
    for index in range(len(positions) - needed + 1):
        if positions[index + needed - 1] - positions[index] < run.settings.repetition_window:
            start = positions[index]
            yield run.mark(
                f"repetition.{word}",
                start,
                start + len(word),
                type="suggestion",
                category="style",
                comment=(
                    f'"{word}" repeats {needed}+ times within {run.settings.repetition_window} chars. '
                    "Vary the expression."
                ),
                severity="low",
            )
            return


def _long_sentences(run: _Pass) -> Iterator[Mark]:
    for sentence in split_sentences(run.text):
        if sentence.length > run.settings.long_sentence_chars:
            yield run.mark(
                "line.long_sentence",
                sentence.start,
                sentence.end,
                type="suggestion",
                category="style",
                comment=f"Sentence is {sentence.length} chars. Split it into two or three for readability.",
            )


def _leading_word(text: str, words: Sequence[str]) -> str | None:
    for word in words:
        if text.startswith(word):
            return word
    return None


def _subject_repetition(run: _Pass, sentences: Sequence[ParagraphSpan]) -> Iterator[Mark]:
    markers = run.context.rules.subject_markers
    streaks: list[tuple[str, list[ParagraphSpan]]] = []
    current: str | None = None
    for sentence in sentences:
        subject = _leading_word(sentence.text, markers)
        if subject is not None and subject == current:
            streaks[-1][1].append(sentence)
        elif subject is not None:
            streaks.append((subject, [sentence]))
        current = subject

    for subject, streak in streaks:
        if len(streak) >= run.settings.subject_repeat_count:
            yield run.mark(
                "line.subject_repetition",
                streak[0].start,
                streak[-1].end,
                type="suggestion",
                category="translation_style",
                comment=(
                    f'"{subject}" opens {len(streak)} sentences in a row. Korean usually drops a repeated '
                    "subject; omit it or rephrase."
                ),
            )


def _connector_starts(run: _Pass, sentences: Sequence[ParagraphSpan]) -> list[tuple[str, ParagraphSpan]]:
    starts: list[tuple[str, ParagraphSpan]] = []
    for sentence in sentences:
        connector = _leading_word(sentence.text, run.context.rules.connectors)
        if connector is not None:
            starts.append((connector, sentence))
    return starts


def _connector_overuse(run: _Pass, sentences: Sequence[ParagraphSpan]) -> Iterator[Mark]:
    starts = _connector_starts(run, sentences)
    if len(sentences) < run.settings.connector_min_sentences or not starts:
        return
    ratio = len(starts) / len(sentences)
    if ratio > run.settings.connector_ratio_max:
        connector, sentence = starts[0]
        yield run.mark(
            "line.connector_overuse",
            sentence.start,
            sentence.start + len(connector),
            type="comment",
            category="style",
            comment=(
                f"{len(starts)} of {len(sentences)} sentences ({round(ratio * 100)}%) open with a connector. "
                "Cut connectors and vary the sentence structure."
            ),
            severity="low",
        )


def _connector_start(run: _Pass, sentences: Sequence[ParagraphSpan], connector: str) -> Iterator[Mark]:
    opened = [sentence for word, sentence in _connector_starts(run, sentences) if word == connector]
    if len(opened) >= run.settings.connector_repeat_count:
        first = opened[0]
        yield run.mark(
            f"line.connector_start.{connector}",
            first.start,
            first.start + len(connector),
            type="suggestion",
            category="style",
            comment=f'"{connector}" opens {len(opened)} sentences. Use another transition or restructure.',
            severity="low",
        )


def _nominalizations(run: _Pass) -> list[re.Match[str]]:
    pattern = run.context.rules.nominalization_pattern
    if not pattern:
        return []
    return [match for match in re.finditer(pattern, run.text) if match.end() > match.start()]


def _nominalization_density(run: _Pass) -> Iterator[Mark]:
    found = _nominalizations(run)
    letters = len(WHITESPACE.sub("", run.text))
    threshold = max(
        run.settings.nominalization_min,
        math.ceil(letters / 1000) * run.settings.nominalization_per_1000,
    )
    if found and len(found) >= threshold:
        first = found[0]
        yield run.mark(
            "line.nominalization",
            first.start(),
            first.end(),
            type="comment",
            category="translation_style",
            comment=(
                f"Nominal endings (~함, ~됨, ~음) appear {len(found)} times. Verb endings such as "
                "~합니다 or ~했다 read more naturally."
            ),
        )


def _nominalization_endings(run: _Pass) -> Iterator[Mark]:
    found = _nominalizations(run)
    listed = run.settings.nominalization_listed
    if len(found) <= listed:
        return
    for match in found[:listed]:
        yield run.mark(
            "line.nominalization_ending",
            match.start(),
            match.end(),
            type="suggestion",
            category="translation_style",
            comment=f'Turn "{match.group(0)}" into a verb ending, e.g. ~했음 -> ~했다.',
            severity="low",
        )


def _tense_mixing(run: _Pass) -> Iterator[Mark]:
    rules = run.context.rules
    if not rules.past_tense_pattern or not rules.present_tense_pattern:
        return
    past = re.compile(rules.past_tense_pattern)
    present = re.compile(rules.present_tense_pattern)
    needed = run.settings.tense_min_sentences

    for paragraph in split_paragraphs(run.text):
        if paragraph.length < TENSE_PARAGRAPH_MIN_CHARS:
            continue
        sentences = split_sentences(paragraph.text)
        if len(sentences) < needed:
            continue
        tensed: list[tuple[str, ParagraphSpan]] = []
        for sentence in sentences:
            if past.search(sentence.text):
                tensed.append(("past", sentence))
            elif present.search(sentence.text):
                tensed.append(("present", sentence))
        if len(tensed) < needed:
            continue

        past_count = sum(1 for tense, _ in tensed if tense == "past")
        present_count = len(tensed) - past_count
        dominant = "past" if past_count >= present_count else "present"
        minority = present_count if dominant == "past" else past_count
        ratio = minority / len(tensed)
        if minority < 2 or not run.settings.tense_minority_min <= ratio <= run.settings.tense_minority_max:
            continue

        stray = next(sentence for tense, sentence in tensed if tense != dominant)
        start = paragraph.start + stray.start
        yield run.mark(
            "line.tense_mixing",
            start,
            start + stray.length,
            type="suggestion",
            category="style",
            comment=(
                f"Paragraph narrates in the {dominant} tense but switches tense {minority} times. "
                f"Keep it in the {dominant} tense."
            ),
            severity="high",
        )


def analyze_line(run: _Pass) -> None:
    rules = run.context.rules
    for rule in rules.cliches:
        run.run(
            rule.id,
            lambda rule=rule: _advisory_matches(run, rule, type="suggestion", category="cliche", prefix="Cliché: "),
        )
    for rule in rules.translation_patterns:
        run.run(
            rule.id,
            lambda rule=rule: _advisory_matches(run, rule, type="correction", category="translation_style"),
        )
    for word in rules.repetition_targets:
        run.run(f"repetition.{word}", lambda word=word: _repetition(run, word))
    for rule in rules.telling_patterns:
        run.run(
            rule.id,
            lambda rule=rule: _advisory_matches(run, rule, type="suggestion", category="style"),
        )
    run.run("line.long_sentence", lambda: _long_sentences(run))

    sentences = split_sentences(run.text)
    run.run("line.subject_repetition", lambda: _subject_repetition(run, sentences))
    run.run("line.connector_overuse", lambda: _connector_overuse(run, sentences))
    for connector in rules.connectors:
        run.run(
            f"line.connector_start.{connector}",
            lambda connector=connector: _connector_start(run, sentences, connector),
        )
    run.run("line.nominalization", lambda: _nominalization_density(run))
    run.run("line.nominalization_ending", lambda: _nominalization_endings(run))
    run.run("line.tense_mixing", lambda: _tense_mixing(run))


# ---------------------------------------------------------------------------
# copy
# ---------------------------------------------------------------------------


def _substitutions(run: _Pass, rule: SubstitutionRule, *, category: str, loanword: bool = False) -> Iterator[Mark]:
    for match in run.matches(rule.pattern):
        original = match.group(0)
        corrected = match.expand(rule.correction)
        if corrected == original:
            continue
        comment = rule.description or (
            f'Standard loanword spelling of "{original}" is "{corrected}".' if loanword else None
        )
        yield run.mark(
            rule.id,
            match.start(),
            match.end(),
            type="correction",
            category=category,
            comment=comment,
            suggested_text=corrected,
            severity=rule.severity,
        )


def analyze_copy(run: _Pass) -> None:
    rules = run.context.rules
    for rule in rules.spelling:
        run.run(rule.id, lambda rule=rule: _substitutions(run, rule, category="spelling"))
    for rule in rules.punctuation:
        run.run(rule.id, lambda rule=rule: _substitutions(run, rule, category="grammar"))
    for rule in rules.loanwords:
        run.run(rule.id, lambda rule=rule: _substitutions(run, rule, category="spelling", loanword=True))
    for rule in rules.double_passives:
        run.run(
            rule.id,
            lambda rule=rule: _advisory_matches(run, rule, type="correction", category="grammar"),
        )


# ---------------------------------------------------------------------------
# proofreading
# ---------------------------------------------------------------------------


def _numbers(run: _Pass, rule: AdvisoryRule) -> Iterator[Mark]:
    for match in run.matches(rule.pattern):
        if int(match.group(1)) <= run.settings.number_spellout_max:
            yield run.mark(
                rule.id,
                match.start(),
                match.end(),
                type="suggestion",
                category="style",
                comment=rule.suggestion,
                severity=rule.severity,
            )


def _name_spacing(run: _Pass, name: str) -> Iterator[Mark]:
    compact = WHITESPACE.sub("", name)
    if len(compact) < 2:
        return
    pattern = r"\s*".join(re.escape(char) for char in compact)
    for match in run.matches(pattern):
        found = match.group(0)
        if found != name and WHITESPACE.sub("", found) == compact:
            yield run.mark(
                f"proofread.name_spacing.{name}",
                match.start(),
                match.end(),
                type="correction",
                category="consistency",
                comment=f'Write the proper noun consistently as "{name}".',
                suggested_text=name,
            )


def _particle_repetition(run: _Pass) -> Iterator[Mark]:
    particles = run.context.rules.particles
    for sentence in _split_spans(run.text, PARTICLE_SENTENCE_BREAK):
        if sentence.length >= run.settings.particle_sentence_max:
            continue
        for particle in particles:
            count = sentence.text.count(particle)
            if count >= run.settings.particle_repeat_count:
                yield run.mark(
                    "proofread.particle_repetition",
                    sentence.start,
                    sentence.end,
                    type="suggestion",
                    category="style",
                    comment=(
                        f'Particle "{particle}" appears {count} times in one sentence. '
                        "Split the sentence or vary the particle."
                    ),
                    severity="low",
                )
                break


def analyze_proofread(run: _Pass) -> None:
    for rule in run.context.rules.numbers:
        run.run(rule.id, lambda rule=rule: _numbers(run, rule))
    for name in run.context.participants:
        run.run(f"proofread.name_spacing.{name}", lambda name=name: _name_spacing(run, name))
    run.run("proofread.particle_repetition", lambda: _particle_repetition(run))


PHASE_ANALYZERS: dict[str, Callable[[_Pass], None]] = {
    "structural_edit": analyze_structure,
    "line_edit": analyze_line,
    "copy_edit": analyze_copy,
    "proofread": analyze_proofread,
}


def analyze(
    document: Document | str,
    phase: str,
    context: AnalysisContext | None = None,
    *,
    now_iso: str | None = None,
) -> AnalysisResult:
    """Run the detector family for ``phase`` and return pending marks plus rule failures.

    Phases without a detector family (``ai_draft``, ``human_review``,
    ``final_approval``) yield an empty result.
    """
    if phase not in PHASE_ORDER:
        raise UnknownPhaseError(f"Unknown editing phase '{phase}'.")
    document = ensure_document(document)
    context = context or AnalysisContext()
    analyzer = PHASE_ANALYZERS.get(phase)
    if analyzer is None:
        return AnalysisResult()

    run = _Pass(document, phase, context, now_iso or utc_now_iso())
    analyzer(run)
    result = run.result()
    logger.debug(
        "Analyzed %s phase=%s marks=%d failures=%d",
        context.document_ref or "<document>",
        phase,
        len(result.marks),
        len(result.failures),
    )
    return result


def analyze_phases(
    document: Document | str,
    phases: Sequence[str],
    context: AnalysisContext | None = None,
    *,
    now_iso: str | None = None,
    max_workers: int | None = None,
) -> AnalysisResult:
    """Analyze several phases concurrently; results concatenate in ``phases`` order.

    A phase listed more than once is analyzed once, at its first position.
    """
    document = ensure_document(document)
    context = context or AnalysisContext()
    stamp = now_iso or utc_now_iso()
    phases = list(dict.fromkeys(phases))
    if not phases:
        return AnalysisResult()
    with ThreadPoolExecutor(max_workers=max_workers or len(phases)) as executor:
        results = list(executor.map(lambda phase: analyze(document, phase, context, now_iso=stamp), phases))

    merged = AnalysisResult()
    for result in results:
        merged = merged.merge(result)
    return merged
