from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from .errors import RuleConfigError
from .schema_validator import validate_payload

logger = logging.getLogger(__name__)

DEFAULT_RULES_PATH = Path(__file__).resolve().parent / "rules" / "ko.json"
RULE_CONFIG_SCHEMA = "rule_config.schema.json"

DEFAULT_DIALOGUE_PATTERN = "[\"“”][^\"“”]*[\"“”]"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuleConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuleConfigError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class AnalyzerSettings:
    long_paragraph_factor: float = 3.0
    long_paragraph_floor: int = 500
    short_paragraph_max: int = 100
    short_run_length: int = 3
    dialogue_ratio_min: float = 0.1
    dialogue_ratio_max: float = 0.7
    low_dialogue_min_chars: int = 1000
    short_document_chars: int = 500
    repetition_min_count: int = 3
    repetition_window: int = 1000
    long_sentence_chars: int = 150
    number_spellout_max: int = 100
    particle_repeat_count: int = 3
    particle_sentence_max: int = 200
    subject_repeat_count: int = 3
    connector_min_sentences: int = 5
    connector_ratio_max: float = 0.3
    connector_repeat_count: int = 3
    nominalization_per_1000: int = 5
    nominalization_min: int = 3
    nominalization_listed: int = 5
    tense_min_sentences: int = 3
    tense_minority_min: float = 0.15
    tense_minority_max: float = 0.45
    max_matches_per_rule: int = 2000

    @classmethod
    def from_env(cls) -> "AnalyzerSettings":
        defaults = cls()
        return cls(
            long_paragraph_factor=_env_float("EDITORIAL_LONG_PARAGRAPH_FACTOR", defaults.long_paragraph_factor),
            long_paragraph_floor=_env_int("EDITORIAL_LONG_PARAGRAPH_FLOOR", defaults.long_paragraph_floor),
            short_paragraph_max=_env_int("EDITORIAL_SHORT_PARAGRAPH_MAX", defaults.short_paragraph_max),
            short_run_length=_env_int("EDITORIAL_SHORT_RUN_LENGTH", defaults.short_run_length),
            dialogue_ratio_min=_env_float("EDITORIAL_DIALOGUE_RATIO_MIN", defaults.dialogue_ratio_min),
            dialogue_ratio_max=_env_float("EDITORIAL_DIALOGUE_RATIO_MAX", defaults.dialogue_ratio_max),
            low_dialogue_min_chars=_env_int("EDITORIAL_LOW_DIALOGUE_MIN_CHARS", defaults.low_dialogue_min_chars),
            short_document_chars=_env_int("EDITORIAL_SHORT_DOCUMENT_CHARS", defaults.short_document_chars),
            repetition_min_count=_env_int("EDITORIAL_REPETITION_MIN_COUNT", defaults.repetition_min_count),
            repetition_window=_env_int("EDITORIAL_REPETITION_WINDOW", defaults.repetition_window),
            long_sentence_chars=_env_int("EDITORIAL_LONG_SENTENCE_CHARS", defaults.long_sentence_chars),
            number_spellout_max=_env_int("EDITORIAL_NUMBER_SPELLOUT_MAX", defaults.number_spellout_max),
            particle_repeat_count=_env_int("EDITORIAL_PARTICLE_REPEAT_COUNT", defaults.particle_repeat_count),
            particle_sentence_max=_env_int("EDITORIAL_PARTICLE_SENTENCE_MAX", defaults.particle_sentence_max),
            subject_repeat_count=_env_int("EDITORIAL_SUBJECT_REPEAT_COUNT", defaults.subject_repeat_count),
            connector_min_sentences=_env_int("EDITORIAL_CONNECTOR_MIN_SENTENCES", defaults.connector_min_sentences),
            connector_ratio_max=_env_float("EDITORIAL_CONNECTOR_RATIO_MAX", defaults.connector_ratio_max),
            connector_repeat_count=_env_int("EDITORIAL_CONNECTOR_REPEAT_COUNT", defaults.connector_repeat_count),
            nominalization_per_1000=_env_int("EDITORIAL_NOMINALIZATION_PER_1000", defaults.nominalization_per_1000),
            nominalization_min=_env_int("EDITORIAL_NOMINALIZATION_MIN", defaults.nominalization_min),
            nominalization_listed=_env_int("EDITORIAL_NOMINALIZATION_LISTED", defaults.nominalization_listed),
            tense_min_sentences=_env_int("EDITORIAL_TENSE_MIN_SENTENCES", defaults.tense_min_sentences),
            tense_minority_min=_env_float("EDITORIAL_TENSE_MINORITY_MIN", defaults.tense_minority_min),
            tense_minority_max=_env_float("EDITORIAL_TENSE_MINORITY_MAX", defaults.tense_minority_max),
            max_matches_per_rule=_env_int("EDITORIAL_MAX_MATCHES_PER_RULE", defaults.max_matches_per_rule),
        )


@dataclass(frozen=True)
class AdvisoryRule:
    id: str
    pattern: str
    suggestion: str
    severity: str = "medium"


@dataclass(frozen=True)
class SubstitutionRule:
    id: str
    pattern: str
    correction: str
    description: str = ""
    severity: str = "medium"


@dataclass(frozen=True)
class RuleConfig:
    """Locale-specific rule tables injected into the analyzer.

    The engine never hard-codes pattern content; swapping this object swaps
    the rule set. Patterns stay uncompiled strings so that a broken entry is
    reported by the analyzer as a rule failure instead of failing the load.
    """

    locale: str
    cliches: tuple[AdvisoryRule, ...] = ()
    translation_patterns: tuple[AdvisoryRule, ...] = ()
    telling_patterns: tuple[AdvisoryRule, ...] = ()
    repetition_targets: tuple[str, ...] = ()
    spelling: tuple[SubstitutionRule, ...] = ()
    punctuation: tuple[SubstitutionRule, ...] = ()
    loanwords: tuple[SubstitutionRule, ...] = ()
    double_passives: tuple[AdvisoryRule, ...] = ()
    numbers: tuple[AdvisoryRule, ...] = ()
    particles: tuple[str, ...] = ()
    subject_markers: tuple[str, ...] = ()
    connectors: tuple[str, ...] = ()
    nominalization_pattern: str | None = None
    past_tense_pattern: str | None = None
    present_tense_pattern: str | None = None
    dialogue_quotes: tuple[str, ...] = ('"', "“")
    dialogue_pattern: str = DEFAULT_DIALOGUE_PATTERN
    schema_version: str = "1.0"
    source: str | None = field(default=None, compare=False)

    @classmethod
    def from_mapping(
        cls,
        payload: Mapping[str, Any],
        *,
        validate: bool = True,
        source: str | None = None,
    ) -> "RuleConfig":
        label = source or "rule config"
        if validate:
            try:
                validate_payload(payload, RULE_CONFIG_SCHEMA, label)
            except ValueError as exc:
                raise RuleConfigError(str(exc)) from exc

        def advisory(table: str) -> tuple[AdvisoryRule, ...]:
            rows = payload.get(table, [])
            return tuple(
                AdvisoryRule(
                    id=str(row.get("id") or f"{table}.{index}"),
                    pattern=str(row["pattern"]),
                    suggestion=str(row.get("suggestion", "")),
                    severity=str(row.get("severity", "medium")),
                )
                for index, row in enumerate(rows)
            )

        def substitution(table: str) -> tuple[SubstitutionRule, ...]:
            rows = payload.get(table, [])
            return tuple(
                SubstitutionRule(
                    id=str(row.get("id") or f"{table}.{index}"),
                    pattern=str(row["pattern"]),
                    correction=str(row["correction"]),
                    description=str(row.get("description", "")),
                    severity=str(row.get("severity", "medium")),
                )
                for index, row in enumerate(rows)
            )

        return cls(
            locale=str(payload.get("locale", "und")),
            cliches=advisory("cliches"),
            translation_patterns=advisory("translation_patterns"),
            telling_patterns=advisory("telling_patterns"),
            repetition_targets=tuple(str(item) for item in payload.get("repetition_targets", [])),
            spelling=substitution("spelling"),
            punctuation=substitution("punctuation"),
            loanwords=substitution("loanwords"),
            double_passives=advisory("double_passives"),
            numbers=advisory("numbers"),
            particles=tuple(str(item) for item in payload.get("particles", [])),
            subject_markers=tuple(str(item) for item in payload.get("subject_markers", [])),
            connectors=tuple(str(item) for item in payload.get("connectors", [])),
            nominalization_pattern=payload.get("nominalization_pattern"),
            past_tense_pattern=payload.get("past_tense_pattern"),
            present_tense_pattern=payload.get("present_tense_pattern"),
            dialogue_quotes=tuple(payload.get("dialogue_quotes", ('"', "“"))),
            dialogue_pattern=str(payload.get("dialogue_pattern", DEFAULT_DIALOGUE_PATTERN)),
            schema_version=str(payload.get("schema_version", "1.0")),
            source=source,
        )


def load_rule_config(path: Path | str) -> RuleConfig:
    rules_path = Path(path)
    if not rules_path.exists():
        raise RuleConfigError(f"Rule table not found: {rules_path}")
    try:
        payload = json.loads(rules_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise RuleConfigError(f"Rule table is not valid JSON: {rules_path}") from exc
    if not isinstance(payload, dict):
        raise RuleConfigError(f"Rule table must be a JSON object: {rules_path}")
    config = RuleConfig.from_mapping(payload, source=str(rules_path))
    logger.debug("Loaded rule table locale=%s path=%s", config.locale, rules_path)
    return config


@lru_cache(maxsize=8)
def _cached_rule_config(path: str) -> RuleConfig:
    return load_rule_config(path)


def default_rule_config() -> RuleConfig:
    override = os.getenv("EDITORIAL_RULES_PATH")
    return _cached_rule_config(override or str(DEFAULT_RULES_PATH))
