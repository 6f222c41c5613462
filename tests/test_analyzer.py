from __future__ import annotations

import unittest

from editorial_workflow.analyzer import AnalysisContext, analyze, analyze_phases, split_paragraphs
from editorial_workflow.config import AnalyzerSettings, RuleConfig
from editorial_workflow.errors import UnknownPhaseError
from editorial_workflow.workflow import PHASE_ORDER

NOW = "2026-02-23T00:00:00Z"

SAMPLE = (
    "민수는 몇일 동안 기다렸다... 그의 눈이 휘둥그레졌다.\n\n"
    "\"어디 갔었어?\" 그녀는 물었다. 그리고 3명이 들어왔다. 그리고 컨텐츠를 보여주었다. 그리고 웃었다.\n\n"
    "김 민수는 나는 그는 너는 말했다."
)


def _by_rule(result, rule_id: str):
    return [mark for mark in result.marks if mark.rule_id == rule_id]


class SplitTests(unittest.TestCase):
    def test_paragraph_spans_are_trimmed(self) -> None:
        text = "  첫 문단  \n\n\n 둘째 "
        spans = split_paragraphs(text)
        self.assertEqual([span.text for span in spans], ["첫 문단", "둘째"])
        for span in spans:
            self.assertEqual(text[span.start : span.end], span.text)


class InvariantTests(unittest.TestCase):
    def test_every_mark_matches_its_slice(self) -> None:
        context = AnalysisContext(document_ref="ch1", participants=("민수", "김민수", "지영"))
        for phase in PHASE_ORDER:
            with self.subTest(phase=phase):
                result = analyze(SAMPLE, phase, context, now_iso=NOW)
                self.assertEqual(result.failures, ())
                ids = [mark.id for mark in result.marks]
                self.assertEqual(len(ids), len(set(ids)))
                for mark in result.marks:
                    self.assertTrue(0 <= mark.start_offset <= mark.end_offset <= len(SAMPLE))
                    self.assertEqual(SAMPLE[mark.start_offset : mark.end_offset], mark.original_text)
                    self.assertEqual(mark.phase, phase)
                    self.assertEqual(mark.author, "ai")
                    self.assertEqual(mark.status, "pending")
                    self.assertEqual(mark.document_ref, "ch1")

    def test_deterministic(self) -> None:
        first = analyze(SAMPLE, "line_edit", now_iso=NOW)
        second = analyze(SAMPLE, "line_edit", now_iso=NOW)
        self.assertEqual(first, second)

    def test_phases_without_detectors_are_empty(self) -> None:
        for phase in ("ai_draft", "human_review", "final_approval"):
            self.assertEqual(len(analyze(SAMPLE, phase, now_iso=NOW)), 0)

    def test_unknown_phase(self) -> None:
        with self.assertRaises(UnknownPhaseError):
            analyze(SAMPLE, "typesetting")

    def test_empty_document(self) -> None:
        for phase in PHASE_ORDER:
            result = analyze("", phase, now_iso=NOW)
            self.assertEqual(result.failures, ())
        short = _by_rule(analyze("", "structural_edit", now_iso=NOW), "structural.short_document")
        self.assertEqual([(mark.start_offset, mark.end_offset) for mark in short], [(0, 0)])


class StructuralTests(unittest.TestCase):
    def test_long_paragraph(self) -> None:
        text = "가" * 600 + "\n\n" + "\n\n".join(['"네."'] * 5)
        result = analyze(text, "structural_edit", now_iso=NOW)
        marks = _by_rule(result, "structural.long_paragraph")
        self.assertEqual([(mark.start_offset, mark.end_offset) for mark in marks], [(0, 600)])
        self.assertEqual(marks[0].category, "pacing")
        self.assertEqual(_by_rule(result, "structural.short_paragraph_run"), [])

    def test_short_paragraph_windows_merge_into_one_run(self) -> None:
        text = "\n\n".join(["짧은 문단입니다."] * 5)
        marks = _by_rule(analyze(text, "structural_edit", now_iso=NOW), "structural.short_paragraph_run")
        self.assertEqual(len(marks), 1)
        self.assertEqual((marks[0].start_offset, marks[0].end_offset), (0, len(text)))

    def test_missing_participants_and_short_document(self) -> None:
        text = "민수는 걸었다."
        context = AnalysisContext(participants=("민수", "지영"))
        result = analyze(text, "structural_edit", context, now_iso=NOW)
        missing = _by_rule(result, "structural.missing_participants")
        self.assertEqual(len(missing), 1)
        self.assertIn("지영", missing[0].comment)
        self.assertNotIn("민수", missing[0].comment)
        self.assertEqual(missing[0].category, "character")
        short = _by_rule(result, "structural.short_document")
        self.assertEqual((short[0].start_offset, short[0].end_offset), (0, len(text)))

    def test_high_dialogue_ratio(self) -> None:
        text = '"안녕." "응." "가자." "그래."'
        marks = _by_rule(analyze(text, "structural_edit", now_iso=NOW), "structural.dialogue_ratio_high")
        self.assertEqual(len(marks), 1)

    def test_low_dialogue_ratio_needs_more_than_1000_chars(self) -> None:
        text = "그는 걸었다. " * 125
        self.assertEqual(len(text), 1000)
        result = analyze(text, "structural_edit", now_iso=NOW)
        self.assertEqual(_by_rule(result, "structural.dialogue_ratio_low"), [])

        longer = text + "."
        marks = _by_rule(analyze(longer, "structural_edit", now_iso=NOW), "structural.dialogue_ratio_low")
        self.assertEqual(len(marks), 1)
        self.assertEqual(marks[0].category, "dialogue")
        self.assertEqual((marks[0].start_offset, marks[0].end_offset), (0, 100))

    def test_long_chapter_keeps_dialogue_ratio_check(self) -> None:
        text = "\n\n".join(["그는 걸었다. 그리고 멈췄다. 바람이 불었다."] * 700)
        result = analyze(text, "structural_edit", now_iso=NOW)
        self.assertEqual(result.failures, ())
        self.assertEqual(len(_by_rule(result, "structural.dialogue_ratio_low")), 1)


class LineTests(unittest.TestCase):
    def test_cliche(self) -> None:
        marks = _by_rule(analyze("그의 눈이 휘둥그레졌다.", "line_edit", now_iso=NOW), "cliche.wide_eyes")
        self.assertEqual(len(marks), 1)
        self.assertEqual(marks[0].original_text, "눈이 휘둥그레")
        self.assertEqual(marks[0].category, "cliche")
        self.assertTrue(marks[0].comment.startswith("Cliché: "))

    def test_repetition_marks_first_occurrence(self) -> None:
        marks = _by_rule(
            analyze("그리고 갔다. 그리고 왔다. 그리고 잤다.", "line_edit", now_iso=NOW),
            "repetition.그리고",
        )
        self.assertEqual([(mark.start_offset, mark.end_offset) for mark in marks], [(0, 3)])

    def test_repetition_target_common_in_long_chapter(self) -> None:
        text = "\n\n".join(["그는 걸었다. 그리고 멈췄다. 바람이 불었다."] * 700)
        result = analyze(text, "line_edit", now_iso=NOW)
        self.assertEqual(result.failures, ())
        marks = _by_rule(result, "repetition.그리고")
        self.assertEqual([(mark.start_offset, mark.end_offset) for mark in marks], [(8, 11)])

    def test_translation_pattern(self) -> None:
        marks = _by_rule(analyze("그녀는 웃었다.", "line_edit", now_iso=NOW), "translation.geunyeo")
        self.assertEqual(len(marks), 1)
        self.assertEqual(marks[0].original_text, "그녀는 ")
        self.assertEqual(marks[0].type, "correction")
        self.assertEqual(marks[0].category, "translation_style")
        self.assertIsNone(marks[0].suggested_text)

    def test_telling_pattern(self) -> None:
        text = "그날 밤 그는 외로웠다."
        marks = _by_rule(analyze(text, "line_edit", now_iso=NOW), "telling.lonely")
        self.assertEqual(len(marks), 1)
        self.assertEqual(marks[0].original_text, "외로웠다")
        self.assertEqual(marks[0].type, "suggestion")
        self.assertEqual(marks[0].category, "style")

    def test_long_sentence(self) -> None:
        text = "가" * 151 + "."
        marks = _by_rule(analyze(text, "line_edit", now_iso=NOW), "line.long_sentence")
        self.assertEqual(len(marks), 1)
        self.assertEqual(marks[0].end_offset, len(text))


class StyleDetectorTests(unittest.TestCase):
    def test_subject_streak(self) -> None:
        text = "그는 문을 열었다. 그는 방에 들어갔다. 그는 불을 켰다."
        marks = _by_rule(analyze(text, "line_edit", now_iso=NOW), "line.subject_repetition")
        self.assertEqual([(mark.start_offset, mark.end_offset) for mark in marks], [(0, len(text))])
        self.assertEqual(marks[0].category, "translation_style")
        self.assertIn('"그는" opens 3 sentences', marks[0].comment)

    def test_interrupted_subject_streak(self) -> None:
        text = "그는 문을 열었다. 바람이 불었다. 그는 불을 켰다. 그는 앉았다."
        self.assertEqual(_by_rule(analyze(text, "line_edit", now_iso=NOW), "line.subject_repetition"), [])

    def test_connector_overuse(self) -> None:
        text = "비가 왔다. 그리고 바람이 불었다. 그리고 천둥이 쳤다. 그리고 번개가 쳤다. 하늘이 어두웠다."
        result = analyze(text, "line_edit", now_iso=NOW)
        first = text.index("그리고")
        overuse = _by_rule(result, "line.connector_overuse")
        self.assertEqual([(mark.start_offset, mark.end_offset) for mark in overuse], [(first, first + 3)])
        self.assertIn("3 of 5 sentences (60%)", overuse[0].comment)
        starts = _by_rule(result, "line.connector_start.그리고")
        self.assertEqual([(mark.start_offset, mark.end_offset) for mark in starts], [(first, first + 3)])
        self.assertNotEqual(overuse[0].id, starts[0].id)

    def test_connector_ratio_needs_five_sentences(self) -> None:
        result = analyze("그리고 갔다. 그리고 왔다. 그리고 잤다.", "line_edit", now_iso=NOW)
        self.assertEqual(_by_rule(result, "line.connector_overuse"), [])
        self.assertEqual(len(_by_rule(result, "line.connector_start.그리고")), 1)

    def test_nominal_endings(self) -> None:
        text = "보고를 완료함. 검토가 필요함. 일정이 변경됨. 예산은 확정됨. 회의는 연기됨. 결과는 양호함."
        result = analyze(text, "line_edit", now_iso=NOW)
        density = _by_rule(result, "line.nominalization")
        self.assertEqual([mark.original_text for mark in density], ["완료함"])
        self.assertIn("6 times", density[0].comment)
        endings = _by_rule(result, "line.nominalization_ending")
        self.assertEqual(
            [mark.original_text for mark in endings],
            ["완료함", "필요함", "변경됨", "확정됨", "연기됨"],
        )

    def test_few_nominal_endings_pass(self) -> None:
        result = analyze("보고를 완료함. 검토가 필요함.", "line_edit", now_iso=NOW)
        self.assertEqual(_by_rule(result, "line.nominalization"), [])
        self.assertEqual(_by_rule(result, "line.nominalization_ending"), [])

    def test_tense_mixing(self) -> None:
        text = "그는 집에 갔다. 비가 왔다. 그는 창밖을 봤다. 그는 책을 읽는다. 그는 노래를 한다."
        marks = _by_rule(analyze(text, "line_edit", now_iso=NOW), "line.tense_mixing")
        self.assertEqual(len(marks), 1)
        self.assertEqual(marks[0].original_text, "그는 책을 읽는다.")
        self.assertEqual(marks[0].severity, "high")
        self.assertIn("past tense", marks[0].comment)

    def test_single_tense_switch_is_ignored(self) -> None:
        text = "그는 집에 갔다. 비가 왔다. 그는 창밖을 봤다. 그는 책을 읽는다."
        self.assertEqual(_by_rule(analyze(text, "line_edit", now_iso=NOW), "line.tense_mixing"), [])

    def test_detectors_need_their_tables(self) -> None:
        rules = RuleConfig.from_mapping({"schema_version": "1.0", "locale": "test"})
        text = "그는 문을 열었다. 그는 방에 들어갔다. 그는 불을 켰다."
        result = analyze(text, "line_edit", AnalysisContext(rules=rules), now_iso=NOW)
        self.assertEqual(result.marks, ())
        self.assertEqual(result.failures, ())


class CopyTests(unittest.TestCase):
    def test_substitutions_carry_suggested_text(self) -> None:
        text = "몇일 뒤에 컨텐츠를 봤다... 시뮬레이션도 했다."
        result = analyze(text, "copy_edit", now_iso=NOW)
        spelling = _by_rule(result, "spelling.myeochil")
        self.assertEqual(spelling[0].suggested_text, "며칠")
        self.assertEqual(spelling[0].type, "correction")
        self.assertEqual(_by_rule(result, "loanword.content")[0].suggested_text, "콘텐츠")
        self.assertEqual(_by_rule(result, "punctuation.ellipsis")[0].suggested_text, "…")
        self.assertEqual(_by_rule(result, "loanword.simulation"), [])

    def test_double_passive_is_comment_only(self) -> None:
        marks = _by_rule(analyze("그렇게 보여지는 장면이다.", "copy_edit", now_iso=NOW), "passive.boyeoji")
        self.assertEqual(len(marks), 1)
        self.assertIsNone(marks[0].suggested_text)
        self.assertEqual(marks[0].category, "grammar")


class ProofreadTests(unittest.TestCase):
    def test_small_numbers_only(self) -> None:
        marks = _by_rule(analyze("3명이 왔다. 200명은 아니다.", "proofread", now_iso=NOW), "number.people")
        self.assertEqual([mark.original_text for mark in marks], ["3명"])

    def test_name_spacing(self) -> None:
        context = AnalysisContext(participants=("김민수",))
        result = analyze("김 민수가 왔다. 김민수는 웃었다.", "proofread", context, now_iso=NOW)
        marks = _by_rule(result, "proofread.name_spacing.김민수")
        self.assertEqual(len(marks), 1)
        self.assertEqual(marks[0].original_text, "김 민수")
        self.assertEqual(marks[0].suggested_text, "김민수")
        self.assertEqual(marks[0].category, "consistency")

    def test_particle_repetition(self) -> None:
        marks = _by_rule(analyze("나는 그는 너는 갔다.", "proofread", now_iso=NOW), "proofread.particle_repetition")
        self.assertEqual(len(marks), 1)
        self.assertIn('"는"', marks[0].comment)

    def test_particle_repetition_skips_sentences_of_200_chars(self) -> None:
        short = "사과를 배를 귤을 감을 포도를 먹었다."
        marks = _by_rule(analyze(short, "proofread", now_iso=NOW), "proofread.particle_repetition")
        self.assertEqual(len(marks), 1)
        self.assertIn('"를"', marks[0].comment)

        under = "사과를 " * 49 + "먹었다"
        self.assertEqual(len(under), 199)
        marks = _by_rule(analyze(under + ".", "proofread", now_iso=NOW), "proofread.particle_repetition")
        self.assertEqual([(mark.start_offset, mark.end_offset) for mark in marks], [(0, 199)])

        at_limit = "사과를 " * 49 + "다먹었다"
        self.assertEqual(len(at_limit), 200)
        marks = _by_rule(analyze(at_limit + ".", "proofread", now_iso=NOW), "proofread.particle_repetition")
        self.assertEqual(marks, [])


class IsolationTests(unittest.TestCase):
    def _context(self, cliches, settings=None) -> AnalysisContext:
        rules = RuleConfig.from_mapping({"schema_version": "1.0", "locale": "test", "cliches": cliches})
        return AnalysisContext(rules=rules, settings=settings or AnalyzerSettings())

    def test_broken_pattern_is_reported_and_skipped(self) -> None:
        context = self._context(
            [
                {"id": "broken", "pattern": "(", "suggestion": "x"},
                {"id": "fine", "pattern": "abc", "suggestion": "y"},
            ]
        )
        with self.assertLogs("editorial_workflow.analyzer", level="WARNING"):
            result = analyze("abc abc", "line_edit", context, now_iso=NOW)
        self.assertEqual([(f.rule_id, f.reason) for f in result.failures], [("broken", "error")])
        self.assertEqual(len(_by_rule(result, "fine")), 2)

    def test_match_cap_discards_rule(self) -> None:
        context = self._context(
            [{"id": "noisy", "pattern": "a", "suggestion": "x"}],
            AnalyzerSettings(max_matches_per_rule=3),
        )
        result = analyze("aaaaa", "line_edit", context, now_iso=NOW)
        self.assertEqual(_by_rule(result, "noisy"), [])
        self.assertEqual([(f.rule_id, f.reason) for f in result.failures], [("noisy", "match_cap")])


class MultiPhaseTests(unittest.TestCase):
    def test_results_follow_requested_order(self) -> None:
        result = analyze_phases(SAMPLE, ["copy_edit", "structural_edit"], now_iso=NOW)
        phases = [mark.phase for mark in result.marks]
        self.assertIn("copy_edit", phases)
        self.assertIn("structural_edit", phases)
        self.assertEqual(phases, sorted(phases, key=["copy_edit", "structural_edit"].index))

    def test_repeated_phase_is_analyzed_once(self) -> None:
        single = analyze(SAMPLE, "copy_edit", now_iso=NOW)
        doubled = analyze_phases(SAMPLE, ["copy_edit", "copy_edit"], now_iso=NOW)
        self.assertEqual(doubled.marks, single.marks)
        ids = [mark.id for mark in doubled.marks]
        self.assertEqual(len(ids), len(set(ids)))

    def test_repeated_phase_keeps_first_position(self) -> None:
        result = analyze_phases(SAMPLE, ["copy_edit", "structural_edit", "copy_edit"], now_iso=NOW)
        phases = [mark.phase for mark in result.marks]
        self.assertEqual(phases, sorted(phases, key=["copy_edit", "structural_edit"].index))
        self.assertEqual(phases.count("copy_edit"), len(analyze(SAMPLE, "copy_edit", now_iso=NOW)))

    def test_no_phases(self) -> None:
        self.assertEqual(len(analyze_phases(SAMPLE, [])), 0)


if __name__ == "__main__":
    unittest.main()
