"""Unit tests for reading stored documents."""
import datetime

from daylog.models import Task
from daylog.sync.parsing import parse_checkbox, parse_document

DAY = datetime.date(2024, 5, 1)

CANONICAL = """# 2024-05-01

## Todo

- [ ] Buy milk
  - [x] Find shop
  - [ ] Pay
    receipt line
  note for parent

## Done

- [x] Write report

## Notes

some notes
"""


class TestCheckbox:
    def test_plain(self):
        assert parse_checkbox("- [ ] a") == (0, False, "a")
        assert parse_checkbox("  - [x] b") == (2, True, "b")
        assert parse_checkbox("- [X] c") == (0, True, "c")

    def test_lenient_forms(self):
        assert parse_checkbox("- [] empty box") == (0, False, "empty box")
        assert parse_checkbox("-[ ]tight") == (0, False, "tight")

    def test_unknown_mark_reads_unchecked(self):
        assert parse_checkbox("- [?] odd") == (0, False, "odd")

    def test_not_a_checkbox(self):
        assert parse_checkbox("plain text") is None
        assert parse_checkbox("- bullet") is None


class TestParser:
    def test_canonical_document(self):
        doc = parse_document(DAY, CANONICAL)
        assert doc.date == DAY
        assert [t.text for t in doc.pending] == ["Buy milk"]
        parent = doc.pending[0]
        assert [(c.text, c.checked) for c in parent.children] == [("Find shop", True), ("Pay", False)]
        assert parent.children[1].note == ["receipt line"]
        assert parent.note == ["note for parent"]
        assert doc.completed == [Task("Write report", checked=True)]
        assert doc.notes == "some notes"

    def test_date_string_accepted(self):
        assert parse_document("2024-05-01", "").date == DAY

    def test_empty_text(self):
        doc = parse_document(DAY, "")
        assert doc.pending == [] and doc.completed == [] and doc.notes == ""

    def test_bom_and_crlf(self):
        doc = parse_document(DAY, "\ufeff# 2024-05-01\r\n## Todo\r\n- [ ] a\r\n  - [ ] b\r\n")
        assert doc.pending[0].text == "a"
        assert doc.pending[0].children[0].text == "b"

    def test_tab_indented_step(self):
        doc = parse_document(DAY, "## Todo\n- [ ] a\n\t- [ ] b\n")
        assert doc.pending[0].children[0].text == "b"

    def test_single_space_is_top_level(self):
        doc = parse_document(DAY, "## Todo\n- [ ] a\n - [ ] b\n")
        assert [t.text for t in doc.pending] == ["a", "b"]

    def test_orphan_step_promoted(self):
        doc = parse_document(DAY, "## Todo\n    - [ ] orphan\n- [ ] next\n")
        assert [t.text for t in doc.pending] == ["orphan", "next"]

    def test_header_and_stray_lines_dropped(self):
        text = "# 2024-05-01\nintro text\n## Todo\nstray line\n- [ ] a\n"
        doc = parse_document(DAY, text)
        assert [t.text for t in doc.pending] == ["a"]
        assert doc.pending[0].note == []

    def test_title_match_is_exact(self):
        doc = parse_document(DAY, "## Todo \n- [ ] a\n### Done\n- [ ] b\n")
        # "### Done" is not a section title, so b stays pending
        assert [t.text for t in doc.pending] == ["a", "b"]
        assert doc.completed == []

    def test_custom_titles(self):
        titles = {'pending': '## 待办', 'completed': '## 已完成', 'notes': '## 笔记'}
        doc = parse_document(DAY, "## 已完成\n- [x] done\n## 笔记\nhi\n", titles=titles)
        assert doc.completed[0].text == "done"
        assert doc.notes == "hi"

    def test_fenced_checkbox_is_note_text(self):
        text = "## Todo\n- [ ] a\n  ```\n  - [ ] not a task\n  ```\n- [ ] b\n"
        doc = parse_document(DAY, text)
        assert [t.text for t in doc.pending] == ["a", "b"]
        assert doc.pending[0].children == []
        assert doc.pending[0].note == ["```", "- [ ] not a task", "```"]

    def test_unclosed_fence_closed_by_next_task(self):
        text = "## Todo\n- [ ] a\n  ```\n  code\n- [ ] b\n  - [ ] b1\n"
        doc = parse_document(DAY, text)
        assert [t.text for t in doc.pending] == ["a", "b"]
        assert doc.pending[1].children[0].text == "b1"

    def test_step_note_keeps_deeper_indent(self):
        text = "## Todo\n- [ ] a\n  - [ ] s\n      deeper\n"
        doc = parse_document(DAY, text)
        assert doc.pending[0].children[0].note == ["  deeper"]

    def test_note_blank_runs_collapse(self):
        text = "## Todo\n- [ ] a\n\n  one\n\n\n  two\n\n"
        doc = parse_document(DAY, text)
        assert doc.pending[0].note == ["one", "", "two"]

    def test_notes_headings_coerced(self):
        doc = parse_document(DAY, "## Notes\n\n# Big\n## Medium\n#### Small\n")
        assert doc.notes == "### Big\n### Medium\n#### Small"

    def test_section_titles_inside_notes_fence_are_text(self):
        text = "## Notes\n```\n## Todo\n# 2024-01-01\n```\n"
        doc = parse_document(DAY, text)
        assert doc.notes == "```\n## Todo\n# 2024-01-01\n```"
        assert doc.pending == []

    def test_tasks_get_distinct_ids(self):
        doc = parse_document(DAY, CANONICAL)
        ids = [t.id for t in doc.all_tasks()]
        assert len(ids) == len(set(ids)) == 4

    def test_crlf_and_bom_parse_like_plain_text(self):
        plain = CANONICAL
        windows = "\ufeff" + CANONICAL.replace("\n", "\r\n")
        assert parse_document(DAY, windows) == parse_document(DAY, plain)
