"""Unit tests for text normalization and title/note clean-up."""
import pytest

from daylog.format_core import FormatCore, normalize


class TestNormalize:
    def test_strips_single_bom(self):
        assert normalize("\ufeff# 2024-05-01\n") == "# 2024-05-01\n"

    def test_only_leading_bom_is_removed(self):
        assert normalize("\ufeff\ufeffx") == "\ufeffx"

    def test_line_endings_unified(self):
        assert normalize("a\r\nb\rc\n") == "a\nb\nc\n"

    def test_tabs_expand_to_indent_width(self):
        assert normalize("\t- [ ] step") == "  - [ ] step"
        assert normalize("\t\tx", indent_width=4) == "        x"

    def test_empty(self):
        assert normalize("") == ""
        assert normalize(None) == ""

    def test_idempotent(self):
        raw = "\ufeff# t\r\n\t- [ ] a\r\n\r\nend\r"
        once = normalize(raw)
        assert normalize(once) == once


class TestCleanTitle:
    def test_newlines_become_spaces(self):
        assert FormatCore.clean_title("buy\nmilk\r\nnow") == "buy milk now"

    def test_leading_checkbox_removed(self):
        assert FormatCore.clean_title("- [ ] Buy milk") == "Buy milk"
        assert FormatCore.clean_title("[x] Done thing") == "Done thing"

    def test_repeated_checkbox_prefixes_removed(self):
        assert FormatCore.clean_title("- [ ] - [x] nested") == "nested"

    def test_control_chars_dropped(self):
        assert FormatCore.clean_title("a\x07b\x00c") == "abc"

    def test_inner_brackets_kept(self):
        assert FormatCore.clean_title("read [RFC] 1234") == "read [RFC] 1234"

    def test_empty(self):
        assert FormatCore.clean_title("") == ""
        assert FormatCore.clean_title(None) == ""


class TestNoteHeadings:
    def test_heading_markers_removed(self):
        assert FormatCore.strip_note_headings("## Plan\nstep one\n# Top") == ["Plan", "step one", "Top"]

    def test_indented_heading_keeps_indent(self):
        assert FormatCore.strip_note_headings("text\n  ### Sub") == ["text", "  Sub"]

    def test_marker_without_space_is_dropped_too(self):
        assert FormatCore.strip_note_headings("#tag\n###Plan") == ["tag", "Plan"]

    @pytest.mark.parametrize("line, expected", [
        ("- [ ] buy bread", "- buy bread"),
        ("-[x]done", "- done"),
        ("  - [] nested", "  - nested"),
        ("* [ ] star bullets are not tasks", "* [ ] star bullets are not tasks"),
    ])
    def test_checkbox_syntax_neutralised(self, line, expected):
        assert FormatCore.strip_note_headings(line) == [expected]

    def test_fenced_checkbox_untouched(self):
        text = "```\n- [ ] literal\n```"
        assert FormatCore.strip_note_headings(text) == ["```", "- [ ] literal", "```"]

    def test_fenced_headings_untouched(self):
        text = "```\n# comment\n```\n# heading"
        assert FormatCore.strip_note_headings(text) == ["```", "# comment", "```", "heading"]

    def test_blank_runs_collapse_and_edges_trim(self):
        assert FormatCore.strip_note_headings("\n\na\n\n\n\nb\n\n") == ["a", "", "b"]

    def test_notes_shallow_headings_coerced(self):
        lines = ["# One", "## Two", "### Three", "#### Four", "```", "# code", "```"]
        assert FormatCore.coerce_notes_headings(lines) == [
            "### One", "### Two", "### Three", "#### Four", "```", "# code", "```",
        ]
