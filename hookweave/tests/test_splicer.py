"""Tests for the text splicer."""
import pytest

from hookweave.errors import SpliceConflict
from hookweave.patching.splicer import Edit, splice


class TestSplice:
    """Tests for composing edits against original offsets."""

    def test_single_insert(self):
        """Insert should land at its original offset."""
        result = splice("hello world", [Edit.insert(5, ",")])
        assert result.text == "hello, world"

    def test_offsets_are_original(self):
        """Later edits use original offsets, adjusted by earlier deltas."""
        original = "a = 1\nb = 2\nc = 3\n"
        edits = [
            Edit.insert(0, "# top\n", "top"),
            Edit.replace(10, 11, "twenty", "b"),
            Edit.insert(len(original), "d = 4\n", "tail"),
        ]
        result = splice(original, edits)
        assert result.text == "# top\na = 1\nb = twenty\nc = 3\nd = 4\n"

    def test_declaration_order_does_not_matter_for_offsets(self):
        """Edits given right-to-left compose the same as left-to-right."""
        original = "0123456789"
        edits = [Edit.replace(7, 8, "SEVEN"), Edit.insert(2, "+"), Edit.replace(4, 6, "")]
        assert splice(original, edits).text == "01+236SEVEN89"

    def test_length_and_reextraction(self):
        """Length changes by the summed deltas and each patched span holds the new text."""
        original = "The quick brown fox jumps over the lazy dog"
        edits = [
            Edit.replace(4, 9, "slow", "quick"),
            Edit.insert(10, "very ", "very"),
            Edit.replace(40, 43, "cat", "dog"),
        ]
        result = splice(original, edits)
        expected_len = len(original) + sum(len(e.text) - (e.end - e.start) for e in edits)
        assert len(result.text) == expected_len
        for record in result.records:
            start, end = record.patched_span
            assert result.text[start:end] == record.after

    def test_same_offset_inserts_keep_declaration_order(self):
        """Zero-width inserts at one offset apply in declaration order."""
        result = splice("xy", [Edit.insert(1, "A"), Edit.insert(1, "B")])
        assert result.text == "xABy"

    def test_insert_at_replace_boundary_allowed(self):
        """Inserts touching a replaced span's edges are not overlaps."""
        result = splice("abcdef", [Edit.replace(2, 4, "XX"), Edit.insert(2, "<"), Edit.insert(4, ">")])
        assert result.text == "ab<XX>ef"

    def test_records_before_after(self):
        """Records expose before/after text and both spans."""
        result = splice("abcdef", [Edit.replace(1, 3, "ZZZZ", "mid")])
        (record,) = result.records
        assert record.label == "mid"
        assert record.before == "bc"
        assert record.after == "ZZZZ"
        assert record.original_span == (1, 3)
        assert record.patched_span == (1, 5)

    def test_diff_and_excerpt(self):
        """Diff should show the change, excerpt the surroundings."""
        result = splice("one\ntwo\n", [Edit.insert(4, "inserted\n", "ins")])
        assert "+inserted" in result.diff("host.py")
        assert "inserted" in result.excerpt(result.records[0])
        assert result.delta == len("inserted\n")


class TestConflicts:
    """Tests for overlap detection."""

    def test_overlapping_replacements(self):
        """Two replacements sharing characters conflict."""
        with pytest.raises(SpliceConflict) as exc:
            splice("abcdef", [Edit.replace(0, 3, "x", "first"), Edit.replace(2, 5, "y", "second")])
        assert exc.value.first.label == "first"
        assert exc.value.second.label == "second"

    def test_insert_inside_replacement(self):
        """An insert strictly inside a replaced span conflicts."""
        with pytest.raises(SpliceConflict):
            splice("abcdef", [Edit.replace(1, 5, "x"), Edit.insert(3, "y")])

    def test_out_of_range(self):
        """Spans outside the text are rejected."""
        with pytest.raises(ValueError):
            splice("abc", [Edit.insert(10, "x")])
