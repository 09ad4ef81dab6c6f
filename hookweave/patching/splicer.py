"""
Text splicer.

Applies insert/replace edits expressed in ORIGINAL offsets to an immutable
text. Edits are ordered by original start (at one offset, zero-width inserts
sort ahead of a replacement, then declaration order) and composed left to
right with a running length delta. Every applied edit is recorded with its
before/after text and both spans so the patch can be audited.
"""
import difflib
from dataclasses import dataclass
from typing import Iterable

from hookweave.errors import SpliceConflict


@dataclass(frozen=True)
class Edit:
    """Replace original[start:end] with text. start == end is an insert."""
    start: int
    end: int
    text: str
    label: str = ""

    @classmethod
    def insert(cls, offset: int, text: str, label: str = "") -> "Edit":
        return cls(offset, offset, text, label)

    @classmethod
    def replace(cls, start: int, end: int, text: str, label: str = "") -> "Edit":
        return cls(start, end, text, label)

    @property
    def is_insert(self) -> bool:
        return self.start == self.end


@dataclass(frozen=True)
class SpliceRecord:
    """Audit entry for one applied edit."""
    label: str
    before: str
    after: str
    original_span: tuple[int, int]
    patched_span: tuple[int, int]


@dataclass(frozen=True)
class SpliceResult:
    original: str
    text: str
    records: tuple[SpliceRecord, ...]

    @property
    def delta(self) -> int:
        return len(self.text) - len(self.original)

    def diff(self, name: str = "host", context: int = 3) -> str:
        """Unified diff of original vs patched text."""
        return "".join(difflib.unified_diff(
            self.original.splitlines(keepends=True),
            self.text.splitlines(keepends=True),
            fromfile=f"a/{name}",
            tofile=f"b/{name}",
            n=context,
        ))

    def excerpt(self, record: SpliceRecord, context: int = 40) -> str:
        """Patched text around one edit, for display."""
        start, end = record.patched_span
        return self.text[max(0, start - context):end + context]


def splice(original: str, edits: Iterable[Edit]) -> SpliceResult:
    """
    Apply all edits against the same original text.

    Raises:
        ValueError: an edit span lies outside the text
        SpliceConflict: two edits overlap, or an insert falls strictly
            inside a replaced span
    """
    indexed = list(enumerate(edits))
    for _, edit in indexed:
        if not 0 <= edit.start <= edit.end <= len(original):
            raise ValueError(f"edit {edit.label!r} span [{edit.start}:{edit.end}] outside text of length {len(original)}")
    ordered = [edit for _, edit in sorted(indexed, key=lambda p: (p[1].start, p[1].end, p[0]))]

    pieces: list[str] = []
    records: list[SpliceRecord] = []
    cursor = 0
    delta = 0
    previous = None
    for edit in ordered:
        if edit.start < cursor:
            raise SpliceConflict(previous, edit)
        pieces.append(original[cursor:edit.start])
        pieces.append(edit.text)

        patched_start = edit.start + delta
        records.append(SpliceRecord(
            label=edit.label,
            before=original[edit.start:edit.end],
            after=edit.text,
            original_span=(edit.start, edit.end),
            patched_span=(patched_start, patched_start + len(edit.text)),
        ))
        delta += len(edit.text) - (edit.end - edit.start)
        cursor = edit.end
        previous = edit
    pieces.append(original[cursor:])

    return SpliceResult(original, "".join(pieces), tuple(records))
