"""
Pattern locator.

Candidates are tried strictly in order and the first structural match wins;
there is no scoring. A Pattern may be two-stage: a coarse anchor regex, then a
narrower `then` regex searched only inside a bounded window after the anchor.
A Strategy wraps a callable for shapes a regex cannot express alone (for
example, anything that needs the delimiter scanner).

Whether a miss is fatal is decided by the caller, never here.

Usage:
    from hookweave.patching.locator import Pattern, locate

    match = locate(text, [
        Pattern("tool-run", r"^(?P<indent>[ \\t]+)(?P<result>\\w+) = await (?P<tool>\\w+)\\.run\\(", re.M),
    ], site="tool_lifecycle")
    match["tool"], match.span("indent")
"""
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping

from rapidfuzz import fuzz

from hookweave.config import Limits
from hookweave.errors import LocatorMiss
from hookweave.utils import cached_call, create_lru_cache

TIERS = ("verified", "unverified", "broken")

_regex_cache = create_lru_cache(maxsize=Limits.PATTERN_CACHE)


def compile_cached(regex: str, flags: int = 0) -> re.Pattern:
    """Compile once per (regex, flags)."""
    return cached_call(_regex_cache, (regex, flags), lambda: re.compile(regex, flags))


# =============================================================================
# Result Type
# =============================================================================

@dataclass(frozen=True)
class Match:
    """Uniform locator result: candidate identity, span, named captures."""
    name: str
    tier: str
    start: int
    end: int
    groups: Mapping[str, str | None] = field(default_factory=dict)
    spans: Mapping[str, tuple[int, int]] = field(default_factory=dict)

    def __getitem__(self, key: str) -> str | None:
        return self.groups[key]

    def get(self, key: str, default: str | None = None) -> str | None:
        value = self.groups.get(key)
        return default if value is None else value

    def span(self, key: str) -> tuple[int, int]:
        return self.spans[key]

    @classmethod
    def from_re(cls, name: str, tier: str, m: re.Match, anchor: re.Match | None = None) -> "Match":
        groups: dict[str, str | None] = {}
        spans: dict[str, tuple[int, int]] = {}
        for source in (anchor, m):
            if source is None:
                continue
            for key, value in source.groupdict().items():
                groups[key] = value
                if value is not None:
                    spans[key] = source.span(key)
        return cls(name, tier, m.start(), m.end(), groups, spans)


# =============================================================================
# Candidates
# =============================================================================

@dataclass(frozen=True)
class Pattern:
    """Regex candidate, optionally two-stage."""
    name: str
    regex: str
    flags: int = 0
    tier: str = "verified"
    then: str | None = None
    window: int = Limits.SECONDARY_WINDOW

    def __post_init__(self):
        if self.tier not in TIERS:
            raise ValueError(f"pattern {self.name!r}: unknown tier {self.tier!r}")

    @property
    def hint(self) -> str:
        return self.then or self.regex

    def search(self, text: str, pos: int = 0) -> Match | None:
        anchor_re = compile_cached(self.regex, self.flags)
        if self.then is None:
            m = anchor_re.search(text, pos)
            return Match.from_re(self.name, self.tier, m) if m else None

        secondary_re = compile_cached(self.then, self.flags)
        for anchor in anchor_re.finditer(text, pos):
            m = secondary_re.search(text, anchor.end(), min(len(text), anchor.end() + self.window))
            if m:
                return Match.from_re(self.name, self.tier, m, anchor)
        return None

    def find_all(self, text: str, limit: int | None = None) -> list[Match]:
        """Every non-overlapping match, left to right."""
        found: list[Match] = []
        pos = 0
        while pos <= len(text) and (limit is None or len(found) < limit):
            match = self.search(text, pos)
            if match is None:
                break
            found.append(match)
            pos = match.end if match.end > match.start else match.end + 1
        return found


@dataclass(frozen=True)
class Strategy:
    """Callable candidate with the same result type as Pattern."""
    name: str
    func: Callable[[str], Match | None]
    tier: str = "verified"
    hint: str = ""

    def __post_init__(self):
        if self.tier not in TIERS:
            raise ValueError(f"strategy {self.name!r}: unknown tier {self.tier!r}")

    def search(self, text: str, pos: int = 0) -> Match | None:
        match = self.func(text[pos:] if pos else text)
        if match is None or not pos:
            return match
        return Match(
            match.name,
            match.tier,
            match.start + pos,
            match.end + pos,
            match.groups,
            {k: (s + pos, e + pos) for k, (s, e) in match.spans.items()},
        )

    def find_all(self, text: str, limit: int | None = None) -> list[Match]:
        match = self.search(text)
        return [match] if match else []


Candidate = Pattern | Strategy


# =============================================================================
# Locate
# =============================================================================

def locate(text: str, candidates: Iterable[Candidate], site: str = "locate") -> Match:
    """
    Return the first candidate's match, in candidate order.

    Raises:
        LocatorMiss: no candidate matched
    """
    candidates = list(candidates)
    for candidate in candidates:
        match = candidate.search(text)
        if match is not None:
            return match
    raise _miss(text, candidates, site)


def try_locate(text: str, candidates: Iterable[Candidate]) -> Match | None:
    try:
        return locate(text, candidates)
    except LocatorMiss:
        return None


def locate_all(text: str, pattern: Candidate, limit: int | None = None) -> list[Match]:
    """Every non-overlapping match of one candidate."""
    return pattern.find_all(text, limit)


def locate_many(text: str, candidates: Iterable[Candidate], limit: int | None, site: str = "locate") -> list[Match]:
    """Up to `limit` matches of the first candidate that matches at all."""
    candidates = list(candidates)
    for candidate in candidates:
        found = candidate.find_all(text, limit)
        if found:
            return found
    raise _miss(text, candidates, site)


def _miss(text: str, candidates: list[Candidate], site: str) -> LocatorMiss:
    hint = candidates[0].hint if candidates else ""
    return LocatorMiss(site, [c.name for c in candidates], nearest_excerpt(text, hint))


# =============================================================================
# Diagnostics
# =============================================================================

_GROUP_SYNTAX = re.compile(r"\(\?P<\w+>|\(\?P=\w+\)|\(\?[:=!]|\(\?<[=!]")
_CHAR_CLASS = re.compile(r"\[[^\]]*\]")
_CLASS_ESCAPE = re.compile(r"\\[A-Za-z]")
_LITERAL_RUN = re.compile(r"[A-Za-z_][\w ]{2,}")


def literal_hint(regex: str) -> str:
    """Longest plain-word run in a regex, used to look for near misses."""
    cleaned = _CLASS_ESCAPE.sub(" ", _CHAR_CLASS.sub(" ", _GROUP_SYNTAX.sub(" ", regex)))
    runs = [run.strip() for run in _LITERAL_RUN.findall(cleaned)]
    return max(runs, key=len, default="")


def nearest_excerpt(text: str, regex: str, width: int = Limits.EXCERPT_CHARS) -> str:
    """
    Excerpt of `text` around the closest thing to what `regex` looks for.

    Exact literal hit first, then rapidfuzz partial alignment; falls back to
    the head of the text.
    """
    hint = literal_hint(regex) if regex else ""
    if not hint or not text:
        return text[:width]
    offset = text.find(hint)
    if offset < 0:
        alignment = fuzz.partial_ratio_alignment(hint, text)
        if alignment is None or alignment.score < 50:
            return text[:width]
        offset = alignment.dest_start
    start = max(0, offset - width // 4)
    return text[start:start + width]
