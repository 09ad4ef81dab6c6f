"""
Pattern analyzer.

Reports, for a host text, which candidate each insertion site would use and
where, or the nearest near-miss excerpt when none matches. Used to check a new
host build before patching it.

Usage:
    from hookweave.patching.analyzer import analyze, format_report

    print(format_report(analyze(Path("host.py").read_text()), verbose=True))
"""
import re
from dataclasses import dataclass

from hookweave.config import Limits
from hookweave.errors import LocatorMiss
from hookweave.patching.locator import compile_cached, nearest_excerpt
from hookweave.patching.sites import ALL_SITES, Site

# Rough counts of places hooks could attach, independent of the site catalogue
HOOK_POINT_PROBES = (
    ("tool runs", r"await \w+\.run\("),
    ("message dicts", r"[\"']role[\"']: [\"'](?:user|assistant|system)[\"']"),
    ("case arms", r"^[ \t]+case [\"']\w+[\"']:"),
    ("keyword-only defs", r"^[ \t]*(?:async[ \t]+)?def \w+\(\*,"),
    ("uuid dedupe checks", r"\.uuid not in "),
    ("top-level imports", r"^(?:from[ \t]+[\w.]+[ \t]+)?import[ \t]"),
)


@dataclass(frozen=True)
class SiteAnalysis:
    site: str
    category: str
    required: bool
    candidate: str | None = None
    tier: str | None = None
    offset: int | None = None
    excerpt: str = ""

    @property
    def found(self) -> bool:
        return self.candidate is not None


@dataclass(frozen=True)
class AnalysisReport:
    size: int
    sites: tuple[SiteAnalysis, ...]
    hook_points: dict[str, int]

    @property
    def found(self) -> list[SiteAnalysis]:
        return [s for s in self.sites if s.found]

    @property
    def missing(self) -> list[SiteAnalysis]:
        return [s for s in self.sites if not s.found]


@dataclass(frozen=True)
class SearchHit:
    offset: int
    line: int
    match: str
    excerpt: str


def _analyze_site(text: str, site: Site) -> SiteAnalysis:
    for candidate in site.candidates:
        match = candidate.search(text)
        if match is not None:
            start = max(0, match.start - Limits.EXCERPT_CHARS // 4)
            return SiteAnalysis(
                site.name, site.category, site.required,
                candidate=match.name,
                tier=match.tier,
                offset=match.start,
                excerpt=text[start:start + Limits.EXCERPT_CHARS],
            )
    hint = site.candidates[0].hint if site.candidates else ""
    return SiteAnalysis(site.name, site.category, site.required, excerpt=nearest_excerpt(text, hint))


def analyze(text: str) -> AnalysisReport:
    """Run every site's candidates against `text` without patching it."""
    sites = []
    for site in ALL_SITES:
        try:
            sites.append(_analyze_site(text, site))
        except LocatorMiss:
            # Scanner ran off the end inside a strategy
            sites.append(SiteAnalysis(site.name, site.category, site.required))
    hook_points = {
        label: len(compile_cached(regex, re.M).findall(text))
        for label, regex in HOOK_POINT_PROBES
    }
    return AnalysisReport(len(text), tuple(sites), hook_points)


def search_pattern(text: str, regex: str, max_results: int = 10) -> list[SearchHit]:
    """
    First `max_results` matches of an ad-hoc regex, with line numbers.

    Raises:
        re.error: if `regex` does not compile
    """
    hits = []
    for m in compile_cached(regex, re.M).finditer(text):
        start = max(0, m.start() - 40)
        hits.append(SearchHit(
            offset=m.start(),
            line=text.count("\n", 0, m.start()) + 1,
            match=m.group(0),
            excerpt=text[start:m.end() + 40],
        ))
        if len(hits) >= max_results:
            break
    return hits


def format_report(report: AnalysisReport, verbose: bool = False) -> str:
    lines = [
        f"Host text: {report.size:,} chars",
        f"Sites: {len(report.found)}/{len(report.sites)} located",
        "",
    ]
    for site in report.sites:
        flag = "required" if site.required else site.category
        if site.found:
            lines.append(f"  [ok]   {site.site:<24} {site.candidate} ({site.tier}) @ {site.offset} [{flag}]")
        else:
            lines.append(f"  [miss] {site.site:<24} [{flag}]")
        if verbose and site.excerpt:
            lines.append(f"         {site.excerpt!r}")

    lines.append("")
    lines.append("Potential hook points:")
    for label, count in report.hook_points.items():
        lines.append(f"  {label:<20} {count}")
    return "\n".join(lines)
