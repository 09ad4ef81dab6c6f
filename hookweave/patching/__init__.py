"""
Locate, splice, and orchestrate host-text patches.

Usage:
    from hookweave.patching import instrument_file, restore_file

    report = instrument_file("app/main.py", config)
    print(report.result.diff("app/main.py"))
"""
from .analyzer import AnalysisReport, analyze, format_report, search_pattern
from .instrument import PatchReport, instrument, instrument_file, restore_file
from .locator import Match, Pattern, Strategy, locate, locate_all, try_locate
from .scanner import match_delimiter
from .splicer import Edit, SpliceResult, splice

__all__ = [
    # Orchestration
    "PatchReport",
    "instrument",
    "instrument_file",
    "restore_file",
    # Analysis
    "AnalysisReport",
    "analyze",
    "format_report",
    "search_pattern",
    # Building blocks
    "Edit",
    "Match",
    "Pattern",
    "SpliceResult",
    "Strategy",
    "locate",
    "locate_all",
    "match_delimiter",
    "splice",
    "try_locate",
]
