"""
Patch orchestrator.

instrument() runs the whole pipeline against one host text:

    config -> prelude site -> loader discovery -> generate() -> optional sites
           -> splice() (all edits against the same original offsets)

Required sites (the prelude) abort the run on a miss; optional sites are
skipped with a logged warning and an operator-visible notice.

instrument_file()/restore_file() add the file handling: lock, backup,
already-instrumented refusal, atomic write.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from hookweave.codegen import contains_unit, generate
from hookweave.config import HANDLE
from hookweave.errors import AlreadyInstrumented, LocatorMiss
from hookweave.models import InstrumentConfig, load_config
from hookweave.patching.locator import try_locate
from hookweave.patching.sites import LOADER_CANDIDATES, PRELUDE, SiteContext, loader_expression, sites_for
from hookweave.patching.splicer import Edit, SpliceResult, splice
from hookweave.utils import (
    LogOnce,
    atomic_write_text,
    backup_file,
    expand_path,
    file_lock,
    log_event,
    notify,
    read_text,
    restore_backup,
)

_log_once = LogOnce(period_sec=60)


@dataclass(frozen=True)
class PatchReport:
    """Outcome of one instrument() run."""
    result: SpliceResult
    applied: tuple[str, ...]
    skipped: tuple[str, ...]
    loader: str

    @property
    def text(self) -> str:
        return self.result.text

    def summary(self) -> str:
        lines = [f"applied {len(self.applied)} sites, skipped {len(self.skipped)} (loader: {self.loader})"]
        lines.extend(f"  + {name}" for name in self.applied)
        lines.extend(f"  - {name}" for name in self.skipped)
        return "\n".join(lines)


def _coerce(config: InstrumentConfig | Mapping) -> InstrumentConfig:
    return config if isinstance(config, InstrumentConfig) else load_config(config)


def instrument(text: str, config: InstrumentConfig | Mapping, handle: str = HANDLE) -> PatchReport | None:
    """
    Splice the instrumentation unit and its call-sites into `text`.

    Returns:
        PatchReport, or None when the configuration enables nothing

    Raises:
        AlreadyInstrumented: text already carries a unit
        LocatorMiss: a required site was not found
        SpliceConflict: two sites produced overlapping edits
    """
    config = _coerce(config)
    if contains_unit(text):
        raise AlreadyInstrumented("host text already carries a hookweave unit")
    if not config.has_work():
        log_event("instrument", "nothing_enabled", {}, "info")
        return None

    ctx = SiteContext(handle=handle)
    try:
        (prelude,) = PRELUDE.resolve(text, ctx)
    except LocatorMiss as exc:
        log_event("instrument", "required_site_missing", {
            "site": exc.site, "candidates": exc.candidates, "excerpt": exc.excerpt,
        }, "error")
        raise

    loader = loader_expression(try_locate(text[:prelude.offset], LOADER_CANDIDATES))
    unit = generate(config, loader=loader, handle=handle)
    edits = [Edit.insert(prelude.offset, prelude.text + unit + "\n", "prelude")]

    applied = ["prelude"]
    skipped = []
    for site in sites_for(config.stages(), bool(config.active_hooks)):
        try:
            found = site.resolve(text, ctx)
        except LocatorMiss as exc:
            if site.required:
                raise
            skipped.append(site.name)
            _log_once.warning("instrument", "site_skipped", site.name,
                              candidates=exc.candidates, excerpt=exc.excerpt)
            notify(f"{site.name}: anchor not found, feature not wired")
            continue
        edits.extend(insertion.to_edit(site.name) for insertion in found)
        applied.append(site.name)

    result = splice(text, edits)
    log_event("instrument", "patched", {
        "applied": applied,
        "skipped": skipped,
        "edits": len(result.records),
        "delta": result.delta,
        "loader": loader,
    })
    return PatchReport(result, tuple(applied), tuple(skipped), loader)


def instrument_file(path: str | Path, config: InstrumentConfig | Mapping,
                    backup: bool = True, dry_run: bool = False) -> PatchReport | None:
    """
    Instrument a host file in place.

    The pristine text is backed up to `<path>.hookweave.bak` the first time.
    With dry_run the report is returned and nothing is written.

    Raises:
        AlreadyInstrumented: the file already carries a unit
    """
    path = Path(expand_path(str(path)))
    with file_lock(path):
        text = read_text(path)
        if contains_unit(text):
            raise AlreadyInstrumented(f"{path} is already instrumented; restore it first")
        report = instrument(text, config)
        if report is None or dry_run:
            return report
        if backup:
            backup_file(path)
        atomic_write_text(path, report.text)

    log_event("instrument", "file_patched", {"path": str(path), "applied": list(report.applied)})
    return report


def restore_file(path: str | Path) -> bool:
    """Put the backed-up original back. False when there is no backup."""
    path = Path(expand_path(str(path)))
    with file_lock(path):
        restored = restore_backup(path)
    log_event("instrument", "restored" if restored else "no_backup", {"path": str(path)})
    return restored
