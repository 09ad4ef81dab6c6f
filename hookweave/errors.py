"""
Patch-time error taxonomy.

Runtime failures (sink, transform, abort) are defined inside the embedded
runtime module because the host process never imports this package.
"""


class InstrumentError(Exception):
    """Base class for failures that abort a patch run."""


class ConfigError(InstrumentError):
    """Configuration mapping violates the hook/transform contract."""


class LocatorMiss(InstrumentError):
    """No candidate pattern matched.

    Callers decide whether a miss is fatal (required site) or skippable.
    """

    def __init__(self, site: str, candidates: list[str], excerpt: str = ""):
        self.site = site
        self.candidates = list(candidates)
        self.excerpt = excerpt
        message = f"{site}: no match for {', '.join(self.candidates) or '<no candidates>'}"
        if excerpt:
            message += f" (searched: {excerpt!r})"
        super().__init__(message)


class SpliceConflict(InstrumentError):
    """Two edits touch the same span. Always a generator bug."""

    def __init__(self, first, second):
        self.first = first
        self.second = second
        super().__init__(
            f"edit {second.label!r} [{second.start}:{second.end}] overlaps "
            f"edit {first.label!r} [{first.start}:{first.end}]"
        )


class AlreadyInstrumented(InstrumentError):
    """Host text already carries a hookweave unit."""
