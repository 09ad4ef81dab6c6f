"""
hookweave - event hooks and transform pipelines spliced into host programs.

Package layout:
- config.py: constants (paths, timeouts, limits, event names)
- models.py: hook/transform configuration contract
- codegen.py: generates the embedded instrumentation unit
- runtime.py: the dispatcher code that unit carries
- patching/: scanner, locator, splicer, site catalogue, orchestrator, analyzer
- utils/: logging, file I/O, caching

Usage:
    from hookweave import load_config, instrument_file

    report = instrument_file("host.py", load_config(raw_config))
"""
from hookweave.codegen import generate
from hookweave.errors import AlreadyInstrumented, ConfigError, InstrumentError, LocatorMiss, SpliceConflict
from hookweave.models import HookSpec, InstrumentConfig, TransformSpec, load_config
from hookweave.patching import analyze, instrument, instrument_file, restore_file

__version__ = "0.1.0"

__all__ = [
    "AlreadyInstrumented",
    "ConfigError",
    "HookSpec",
    "InstrumentConfig",
    "InstrumentError",
    "LocatorMiss",
    "SpliceConflict",
    "TransformSpec",
    "analyze",
    "generate",
    "instrument",
    "instrument_file",
    "load_config",
    "restore_file",
]
