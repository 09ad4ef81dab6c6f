"""
Instrumentation code generator.

Turns an InstrumentConfig into the source text of a self-contained unit that
can be spliced into a host module's prelude. The unit embeds the runtime
module (hookweave/runtime.py) inside a bootstrap function:

    # >>> hookweave instrumentation (generated; do not edit) >>>
    def _hookweave_bootstrap(_load):
        <stdlib bindings obtained through _load>
        <runtime.py body>
        return Instrumentation.from_config(json.loads('...'))


    _hookweave = _hookweave_bootstrap(__import__)
    del _hookweave_bootstrap
    # <<< hookweave instrumentation <<<

Only the handle is left behind as a new module global. `_load` is the host's
own module-loading expression (`__import__`, `importlib.import_module`, or an
alias found in the host), so the unit never adds a second import mechanism.

Output is deterministic: identical configuration yields identical text.
"""
import ast
import json
import re
import textwrap
from pathlib import Path
from typing import Mapping

from hookweave.config import HANDLE
from hookweave.errors import ConfigError, InstrumentError
from hookweave.models import InstrumentConfig, load_config
from hookweave.utils import cached_call, create_lru_cache, log_event, stable_hash

RUNTIME_SOURCE = Path(__file__).with_name("runtime.py")

BEGIN_MARKER = "# >>> hookweave instrumentation (generated; do not edit) >>>"
END_MARKER = "# <<< hookweave instrumentation <<<"

_IDENTIFIER = re.compile(r"^[A-Za-z_]\w*$")
_LOADER_EXPR = re.compile(r"^[A-Za-z_][\w.]*$")
_INDENT = "    "

_template_cache = create_lru_cache(maxsize=4)


# =============================================================================
# Runtime Embedding
# =============================================================================

def _is_docstring(node: ast.AST) -> bool:
    return (
        isinstance(node, ast.Expr)
        and isinstance(node.value, ast.Constant)
        and isinstance(node.value.value, str)
    )


def _docstring_nodes(tree: ast.Module) -> set[int]:
    """ids of every docstring Constant (module, class, function)."""
    found = set()
    for node in ast.walk(tree):
        if isinstance(node, (ast.Module, ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef)):
            if node.body and _is_docstring(node.body[0]):
                found.add(id(node.body[0].value))
    return found


def _check_embeddable(tree: ast.Module) -> None:
    """Reject constructs that change meaning once re-indented into a function."""
    docstrings = _docstring_nodes(tree)
    for node in ast.walk(tree):
        if isinstance(node, ast.Global):
            raise InstrumentError(f"runtime line {node.lineno}: `global` cannot be embedded")
        if isinstance(node, ast.ImportFrom) and (node.level or node.module == "__future__"):
            raise InstrumentError(f"runtime line {node.lineno}: unsupported import")
        if (
            isinstance(node, ast.Constant)
            and isinstance(node.value, str)
            and node.end_lineno != node.lineno
            and id(node) not in docstrings
        ):
            raise InstrumentError(f"runtime line {node.lineno}: multi-line string literal")


def _import_bindings(node: ast.Import | ast.ImportFrom) -> list[str]:
    """Rewrite one import statement into assignments through `_module`."""
    lines = []
    if isinstance(node, ast.Import):
        for alias in node.names:
            if alias.asname:
                lines.append(f"{alias.asname} = _module({alias.name!r})")
                continue
            top = alias.name.split(".")[0]
            if top != alias.name:
                # Loading the dotted name attaches the submodule to its package
                lines.append(f"_module({alias.name!r})")
            lines.append(f"{top} = _module({top!r})")
    else:
        for alias in node.names:
            lines.append(f"{alias.asname or alias.name} = getattr(_module({node.module!r}), {alias.name!r})")
    return lines


def split_runtime(source: str) -> tuple[list[str], str]:
    """
    Split runtime source into (binding lines, body text).

    The module docstring is dropped; the leading import block becomes binding
    lines; everything after it is the body, verbatim.

    Raises:
        InstrumentError: if an import appears after the first statement or the
            source uses a construct that cannot be embedded
    """
    tree = ast.parse(source)
    _check_embeddable(tree)

    statements = list(tree.body)
    if statements and _is_docstring(statements[0]):
        statements.pop(0)

    bindings: list[str] = []
    body_start = None
    for node in statements:
        if isinstance(node, (ast.Import, ast.ImportFrom)):
            if body_start is not None:
                raise InstrumentError(f"runtime line {node.lineno}: import after first statement")
            bindings.extend(_import_bindings(node))
        elif body_start is None:
            decorators = getattr(node, "decorator_list", [])
            body_start = min([node.lineno] + [d.lineno for d in decorators])

    lines = source.splitlines()
    body = "\n".join(lines[body_start - 1:]) if body_start else ""
    return bindings, body.strip("\n") + "\n"


def _load_template() -> tuple[list[str], str]:
    return cached_call(
        _template_cache,
        str(RUNTIME_SOURCE),
        lambda: split_runtime(RUNTIME_SOURCE.read_text(encoding="utf-8")),
    )


_MODULE_HELPER = [
    "def _module(name):",
    "    module = _load(name)",
    "    if getattr(module, '__name__', None) != name:",
    "        for part in name.split('.')[1:]:",
    "            module = getattr(module, part)",
    "    return module",
    "",
]


# =============================================================================
# Generation
# =============================================================================

def _validate_names(loader: str, handle: str) -> None:
    if not _IDENTIFIER.match(handle):
        raise ConfigError(f"handle {handle!r} is not an identifier")
    if not _LOADER_EXPR.match(loader):
        raise ConfigError(f"loader {loader!r} is not a dotted name")


def embedded_config(config: InstrumentConfig) -> str:
    """Canonical JSON of the enabled subset, as embedded in the unit."""
    return json.dumps(config.to_runtime(), sort_keys=True)


def generate(config: InstrumentConfig | Mapping, loader: str = "__import__", handle: str = HANDLE) -> str:
    """
    Emit the source text of the instrumentation unit.

    Args:
        config: InstrumentConfig, or a raw configuration mapping
        loader: host expression used to load stdlib modules
        handle: global name the unit binds

    Returns:
        Unit source, starting with BEGIN_MARKER and ending with END_MARKER
        plus a newline.
    """
    if not isinstance(config, InstrumentConfig):
        config = load_config(config)
    _validate_names(loader, handle)

    bindings, body = _load_template()
    payload = embedded_config(config)
    bootstrap = f"{handle}_bootstrap"

    inner = "\n".join(_MODULE_HELPER + bindings) + "\n\n" + body
    inner += f"\nreturn Instrumentation.from_config(json.loads({payload!r}))\n"

    unit = "\n".join([
        BEGIN_MARKER,
        f"# config {stable_hash(payload)}: "
        f"{len(config.active_hooks)} hooks, {len(config.active_transforms)} transforms",
        f"def {bootstrap}(_load):",
        textwrap.indent(inner, _INDENT).rstrip("\n"),
        "",
        "",
        f"{handle} = {bootstrap}({loader})",
        f"del {bootstrap}",
        END_MARKER,
        "",
    ])

    log_event("codegen", "generated", {
        "hooks": len(config.active_hooks),
        "transforms": len(config.active_transforms),
        "loader": loader,
        "bytes": len(unit),
    }, "debug")
    return unit


def contains_unit(text: str) -> bool:
    """True if `text` already carries a generated unit."""
    return BEGIN_MARKER in text
