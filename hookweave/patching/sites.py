"""
Insertion-site catalogue.

Each Site pairs an ordered candidate list with a builder that turns a match
into InsertionSites: an offset/span, an edit kind, the host identifiers the
generated call-site text must reuse verbatim, and that text.

Categories:
- Prelude: where the generated unit goes (the only required site)
- Events: emit() calls at tool, message, session, stream and command sites
- Transforms: run_stage() wraps, wired only for stages that have transforms

Adding support for a new host shape means appending a candidate, not editing
a builder.
"""
import re
from dataclasses import dataclass, field
from typing import Callable

from hookweave.config import HANDLE, Limits
from hookweave.errors import LocatorMiss
from hookweave.patching.locator import Match, Pattern, Strategy, locate, locate_many
from hookweave.patching.scanner import match_delimiter
from hookweave.patching.splicer import Edit

EDIT_KINDS = ("prelude", "insert", "replace", "append")


@dataclass(frozen=True)
class InsertionSite:
    """One place to edit, with the host spellings captured for it."""
    offset: int
    end: int
    kind: str
    text: str
    bindings: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.kind not in EDIT_KINDS:
            raise ValueError(f"unknown edit kind {self.kind!r}")

    def to_edit(self, label: str) -> Edit:
        return Edit(self.offset, self.end, self.text, label)


@dataclass(frozen=True)
class SiteContext:
    handle: str = HANDLE


Builder = Callable[[Match, str, SiteContext], list[InsertionSite]]


@dataclass(frozen=True)
class Site:
    name: str
    candidates: tuple
    build: Builder
    category: str = "event"
    stage: str | None = None
    required: bool = False
    limit: int = 1

    def resolve(self, text: str, ctx: SiteContext) -> list[InsertionSite]:
        """
        Locate and build every insertion for this site.

        Raises:
            LocatorMiss: no candidate matched
        """
        if self.limit == 1:
            matches = [locate(text, self.candidates, site=self.name)]
        else:
            matches = locate_many(text, self.candidates, self.limit, site=self.name)
        found: list[InsertionSite] = []
        for match in matches:
            found.extend(self.build(match, text, ctx))
        return found


# =============================================================================
# Call-site Text
# =============================================================================

def stage_call(handle: str, stage: str, value: str, context: str = "{}") -> str:
    """Conditional transform expression; skips the dispatcher when the stage is empty."""
    return (
        f'{handle}.run_stage("{stage}", {value}, {context}) '
        f'if {handle}.has_transforms_for_stage("{stage}") else {value}'
    )


def emit_call(handle: str, event: str, data: str = "{}") -> str:
    return f'{handle}.emit("{event}", {data})'


def _line_end(text: str, offset: int) -> int:
    """Offset just past the newline ending the line at `offset`."""
    end = text.find("\n", offset)
    return len(text) if end < 0 else end + 1


# =============================================================================
# Prelude
# =============================================================================

_IMPORT_LINE = re.compile(r"(?:from\s+[\w.]+\s+import\s|import\s)")
_DOCSTRING_OPEN = re.compile(r"[rRuU]?(\"\"\"|''')")


def _skip_docstring(text: str, pos: int) -> int:
    opener = _DOCSTRING_OPEN.match(text, pos)
    if not opener:
        return pos
    close = text.find(opener.group(1), opener.end())
    if close < 0:
        return -1
    return _line_end(text, close + 3)


def _import_block_end(text: str) -> Match | None:
    """End of shebang/comments, module docstring and top-level imports."""
    pos = 0
    while pos < len(text):
        line = text[pos:_line_end(text, pos)]
        if line.strip() and not line.lstrip().startswith("#"):
            break
        pos = _line_end(text, pos)

    pos = _skip_docstring(text, pos)
    if pos < 0:
        return None
    insert_at = pos

    while pos < len(text):
        end = _line_end(text, pos)
        line = text[pos:end]
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            pos = end
            continue
        if not _IMPORT_LINE.match(line):
            break
        paren = line.find("(")
        if paren >= 0 and ")" not in line[paren:]:
            end = _line_end(text, match_delimiter(text, pos + paren))
        while text[pos:end].rstrip("\r\n").endswith("\\") and end < len(text):
            end = _line_end(text, end)
        pos = end
        insert_at = end

    return Match("import-block", "verified", insert_at, insert_at)


def _build_prelude(match: Match, text: str, ctx: SiteContext) -> list[InsertionSite]:
    # Text is filled in by the orchestrator once the loader is known
    prefix = "" if match.start == 0 or text[match.start - 1] == "\n" else "\n"
    return [InsertionSite(match.start, match.start, "prelude", prefix, {})]


PRELUDE = Site(
    name="prelude",
    candidates=(Strategy("import-block", _import_block_end, hint="import"),),
    build=_build_prelude,
    category="prelude",
    required=True,
)


# =============================================================================
# Loader Discovery
# =============================================================================

LOADER_CANDIDATES = (
    Pattern("from-importlib", r"^from importlib import import_module(?: as (?P<alias>\w+))?[ \t]*$", re.M),
    Pattern("import-importlib", r"^import importlib(?: as (?P<module>\w+))?[ \t]*$", re.M),
)


def loader_expression(match: Match | None) -> str:
    """Host spelling of its module loader; __import__ when none is visible."""
    if match is None:
        return "__import__"
    if match.name == "from-importlib":
        return match.get("alias", "import_module")
    return f"{match.get('module', 'importlib')}.import_module"


# =============================================================================
# Event Sites
# =============================================================================

TOOL_RUN_CANDIDATES = (
    Pattern(
        "parse-then-run",
        r'^(?P<indent>[ \t]+)(?P<input>\w+) = (?P<use>\w+)\.input[ \t]*\n'
        r'(?P=indent)if hasattr\((?P<tool>\w+), "parse"\):[ \t]*\n'
        r'(?P=indent)[ \t]+(?P=input) = (?P=tool)\.parse\((?P=input)\)[ \t]*\n'
        r'(?P<run>(?P=indent)(?P<result>\w+) = await (?P=tool)\.run\((?P=input)\)[ \t]*\n)',
        re.M,
    ),
    Pattern(
        "bare-run",
        r'^(?P<run>(?P<indent>[ \t]+)(?P<result>\w+) = await (?P<tool>\w+)\.run\((?P<input>\w+)\)[ \t]*\n)',
        re.M,
        tier="unverified",
    ),
)


def _tool_identity(match: Match) -> tuple[str, str]:
    use = match.get("use")
    if use:
        return f"{use}.name", f"{use}.id"
    tool = match["tool"]
    return f'getattr({tool}, "name", None)', "None"


def _build_tool_lifecycle(match: Match, text: str, ctx: SiteContext) -> list[InsertionSite]:
    indent, value, result = match["indent"], match["input"], match["result"]
    name, tool_id = _tool_identity(match)
    run_start, run_end = match.span("run")
    bindings = {"indent": indent, "input": value, "result": result, "tool": match["tool"]}

    before = emit_call(ctx.handle, "tool:before", f'{{"toolName": {name}, "toolId": {tool_id}, "input": {value}}}')
    after = emit_call(
        ctx.handle, "tool:after",
        f'{{"toolName": {name}, "toolId": {tool_id}, "input": {value}, "result": {result}}}',
    )
    return [
        InsertionSite(run_start, run_start, "insert", f"{indent}{before}\n", bindings),
        InsertionSite(run_end, run_end, "insert", f"{indent}{after}\n", bindings),
    ]


MESSAGE_APPEND_CANDIDATES = (
    Pattern(
        "uuid-dedupe",
        r"^(?P<indent>[ \t]*)if (?P<message>\w+)\.uuid not in (?P<seen>[\w.]+):[ \t]*\n(?=(?P<body>[ \t]+)\S)",
        re.M,
    ),
)


def _build_message_append(match: Match, text: str, ctx: SiteContext) -> list[InsertionSite]:
    message, body = match["message"], match["body"]
    kind = f'getattr({message}, "type", "unknown")'
    data = f'{{"messageType": {kind}, "uuid": {message}.uuid, "content": getattr({message}, "content", None)}}'
    line = f'{body}{ctx.handle}.emit("message:" + str({kind}), {data})\n'
    return [InsertionSite(match.end, match.end, "insert", line, {"message": message, "body": body})]


_ENTRY_DEF = re.compile(r"^(?P<indent>[ \t]*)(?:async[ \t]+)?def (?P<name>\w+)\(\*,", re.M)


def _keyword_entry_point(text: str) -> Match | None:
    """Longest keyword-only def whose parameters include `commands`."""
    best = None
    for header in _ENTRY_DEF.finditer(text):
        open_paren = header.end() - 3
        try:
            close_paren = match_delimiter(text, open_paren)
        except LocatorMiss:
            continue
        params = text[open_paren + 1:close_paren]
        if not re.search(r"\bcommands\b", params):
            continue
        if best is None or len(params) > best[1]:
            best = (header, len(params), close_paren)
    if best is None:
        return None

    header, _, close_paren = best
    colon = text.find(":", close_paren)
    if colon < 0:
        return None
    body_start = _line_end(text, colon)
    body = re.match(r"[ \t]+", text[body_start:])
    if body is None:
        return None
    insert_at = body_start
    if _DOCSTRING_OPEN.match(text, body_start + body.end()):
        insert_at = _skip_docstring(text, body_start + body.end())
        if insert_at < 0:
            return None
    return Match(
        "keyword-entry",
        "verified",
        insert_at,
        insert_at,
        {"name": header["name"], "body": body.group(0)},
        {"name": header.span("name")},
    )


def _build_session_start(match: Match, text: str, ctx: SiteContext) -> list[InsertionSite]:
    body, name = match["body"], match["name"]
    data = f'{{"entry": {name!r}}}'
    line = f"{body}{emit_call(ctx.handle, 'session:start', data)}\n"
    return [InsertionSite(match.start, match.start, "insert", line, {"entry": name, "body": body})]


_MATCH_SUBJECT = r"^[ \t]*match (?P<subject>\w+)\.type:[ \t]*$"


def _case_arm(label: str) -> str:
    return rf'^(?P<indent>[ \t]+)case "{label}":[ \t]*\n(?=(?P<body>[ \t]+)\S)'


def _arm_candidates(label: str) -> tuple:
    return (
        Pattern(f"match-{label}", _MATCH_SUBJECT, re.M, then=_case_arm(label), window=4000),
    )


def _arm_builder(event: str, field_name: str | None) -> Builder:
    def build(match: Match, text: str, ctx: SiteContext) -> list[InsertionSite]:
        subject = match["subject"]
        data = "{}"
        if field_name:
            data = f'{{"{field_name}": getattr({subject}, "{field_name}", None)}}'
        line = f"{match['body']}{emit_call(ctx.handle, event, data)}\n"
        return [InsertionSite(match.end, match.end, "insert", line, {"subject": subject})]
    return build


_COMMAND_LIST = re.compile(r"^(?P<indent>[ \t]*)(?P<name>\w+) = \[", re.M)
_COMMAND_ENTRY = re.compile(r"^[\w.]+(?:\(\))?$")


def _command_list(prefer_named: bool) -> Callable[[str], Match | None]:
    def find(text: str) -> Match | None:
        for header in _COMMAND_LIST.finditer(text):
            if prefer_named and "command" not in header["name"].lower():
                continue
            open_bracket = header.end() - 1
            try:
                close_bracket = match_delimiter(text, open_bracket, "[", "]")
            except LocatorMiss:
                continue
            entries = [e.strip() for e in text[open_bracket + 1:close_bracket].split(",")]
            entries = [e for e in entries if e]
            if len(entries) < Limits.COMMAND_LIST_MIN or not all(_COMMAND_ENTRY.match(e) for e in entries):
                continue
            last = close_bracket - 1
            while text[last].isspace():
                last -= 1
            return Match(
                "command-list",
                "verified" if prefer_named else "unverified",
                last + 1,
                last + 1,
                {"name": header["name"], "trailing_comma": "1" if text[last] == "," else None},
                {"name": header.span("name")},
            )
        return None
    return find


def _build_emit_command(match: Match, text: str, ctx: SiteContext) -> list[InsertionSite]:
    entry = f"{ctx.handle}.emit_command()"
    addition = f" {entry}," if match.get("trailing_comma") else f", {entry}"
    return [InsertionSite(match.start, match.start, "append", addition, {"list": match["name"]})]


# =============================================================================
# Transform Sites
# =============================================================================

def _role_candidates(role: str) -> tuple:
    return (
        Pattern(f"{role}-message-dict", rf'\{{"role": "{role}", "content": (?P<content>\w+)\}}'),
        Pattern(f"{role}-message-dict-single", rf"\{{'role': '{role}', 'content': (?P<content>\w+)\}}", tier="unverified"),
    )


def _wrap_content(stage: str) -> Builder:
    def build(match: Match, text: str, ctx: SiteContext) -> list[InsertionSite]:
        content = match["content"]
        start, end = match.span("content")
        wrapped = f"({stage_call(ctx.handle, stage, content)})"
        return [InsertionSite(start, end, "replace", wrapped, {"content": content})]
    return build


def _build_tool_input(match: Match, text: str, ctx: SiteContext) -> list[InsertionSite]:
    indent, value = match["indent"], match["input"]
    name, _ = _tool_identity(match)
    run_start, _ = match.span("run")
    context = f'{{"toolName": {name}}}'
    line = f"{indent}{value} = {stage_call(ctx.handle, 'tool:input', value, context)}\n"
    return [InsertionSite(run_start, run_start, "insert", line, {"input": value})]


TOOL_OUTPUT_CANDIDATES = (
    Pattern(
        "tool-result-dict",
        r'return \{"type": "tool_result", "tool_use_id": (?P<use>\w+)\.id, "content": (?P<content>\w+)\}',
    ),
)


def _build_tool_output(match: Match, text: str, ctx: SiteContext) -> list[InsertionSite]:
    content, use = match["content"], match["use"]
    start, end = match.span("content")
    context = f'{{"toolName": {use}.name}}'
    wrapped = f"({stage_call(ctx.handle, 'tool:output', content, context)})"
    return [InsertionSite(start, end, "replace", wrapped, {"content": content, "use": use})]


# =============================================================================
# Catalogue
# =============================================================================

# Declaration order matters: at a shared offset, earlier sites' inserts land
# first (the tool:input rewrite precedes the tool:before emit).
TRANSFORM_SITES = (
    Site("tool_input_transform", TOOL_RUN_CANDIDATES, _build_tool_input, "transform", "tool:input"),
    Site("tool_output_transform", TOOL_OUTPUT_CANDIDATES, _build_tool_output, "transform", "tool:output"),
    Site("prompt_transform", _role_candidates("user"), _wrap_content("prompt:before"), "transform", "prompt:before"),
    Site("system_prompt_transform", _role_candidates("system"), _wrap_content("prompt:system"),
         "transform", "prompt:system"),
    Site("response_transform", _role_candidates("assistant"), _wrap_content("response:before"),
         "transform", "response:before", limit=Limits.MAX_RESPONSE_SITES),
)

EVENT_SITES = (
    Site("tool_lifecycle", TOOL_RUN_CANDIDATES, _build_tool_lifecycle),
    Site("message_append", MESSAGE_APPEND_CANDIDATES, _build_message_append),
    Site("session_start", (Strategy("keyword-entry", _keyword_entry_point, hint="def main(*, commands"),),
         _build_session_start),
    Site("stream_start", _arm_candidates("message_start"), _arm_builder("stream:start", None)),
    Site("stream_chunk", _arm_candidates("text_delta"), _arm_builder("stream:chunk", "text")),
    Site("stream_end", _arm_candidates("message_stop"), _arm_builder("stream:end", None)),
    Site("thinking_update", _arm_candidates("thinking_delta"), _arm_builder("thinking:update", "thinking")),
    Site("emit_command", (
        Strategy("named-command-list", _command_list(prefer_named=True), hint="COMMANDS = ["),
        Strategy("identifier-list", _command_list(prefer_named=False), tier="unverified", hint="= ["),
    ), _build_emit_command),
)

ALL_SITES = (PRELUDE,) + TRANSFORM_SITES + EVENT_SITES


def sites_for(stages: set[str], has_hooks: bool) -> tuple[Site, ...]:
    """Non-prelude sites worth wiring for this configuration, in order."""
    selected = [s for s in TRANSFORM_SITES if s.stage in stages]
    if has_hooks:
        selected.extend(EVENT_SITES)
    return tuple(selected)
