"""
Pytest configuration for hookweave tests.

Points HOOKWEAVE_DATA_DIR at a throwaway directory before any hookweave
module is imported (config.py reads it at import time), and provides a small
sample host module plus helpers for writing hook/transform scripts.
"""
import os
import sys
import tempfile
import textwrap

import pytest

os.environ.setdefault("HOOKWEAVE_DATA_DIR", tempfile.mkdtemp(prefix="hookweave-tests-"))


SAMPLE_HOST = '''\
#!/usr/bin/env python3
"""Sample agent host used by the patching tests."""
from __future__ import annotations

import asyncio
import json
from typing import (
    Any,
    Optional,
)

VERSION = "1.0"


class Conversation:
    def __init__(self):
        self.messages = []
        self.seen = set()

    def append(self, message):
        if message.uuid not in self.seen:
            self.seen.add(message.uuid)
            self.messages.append(message)


def make_user_message(text):
    return {"role": "user", "content": text}


def make_system_prompt(prompt):
    return {"role": "system", "content": prompt}


def make_assistant_message(reply):
    return {"role": "assistant", "content": reply}


async def run_tool_use(use, tools):
    tool = tools[use.name]
    args = use.input
    if hasattr(tool, "parse"):
        args = tool.parse(args)
    result = await tool.run(args)
    return {"type": "tool_result", "tool_use_id": use.id, "content": result}


def handle_stream(event, state):
    match event.type:
        case "message_start":
            state.begin()
        case "text_delta":
            state.text += event.text
        case "thinking_delta":
            state.thinking += event.thinking
        case "message_stop":
            state.finish()


def clear_command(): return "clear"
def compact_command(): return "compact"
def config_command(): return "config"
def cost_command(): return "cost"
def doctor_command(): return "doctor"
def help_command(): return "help"
def init_command(): return "init"
def login_command(): return "login"


COMMANDS = [
    clear_command, compact_command, config_command, cost_command,
    doctor_command, help_command, init_command, login_command,
]


def main(*, argv, commands, config=None):
    """Application entry point."""
    return len(commands)
'''


@pytest.fixture
def sample_host():
    return SAMPLE_HOST


@pytest.fixture
def write_script(tmp_path):
    """Factory: write a Python program into tmp_path and return its path."""
    def _write(name, body):
        path = tmp_path / name
        path.write_text(textwrap.dedent(body))
        return str(path)
    return _write


@pytest.fixture
def transform_script(write_script):
    """Factory: a transform whose body maps `data` to a new `data` expression."""
    def _make(name, expression):
        return write_script(name, f"""
            import json, os
            with open(os.environ["HOOKWEAVE_INPUT_FILE"]) as f:
                envelope = json.load(f)
            data = envelope["data"]
            envelope["data"] = {expression}
            with open(os.environ["HOOKWEAVE_OUTPUT_FILE"], "w") as f:
                json.dump(envelope, f)
        """)
    return _make


@pytest.fixture
def recording_hook(write_script, tmp_path):
    """Factory: a script sink that appends its environment payload to a file."""
    def _make(name="record.py", exit_code=0):
        out = tmp_path / f"{name}.out"
        script = write_script(name, f"""
            import os, sys
            with open({str(out)!r}, "a") as f:
                f.write(os.environ.get("HOOKWEAVE_EVENT", "") + "\\t")
                f.write(os.environ.get("HOOKWEAVE_DATA_BASE64", "") + "\\n")
            sys.exit({exit_code})
        """)
        return script, out
    return _make


PYTHON = sys.executable
