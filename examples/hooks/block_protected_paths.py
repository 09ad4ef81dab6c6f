#!/usr/bin/env python3
"""Example blocking hook - veto tool calls that touch protected paths.

Exits non-zero when the tool input mentions a protected path. Configured as a
blocking hook with onError "abort", that failure stops the tool call.

Usage in the hookweave configuration:
{
  "hooks": [{
    "id": "protect-secrets",
    "events": ["tool:before"],
    "type": "script",
    "script": "~/.hookweave/hooks/block_protected_paths.py",
    "async": false,
    "onError": "abort",
    "filter": {"tools": ["Write", "Edit", "Bash"]}
  }]
}
"""
import base64
import json
import os
import sys

PROTECTED_PATHS = [".env", "secrets/", "credentials"]


def load_payload() -> dict:
    """Prefer the base64 transport; it survives any shell quoting."""
    encoded = os.environ.get("HOOKWEAVE_DATA_BASE64")
    if encoded:
        return json.loads(base64.b64decode(encoded))
    return json.loads(os.environ.get("HOOKWEAVE_DATA", "{}"))


def find_protected(payload: dict) -> str | None:
    serialized = json.dumps(payload.get("input"))
    for pattern in PROTECTED_PATHS:
        if pattern in serialized:
            return pattern
    return None


def main():
    try:
        payload = load_payload()
    except ValueError:
        sys.exit(0)

    pattern = find_protected(payload)
    if pattern:
        print(f"[protect-secrets] blocked {payload.get('toolName')}: {pattern}", file=sys.stderr)
        sys.exit(2)
    sys.exit(0)


if __name__ == "__main__":
    main()
