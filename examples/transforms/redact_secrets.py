#!/usr/bin/env python3
"""Example transform - redact credentials from tool output.

Reads the envelope from HOOKWEAVE_INPUT_FILE and writes it back, with
secrets masked, to HOOKWEAVE_OUTPUT_FILE. Writing nothing (or crashing)
leaves the tool output untouched.

Usage in the hookweave configuration:
{
  "transforms": [{
    "id": "redact",
    "transform": "tool:output",
    "script": "~/.hookweave/transforms/redact_secrets.py",
    "priority": 10
  }]
}
"""
import json
import os
import re

SENSITIVE_PATTERNS = [
    (re.compile(r"AKIA[0-9A-Z]{16}"), "AWS access key"),
    (re.compile(r"gh[pousr]_[A-Za-z0-9]{36,}"), "GitHub token"),
    (re.compile(r"sk-[A-Za-z0-9]{32,}"), "API key"),
    (re.compile(r"-----BEGIN [A-Z ]*PRIVATE KEY-----"), "private key"),
]


def redact(value):
    if isinstance(value, str):
        for pattern, name in SENSITIVE_PATTERNS:
            value = pattern.sub(f"[redacted {name}]", value)
        return value
    if isinstance(value, list):
        return [redact(v) for v in value]
    if isinstance(value, dict):
        return {k: redact(v) for k, v in value.items()}
    return value


def main():
    with open(os.environ["HOOKWEAVE_INPUT_FILE"], encoding="utf-8") as f:
        envelope = json.load(f)
    envelope["data"] = redact(envelope["data"])
    with open(os.environ["HOOKWEAVE_OUTPUT_FILE"], "w", encoding="utf-8") as f:
        json.dump(envelope, f)


if __name__ == "__main__":
    main()
