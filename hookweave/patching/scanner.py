"""
Delimiter-balanced scanner.

Counts raw characters only: string and comment literals are NOT skipped, so a
quote or bracket inside a literal will throw the count off. Call sites only
scan regions that are delimiter-free by construction (argument lists of
known shapes, list literals of command objects).
"""
from hookweave.errors import LocatorMiss


def match_delimiter(text: str, open_offset: int, open_char: str = "(", close_char: str = ")") -> int:
    """
    Return the offset of the closer matching the opener at `open_offset`.

    Raises:
        ValueError: if text[open_offset] is not `open_char`
        LocatorMiss: if the nesting never returns to zero
    """
    if open_offset < 0 or open_offset >= len(text) or text[open_offset] != open_char:
        raise ValueError(f"expected {open_char!r} at offset {open_offset}")

    depth = 1
    for offset in range(open_offset + 1, len(text)):
        char = text[offset]
        if char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                return offset
    raise LocatorMiss(
        "match_delimiter",
        [f"{open_char}...{close_char}"],
        text[open_offset:open_offset + 60],
    )


def pair_all(text: str, open_char: str = "(", close_char: str = ")") -> dict[int, int]:
    """Map every opener offset to its closer, skipping unbalanced openers."""
    pairs = {}
    for offset, char in enumerate(text):
        if char != open_char:
            continue
        try:
            pairs[offset] = match_delimiter(text, offset, open_char, close_char)
        except LocatorMiss:
            continue
    return pairs
