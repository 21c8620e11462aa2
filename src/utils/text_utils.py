"""
Text utility functions for transcript cleanup.
"""
import re
from typing import Optional

# Passes over the text before giving up on nested / repeated fragments
MAX_FRAGMENT_PASSES = 5

# Start of a JSON object whose first key looks like a tool call
_FRAGMENT_START = re.compile(
    r'\{\s*"(?:type|name|function|id|toolCalls|tool_calls|toolCallId|tool_call_id|arguments)"\s*:'
)

# Keys that only tool-call objects carry
_TOOL_KEYS = re.compile(
    r'"(?:function|arguments|toolCalls|tool_calls|toolCallId|tool_call_id|toolCallList)"\s*:'
)

# Function-call syntax the model sometimes speaks out: transferCall(...)
_CALL_SYNTAX = re.compile(
    r'\b(?:functions\.)?[a-z]+(?:[A-Z_][a-zA-Z]*)+\s*\(\s*\{[^()]*\}\s*\)'
)


def _balanced_end(text: str, start: int) -> Optional[int]:
    """
    Index just past the brace that closes the one at `start`.

    Braces inside JSON strings are ignored. Returns None when unbalanced.
    """
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def _remove_fragments_once(text: str) -> tuple[str, bool]:
    pieces = []
    position = 0
    removed = False
    for match in _FRAGMENT_START.finditer(text):
        start = match.start()
        if start < position:
            continue  # inside a fragment that was already removed
        end = _balanced_end(text, start)
        if end is None:
            continue
        if not _TOOL_KEYS.search(text, start, end):
            continue
        pieces.append(text[position:start])
        position = end
        removed = True
    pieces.append(text[position:])
    return "".join(pieces), removed


def strip_tool_call_fragments(message: str) -> str:
    """
    Remove tool-call JSON and function-call syntax embedded in spoken text.

    VAPI sometimes leaks the assistant's tool calls into message content, e.g.
    'Let me check {"type": "function", "function": {"name": "checkAvailability", ...}}'.
    Fragments are found with a brace-balanced scan, repeated until a pass
    removes nothing (bounded by MAX_FRAGMENT_PASSES).

    Args:
        message: Message text as sent by the platform

    Returns:
        str: Cleaned message without tool call syntax
    """
    if not message:
        return ""

    cleaned = message
    for _ in range(MAX_FRAGMENT_PASSES):
        cleaned, removed = _remove_fragments_once(cleaned)
        before = cleaned
        cleaned = _CALL_SYNTAX.sub("", cleaned)
        # Brackets left behind by a removed list of tool calls
        cleaned = re.sub(r'\[\s*(?:,\s*)*\]', "", cleaned)
        if not removed and cleaned == before:
            break

    # Clean up any resulting double spaces or leading/trailing whitespace
    cleaned = re.sub(r'[ \t]{2,}', " ", cleaned)
    cleaned = re.sub(r'\n{3,}', "\n\n", cleaned)
    return cleaned.strip()
