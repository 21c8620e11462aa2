"""
Transcript reconstruction - ordered, role-tagged turns from whatever VAPI sent.

Accepted input:
- a list of message objects (artifact.messages / conversation-update messages),
  mixed with system prompts and tool-call objects that are dropped
- a transcript string with "User:" / "AI:" / "[Bot]" style markers
- a transcript string with no markers at all (degraded, best effort)

Role classification for unlabelled text is a heuristic, not a guarantee.
Reconstruction never raises.
"""
import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from src.models.call import ConversationTurn, TurnRole
from src.utils.text_utils import strip_tool_call_fragments

logger = logging.getLogger(__name__)

CALLER_ROLES = {"user", "customer", "caller", "human", "patient", "client"}
ASSISTANT_ROLES = {"assistant", "bot", "ai", "agent", "receptionist"}
TOOL_ROLES = {"tool", "tool_calls", "tool_call", "tool_call_result", "tool_calls_result", "function", "function_call"}
SKIPPED_ROLES = {"system"}

_TOOL_TYPES = {"function", "tool", "tool-calls", "tool_calls", "tool-call", "tool_call", "function_call", "tool-call-result"}
_TOOL_KEYS = ("toolCalls", "tool_calls", "toolCallId", "tool_call_id", "function", "function_call")
_TEXT_KEYS = ("message", "content", "text", "transcript")
_SPEAKER_KEYS = ("role", "speaker")

_ROLE_WORDS = r"user|customer|caller|human|patient|client|bot|assistant|ai|agent|receptionist"

# "User: hi", "AI : hello", "[Bot] hello", "[User]: hi"
_LINE_MARKER = re.compile(
    r"^\s*(?:\[(?P<bracketed>" + _ROLE_WORDS + r")\]\s*:?|(?P<plain>" + _ROLE_WORDS + r")\s*:)\s*(?P<text>.*)$",
    re.IGNORECASE,
)

# Markers in the middle of a line - capitalized only, "the bot: ..." is prose
_INLINE_MARKER = re.compile(
    r"\s+(?=(?:\[(?:User|Customer|Caller|Bot|Assistant|AI|Agent)\]|(?:User|Customer|Caller|Bot|Assistant|AI|Agent):))"
)

# First line said by the assistant: greeting or offer of help
_GREETING = re.compile(
    r"\b(?:thanks?\s+(?:you\s+)?for\s+calling|how\s+(?:can|may|could)\s+I\s+(?:help|assist)|"
    r"what\s+can\s+I\s+do\s+for\s+you|you'?ve\s+reached|welcome\s+to|"
    r"good\s+(?:morning|afternoon|evening)|hello|this\s+is\s+\w+\s+(?:from|at|with))\b",
    re.IGNORECASE,
)


class RoleState(str, Enum):
    UNKNOWN = "unknown"
    CALLER = "caller"
    ASSISTANT = "assistant"


class RoleStateMachine:
    """
    Assigns roles to lines while scanning a transcript.

    Transitions:
    - labelled line        -> state := label, new turn
    - unlabelled, UNKNOWN  -> ASSISTANT if greeting/offer of help else CALLER, new turn
    - unlabelled, known    -> same state, appended to the current turn
                              (alternate mode: opposite state, new turn)
    """

    def __init__(self, alternate: bool = False):
        self.state = RoleState.UNKNOWN
        self.alternate = alternate

    def feed(self, label: Optional[TurnRole], text: str) -> tuple[TurnRole, bool]:
        """Return (role for this line, whether it starts a new turn)."""
        if label is not None:
            self.state = RoleState(label.value)
            return label, True

        if self.state == RoleState.UNKNOWN:
            self.state = RoleState.ASSISTANT if _GREETING.search(text) else RoleState.CALLER
            return TurnRole(self.state.value), True

        if self.alternate:
            self.state = RoleState.CALLER if self.state == RoleState.ASSISTANT else RoleState.ASSISTANT
            return TurnRole(self.state.value), True

        return TurnRole(self.state.value), False


def map_role(value: Any) -> Optional[TurnRole]:
    """Platform speaker tag -> TurnRole (None when unknown)."""
    if not isinstance(value, str):
        return None
    role = value.strip().lower()
    if role in CALLER_ROLES:
        return TurnRole.CALLER
    if role in ASSISTANT_ROLES:
        return TurnRole.ASSISTANT
    return None


def is_tool_call(item: dict) -> bool:
    """Detect tool/function-call entries by role, type or function fields."""
    role = item.get("role")
    if isinstance(role, str) and role.strip().lower() in TOOL_ROLES:
        return True
    item_type = item.get("type")
    if isinstance(item_type, str) and item_type.strip().lower() in _TOOL_TYPES:
        return True
    if any(item.get(key) for key in _TOOL_KEYS):
        return True
    if "name" in item and "arguments" in item:
        return True
    return False


def _content_text(value: Any) -> str:
    """Message content may be a string or a list of {"type": "text", "text": ...} parts."""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts = []
        for part in value:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return " ".join(parts)
    return ""


def _item_text(item: dict) -> str:
    for key in _TEXT_KEYS:
        text = _content_text(item.get(key))
        if text.strip():
            return text
    return ""


def _timestamp(value: Any) -> Optional[str]:
    """VAPI sends Unix ms; keep strings as they are."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            seconds = value / 1000 if value > 1e11 else value
            return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
        except (OverflowError, OSError, ValueError):
            return None
    return str(value)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(value) if isinstance(value, str) and value.strip() else None
    except ValueError:
        return None


def _from_messages(items: list) -> list[ConversationTurn]:
    turns: list[ConversationTurn] = []
    machine = RoleStateMachine()

    for item in items:
        if isinstance(item, str):
            item = {"message": item}
        if not isinstance(item, dict):
            continue
        if is_tool_call(item):
            continue
        speaker = next((item.get(key) for key in _SPEAKER_KEYS if item.get(key)), None)
        if isinstance(speaker, str) and speaker.strip().lower() in SKIPPED_ROLES:
            continue

        text = strip_tool_call_fragments(_item_text(item))
        if not text:
            continue

        role, new_turn = machine.feed(map_role(speaker), text)
        if not new_turn and turns:
            turns[-1].text = f"{turns[-1].text} {text}"
            continue

        turns.append(ConversationTurn(
            turn_number=len(turns) + 1,
            role=role,
            text=text,
            timestamp=_timestamp(item.get("time") or item.get("timestamp")),
            seconds_from_start=_number(item.get("secondsFromStart")),
            confidence=_number(item.get("confidence")),
        ))
    return turns


def _split_lines(transcript: str) -> list[str]:
    text = _INLINE_MARKER.sub("\n", transcript)
    return [line.strip() for line in text.splitlines() if line.strip()]


def _from_string(transcript: str) -> list[ConversationTurn]:
    lines = _split_lines(transcript)
    parsed = []
    for line in lines:
        match = _LINE_MARKER.match(line)
        if match:
            label = map_role(match.group("bracketed") or match.group("plain"))
            parsed.append((label, match.group("text")))
        else:
            parsed.append((None, line))

    has_markers = any(label is not None for label, _ in parsed)
    # No markers anywhere: alternate speakers as a last resort
    machine = RoleStateMachine(alternate=not has_markers)

    turns: list[ConversationTurn] = []
    for label, raw_text in parsed:
        text = strip_tool_call_fragments(raw_text)
        if not text:
            continue
        role, new_turn = machine.feed(label, text)
        if not new_turn and turns:
            turns[-1].text = f"{turns[-1].text} {text}"
            continue
        turns.append(ConversationTurn(turn_number=len(turns) + 1, role=role, text=text))
    return turns


def reconstruct(raw: Any) -> list[ConversationTurn]:
    """
    Convert a message list or transcript string into ConversationTurns.

    Turns keep the source order; turn_number counts retained turns from 1.
    Unparseable input yields [] (or one caller turn with the raw text).
    """
    try:
        if isinstance(raw, list):
            return _from_messages(raw)
        if isinstance(raw, str):
            return _from_string(raw)
        return []
    except Exception as e:
        logger.warning(f"Transcript reconstruction failed, falling back: {e}")
        if isinstance(raw, str) and raw.strip():
            return [ConversationTurn(turn_number=1, role=TurnRole.CALLER, text=raw.strip())]
        return []


def reconstruct_call(messages: Any, transcript: Optional[str]) -> list[ConversationTurn]:
    """Prefer the structured message list; fall back to the transcript string."""
    turns = reconstruct(messages) if messages else []
    if not turns and transcript:
        turns = reconstruct(transcript)
    return turns


def render_transcript(turns: list[ConversationTurn]) -> str:
    """Turns back to "User: ... / AI: ..." lines."""
    labels = {TurnRole.CALLER: "User", TurnRole.ASSISTANT: "AI"}
    return "\n".join(f"{labels[turn.role]}: {turn.text}" for turn in turns)
