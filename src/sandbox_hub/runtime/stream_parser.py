"""Incremental NDJSON handling for agent CLI ``--output-format stream-json`` output."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterator


STREAM_EVENT_DELTA = "content_block_delta"
STREAM_EVENT_ASSISTANT = "assistant"
STREAM_EVENT_RESULT = "result"


@dataclass(frozen=True)
class AgentResult:
    result: str
    session_id: str


@dataclass(frozen=True)
class StreamEffect:
    text: str | None = None
    result: AgentResult | None = None


_NO_EFFECT = StreamEffect()


class LineSplitter:
    """Reassembles newline-terminated records from arbitrarily split byte chunks.

    Whitespace-only lines are dropped. Splitting happens on bytes so a UTF-8
    sequence cut across two chunks still decodes once the line is complete.
    """

    def __init__(self) -> None:
        self._carry = b""

    def feed(self, chunk: bytes) -> Iterator[str]:
        if not chunk:
            return
        data = self._carry + chunk
        *complete, self._carry = data.split(b"\n")
        for raw_line in complete:
            line = raw_line.decode("utf-8", errors="replace")
            if line.strip():
                yield line

    def flush(self) -> Iterator[str]:
        carry, self._carry = self._carry, b""
        line = carry.decode("utf-8", errors="replace")
        if line.strip():
            yield line

    @property
    def pending(self) -> bool:
        return bool(self._carry.strip())


def _assistant_text(record: dict[str, Any]) -> str | None:
    message = record.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if not isinstance(content, list):
        return None
    text = "\n".join(
        block["text"]
        for block in content
        if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
    )
    return text or None


def classify_stream_line(line: str) -> StreamEffect:
    trimmed = line.strip()
    if not trimmed:
        return _NO_EFFECT
    try:
        record = json.loads(trimmed)
    except json.JSONDecodeError:
        return _NO_EFFECT
    if not isinstance(record, dict):
        return _NO_EFFECT

    record_type = record.get("type")
    if record_type == STREAM_EVENT_DELTA:
        delta = record.get("delta")
        text = delta.get("text") if isinstance(delta, dict) else None
        if isinstance(text, str) and text:
            return StreamEffect(text=text)
        return _NO_EFFECT
    if record_type == STREAM_EVENT_ASSISTANT:
        text = _assistant_text(record)
        return StreamEffect(text=text) if text else _NO_EFFECT
    if record_type == STREAM_EVENT_RESULT:
        result_text = record.get("result")
        if not isinstance(result_text, str):
            return _NO_EFFECT
        session_id = record.get("session_id")
        result = AgentResult(result=result_text, session_id=session_id) if isinstance(session_id, str) else None
        return StreamEffect(text=result_text or None, result=result)
    return _NO_EFFECT


def extract_text(line: str) -> str | None:
    return classify_stream_line(line).text
