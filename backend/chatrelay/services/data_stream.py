"""Data stream protocol parts emitted by the chat orchestrator."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

TEXT = "0"
REASONING = "g"
DATA = "2"
ERROR = "3"
ANNOTATION = "8"
TOOL_CALL = "9"
FINISH_MESSAGE = "d"
FINISH_STEP = "e"
START_STEP = "f"


@dataclass(frozen=True)
class StreamPart:
    """One ``code:payload`` record of the data stream."""

    code: str
    value: Any

    def to_line(self) -> str:
        return f"{self.code}:{json.dumps(self.value, separators=(',', ':'), ensure_ascii=False)}\n"


def text_part(text: str) -> StreamPart:
    return StreamPart(TEXT, text)


def reasoning_part(text: str) -> StreamPart:
    return StreamPart(REASONING, text)


def data_part(*records: dict[str, Any]) -> StreamPart:
    return StreamPart(DATA, list(records))


def annotation_part(*annotations: dict[str, Any]) -> StreamPart:
    return StreamPart(ANNOTATION, list(annotations))


def error_part(message: str) -> StreamPart:
    return StreamPart(ERROR, message)


def progress_record(label: str, status: str, order: int, message: str) -> dict[str, Any]:
    return {
        "type": "progress",
        "label": label,
        "status": status,
        "order": order,
        "message": message,
    }
