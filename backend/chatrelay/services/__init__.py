"""
Business logic services.

Chat turn orchestration and the client-facing wire encoding.
"""

from chatrelay.services.chat_service import (
    ChatService,
    ChatTurn,
    ContinuationState,
    CumulativeUsage,
    TurnState,
)
from chatrelay.services.data_stream import StreamPart
from chatrelay.services.tools import (
    ContextReducer,
    ContextSelection,
    PassthroughContextReducer,
    PassthroughToolService,
    ToolService,
)
from chatrelay.services.wire import ReasoningWrapTransform, encode_stream

__all__ = [
    "ChatService",
    "ChatTurn",
    "ContextReducer",
    "ContextSelection",
    "ContinuationState",
    "CumulativeUsage",
    "PassthroughContextReducer",
    "PassthroughToolService",
    "ReasoningWrapTransform",
    "StreamPart",
    "ToolService",
    "TurnState",
    "encode_stream",
]
