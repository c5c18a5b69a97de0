"""Per-provider store of dynamically fetched model lists."""

from __future__ import annotations

from collections import OrderedDict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chatrelay.providers.base import ModelInfo


class DynamicModelCache:
    """
    Model lists keyed by credential-context fingerprint.

    Entries are replaced whole. Once ``max_entries`` is reached the oldest
    entry is evicted. Concurrent turns may both miss and both fetch; the last
    write wins, which is fine because fetch results are idempotent.
    """

    def __init__(self, max_entries: int = 64) -> None:
        self.max_entries = max(1, max_entries)
        self._entries: OrderedDict[str, tuple[ModelInfo, ...]] = OrderedDict()

    def get(self, key: str) -> list[ModelInfo] | None:
        models = self._entries.get(key)
        return list(models) if models is not None else None

    def set(self, key: str, models: list[ModelInfo]) -> None:
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_entries:
            self._entries.popitem(last=False)
        self._entries[key] = tuple(models)

    def clear(self) -> None:
        self._entries = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)
