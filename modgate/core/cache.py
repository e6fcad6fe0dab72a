"""Per-session analysis result cache."""

from __future__ import annotations

import hashlib
import re
from collections import OrderedDict

from modgate.core.models import AnalysisRecord


def normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", text.strip().lower())


def fingerprint(content: str, content_type: str, model_ids: list[str]) -> str:
    material = "\x1f".join([normalize_text(content), content_type.strip().lower(), ",".join(sorted(model_ids))])
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class ResultCache:
    """LRU keyed by content fingerprint; entries live until the session stops."""

    def __init__(self, max_entries: int = 1000) -> None:
        self.max_entries = max(1, int(max_entries))
        self._entries: OrderedDict[str, AnalysisRecord] = OrderedDict()

    def get(self, key: str) -> AnalysisRecord | None:
        record = self._entries.get(key)
        if record is None:
            return None
        self._entries.move_to_end(key)
        return record

    def put(self, key: str, record: AnalysisRecord) -> None:
        # 降级结果不缓存，下次仍然重新调用模型
        if record.degraded or record.cached:
            return
        self._entries[key] = record
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
