"""Append-only store of log entries for the current run."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterator, List, Optional, Tuple

from .errors import EntryAlreadyRunning, EntryNotFound
from .models import EntryStatus, LogEntry

logger = logging.getLogger(__name__)

# (event, entry, store)；event 取值: "reset" | "appended" | "completed" | "failed"
StoreObserver = Callable[[str, Optional[LogEntry], "LogStore"], None]


class LogStore:
    """
    日志存储

    每次运行开始时清空，之后只追加；条目创建后只允许修改状态。
    观察者在每次变更时被同步通知。
    """

    def __init__(self, strict: bool = True) -> None:
        self.strict = strict
        self._entries: List[LogEntry] = []
        self._observers: List[StoreObserver] = []

    def subscribe(self, observer: StoreObserver) -> Callable[[], None]:
        """注册观察者，返回取消注册的函数"""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def reset(self) -> None:
        self._entries.clear()
        self._notify("reset", None)

    def append(self, entry: LogEntry) -> None:
        """Add a new running entry.

        Raises:
            EntryAlreadyRunning: another entry is still running
            ValueError: the entry is not in running state
        """
        if entry.status != EntryStatus.RUNNING:
            raise ValueError(f"New entries must be running, got {entry.status.value}")
        running = self.running_entry()
        if running is not None:
            raise EntryAlreadyRunning(running.id, entry.id)
        self._entries.append(entry)
        self._notify("appended", entry)

    def mark_completed(self, entry_id: str) -> Optional[LogEntry]:
        return self._finish(entry_id, EntryStatus.COMPLETED, None)

    def mark_failed(self, entry_id: str, error: str) -> Optional[LogEntry]:
        return self._finish(entry_id, EntryStatus.FAILED, error)

    def _finish(
        self,
        entry_id: str,
        status: EntryStatus,
        error: Optional[str],
    ) -> Optional[LogEntry]:
        """更新条目状态；未找到时按 strict 决定抛错或忽略"""
        entry = self.get(entry_id)
        if entry is None:
            if self.strict:
                raise EntryNotFound(entry_id)
            logger.warning("Ignoring status update for unknown entry %s", entry_id)
            return None
        entry.status = status
        entry.finished_at = datetime.now()
        entry.error = error
        self._notify(status.value, entry)
        return entry

    def get(self, entry_id: str) -> Optional[LogEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def running_entry(self) -> Optional[LogEntry]:
        for entry in self._entries:
            if entry.is_running:
                return entry
        return None

    @property
    def entries(self) -> Tuple[LogEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(tuple(self._entries))

    def _notify(self, event: str, entry: Optional[LogEntry]) -> None:
        for observer in list(self._observers):
            observer(event, entry, self)
