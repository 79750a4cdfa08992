"""JSON mirror of each run, rewritten on every log store event."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..paths import get_logs_dir
from .log_store import LogStore
from .models import CompletionPayload, EntryStatus, LogEntry

logger = logging.getLogger(__name__)

LOG_VERSION = "1.0"


class RunLogWriter:
    """
    运行日志写入器

    订阅 LogStore：reset 时开启新文件，每次条目变更后立即落盘，
    finalize() 时写入结果与统计信息。
    """

    def __init__(
        self,
        log_store: LogStore,
        log_dir: Optional[Union[str, Path]] = None,
        prompt_source=None,
    ) -> None:
        self.log_dir = get_logs_dir(log_dir)
        # 返回当前 prompt 的可调用对象（通常是 lambda: sequencer.prompt）
        self.prompt_source = prompt_source or (lambda: "")
        self.run_log: Dict[str, Any] = {}
        self.current_log_file: Optional[Path] = None
        self._run_counter = 0
        self._unsubscribe = log_store.subscribe(self._on_event)

    def close(self) -> None:
        self._unsubscribe()

    @property
    def status(self) -> Optional[str]:
        return self.run_log.get("status")

    def _on_event(self, event: str, entry: Optional[LogEntry], store: LogStore) -> None:
        if event == "reset":
            if self.status == "running":
                self.finalize("abandoned")
            self._init_log()
            return

        if not self.current_log_file:
            # 没有经过 reset 的写入（直接使用 LogStore 的场景）
            self._init_log()

        if event == "appended" and entry is not None:
            self.run_log["steps"].append(entry.to_dict())
        elif entry is not None:
            for i, step_log in enumerate(self.run_log["steps"]):
                if step_log["id"] == entry.id:
                    self.run_log["steps"][i] = entry.to_dict()
                    break
        self._save_log()

    def _init_log(self) -> None:
        """初始化日志文件"""
        self._run_counter += 1
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"deploy_{timestamp}_{self._run_counter:03d}.json"
        self.current_log_file = self.log_dir / filename

        self.run_log = {
            "version": LOG_VERSION,
            "prompt": self.prompt_source(),
            "start_time": datetime.now().isoformat(),
            "end_time": None,
            "status": "running",
            "steps": [],
            "result": None,
        }
        self._save_log()
        logger.debug("📝 Logging to: %s", self.current_log_file)

    def finalize(self, status: str, payload: Optional[CompletionPayload] = None) -> None:
        """完成日志记录"""
        if not self.current_log_file:
            return
        self.run_log["end_time"] = datetime.now().isoformat()
        self.run_log["status"] = status
        if payload is not None:
            self.run_log["result"] = payload.to_dict()

        steps = self.run_log.get("steps", [])
        self.run_log["summary"] = {
            "total_steps": len(steps),
            "completed_steps": sum(
                1 for s in steps if s.get("status") == EntryStatus.COMPLETED.value
            ),
            "failed_steps": sum(
                1 for s in steps if s.get("status") == EntryStatus.FAILED.value
            ),
            "duration_seconds": self._calculate_duration(),
        }
        self._save_log()
        logger.info("📄 Log saved to: %s", self.current_log_file)

    def _calculate_duration(self) -> float:
        """计算执行时长"""
        start = datetime.fromisoformat(self.run_log["start_time"])
        end = datetime.fromisoformat(self.run_log["end_time"])
        return (end - start).total_seconds()

    def _save_log(self) -> None:
        """保存日志到文件"""
        if self.current_log_file:
            with open(self.current_log_file, "w", encoding="utf-8") as f:
                json.dump(self.run_log, f, indent=2, ensure_ascii=False)
