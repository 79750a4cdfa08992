"""Console rendering of a run's progress."""

from __future__ import annotations

import sys
from typing import Callable, Optional, TextIO

from .orchestrator.log_store import LogStore
from .orchestrator.models import CompletionPayload, LogEntry, ProgressSnapshot

PROMPT_PREVIEW_CHARS = 80

STATUS_ICONS = {
    "running": "⏳",
    "completed": "✅",
    "failed": "❌",
}


def preview_prompt(prompt: str, limit: int = PROMPT_PREVIEW_CHARS) -> str:
    """截断过长的 prompt 用于展示"""
    return prompt[:limit] + ("..." if len(prompt) > limit else "")


class ConsoleProgressView:
    """Prints one line per log store event. Holds no run state of its own."""

    def __init__(
        self,
        snapshot_source: Callable[[], ProgressSnapshot],
        stream: Optional[TextIO] = None,
    ) -> None:
        self.snapshot_source = snapshot_source
        self.stream = stream or sys.stdout
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self, log_store: LogStore) -> None:
        self._unsubscribe = log_store.subscribe(self._on_event)

    def detach(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _write(self, line: str = "") -> None:
        self.stream.write(line + "\n")
        self.stream.flush()

    def _on_event(self, event: str, entry: Optional[LogEntry], store: LogStore) -> None:
        snapshot = self.snapshot_source()
        if event == "reset":
            self._write()
            self._write("=" * 60)
            self._write("✨ Working some magic on your request")
            self._write(f'   "{preview_prompt(snapshot.prompt)}"')
            self._write("=" * 60)
            return
        if entry is None:
            return

        icon = STATUS_ICONS.get(entry.status.value, "•")
        counter = f"[{snapshot.display_step}/{snapshot.total_steps}]"
        if event == "appended":
            stamp = entry.created_at.strftime("%H:%M:%S")
            self._write(f"{counter} {icon} {entry.message}  ({stamp})")
            if entry.detail:
                self._write(f"       {entry.detail}")
        elif event == "failed":
            self._write(f"{counter} {icon} {entry.message}: {entry.error}")
        else:
            stamp = entry.finished_at.strftime("%H:%M:%S") if entry.finished_at else ""
            self._write(f"{counter} {icon} done  ({stamp})")


def render_result(payload: CompletionPayload, stream: Optional[TextIO] = None) -> None:
    """Print the result screen."""
    out = stream or sys.stdout
    lines = [
        "",
        "=" * 60,
        "🎉 Deployment complete! Your service is running in the cloud.",
        "=" * 60,
        f"🌐 Live URL:     {payload.live_url}",
        f"📦 Source repo:  {payload.source_repo}",
        f"⚙️  Config repo:  {payload.config_repo}",
        f"🧩 Services:     {', '.join(payload.services) if payload.services else '-'}",
        f"📊 Status:       {payload.status}",
        "=" * 60,
    ]
    out.write("\n".join(lines) + "\n")
    out.flush()
