"""Completion payload factories.

No backend is wired up yet, so the default factory returns configured
placeholder values. Swap in another factory to report real results.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence

from ..config import ResultConfig
from .models import CompletionPayload, EntryStatus, LogEntry

# factory(prompt, entries) -> CompletionPayload
PayloadFactory = Callable[[str, Sequence[LogEntry]], CompletionPayload]


class StaticPayloadFactory:
    """Builds the same payload for every run, from `ResultConfig`."""

    DEGRADED_STATUS = "degraded"

    def __init__(self, result_config: Optional[ResultConfig] = None) -> None:
        self.result_config = result_config or ResultConfig()

    def __call__(self, prompt: str, entries: Sequence[LogEntry]) -> CompletionPayload:
        cfg = self.result_config
        failed: List[LogEntry] = [e for e in entries if e.status == EntryStatus.FAILED]
        return CompletionPayload(
            live_url=cfg.live_url,
            source_repo=cfg.source_repo,
            config_repo=cfg.config_repo,
            services=list(cfg.services),
            status=self.DEGRADED_STATUS if failed else cfg.status,
        )
