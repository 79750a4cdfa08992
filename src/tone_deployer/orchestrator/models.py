"""Data models for the orchestrator module."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple


class EntryStatus(str, Enum):
    """日志条目状态"""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"         # 仅在注入 step_runner 时可能出现


class SequencerPhase(str, Enum):
    """编排器所处阶段"""
    IDLE = "idle"
    RUNNING = "running"           # 步骤执行中（等待 duration）
    SETTLING = "settling"         # 步骤已完成，等待下一步开始
    COMPLETING = "completing"     # 全部完成，等待回调
    COMPLETED = "completed"       # 回调已触发
    FAILED = "failed"             # 因步骤失败而终止

    @property
    def is_live(self) -> bool:
        """是否有进行中的运行（存在待触发的定时器）"""
        return self in (
            SequencerPhase.RUNNING,
            SequencerPhase.SETTLING,
            SequencerPhase.COMPLETING,
        )


class ReactivationPolicy(str, Enum):
    """运行中再次 activate 时的处理策略"""
    RESTART = "restart"   # 取消当前运行并重新开始
    REJECT = "reject"     # 抛出 InvalidReactivation


class FailurePolicy(str, Enum):
    """步骤失败时的处理策略"""
    HALT = "halt"
    CONTINUE = "continue"


@dataclass(frozen=True)
class StepDefinition:
    """A single step of the deployment catalog."""
    message: str
    detail: str
    duration_ms: int
    icon: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepDefinition":
        """从字典创建"""
        return cls(
            message=data["message"],
            detail=data.get("detail", ""),
            duration_ms=int(data.get("duration_ms", 0)),
            icon=data.get("icon"),
        )


@dataclass
class LogEntry:
    """Observable record of one step within a run.

    Only `status`, `finished_at` and `error` change after creation.
    """
    id: str
    step_index: int
    message: str
    detail: str
    status: EntryStatus = EntryStatus.RUNNING
    created_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def for_step(cls, index: int, step: StepDefinition) -> "LogEntry":
        """根据步骤定义创建 running 条目"""
        return cls(
            id=f"step-{index}",
            step_index=index,
            message=step.message,
            detail=step.detail,
        )

    @property
    def is_running(self) -> bool:
        return self.status == EntryStatus.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典用于JSON序列化"""
        return {
            "id": self.id,
            "step_index": self.step_index,
            "message": self.message,
            "detail": self.detail,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
        }


@dataclass
class StepOutcome:
    """步骤执行结果"""
    succeeded: bool
    error: Optional[str] = None

    @classmethod
    def success(cls) -> "StepOutcome":
        """创建成功结果"""
        return cls(succeeded=True)

    @classmethod
    def failure(cls, error: str) -> "StepOutcome":
        """创建失败结果"""
        return cls(succeeded=False, error=error)


@dataclass
class CompletionPayload:
    """Result handed to the result screen once a run finishes."""
    live_url: str
    source_repo: str
    config_repo: str
    services: List[str] = field(default_factory=list)
    status: str = "deployed"

    def to_dict(self) -> Dict[str, Any]:
        """Consumer-facing shape (camelCase keys)."""
        return {
            "liveUrl": self.live_url,
            "sourceRepo": self.source_repo,
            "configRepo": self.config_repo,
            "services": list(self.services),
            "status": self.status,
        }


@dataclass(frozen=True)
class ProgressSnapshot:
    """Read-only view of the sequencer for renderers."""
    phase: SequencerPhase
    current_step_index: int
    total_steps: int
    entries: Tuple[LogEntry, ...] = ()
    prompt: str = ""

    @property
    def display_step(self) -> int:
        """1-based step counter shown as "n / total".

        Follows the newest visible entry, so it does not move ahead while
        the sequencer is settling between steps.
        """
        if self.total_steps == 0:
            return 0
        return min(max(len(self.entries), 1), self.total_steps)
