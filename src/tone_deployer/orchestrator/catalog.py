"""Fixed, ordered catalog of deployment steps."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List, Tuple

from .models import StepDefinition

DEFAULT_STEPS: Tuple[StepDefinition, ...] = (
    StepDefinition(
        message="Analyzing requirements...",
        detail="Interpreting the natural-language request with Google Gemini",
        duration_ms=2000,
        icon="zap",
    ),
    StepDefinition(
        message="Blueprint (YAML) generated",
        detail="Kubernetes + Istio + Vault manifests generated automatically",
        duration_ms=3000,
        icon="terminal",
    ),
    StepDefinition(
        message="Committing to Git repository...",
        detail="Storing the infrastructure blueprint in the config repo",
        duration_ms=2000,
        icon="git-branch",
    ),
    StepDefinition(
        message="Argo CD started syncing",
        detail="GitOps-driven deployment triggered",
        duration_ms=4000,
        icon="server",
    ),
    StepDefinition(
        message="Deploying to Kubernetes cluster...",
        detail="Creating Pod, Service and Ingress resources",
        duration_ms=3000,
        icon="server",
    ),
    StepDefinition(
        message="Applying Istio security policies...",
        detail="mTLS + AuthorizationPolicy configured automatically",
        duration_ms=2500,
        icon="shield",
    ),
    StepDefinition(
        message="Connecting domain and issuing SSL certificate...",
        detail="Let's Encrypt certificate + Gateway configuration",
        duration_ms=3000,
        icon="globe",
    ),
    StepDefinition(
        message="Deployment complete! 🎉",
        detail="All services are up and running",
        duration_ms=1000,
        icon="check-circle",
    ),
)


class StepCatalog:
    """Immutable ordered list of step definitions."""

    def __init__(self, steps: Iterable[StepDefinition] = DEFAULT_STEPS) -> None:
        self._steps: Tuple[StepDefinition, ...] = tuple(steps)
        for index, step in enumerate(self._steps):
            if step.duration_ms < 0:
                raise ValueError(
                    f"Step {index} ({step.message!r}) has negative duration: {step.duration_ms}"
                )

    @classmethod
    def from_dicts(cls, payload: List[Dict[str, Any]]) -> "StepCatalog":
        """从配置中的字典列表构建"""
        return cls(StepDefinition.from_dict(item) for item in payload)

    def __len__(self) -> int:
        return len(self._steps)

    def __getitem__(self, index: int) -> StepDefinition:
        return self._steps[index]

    def __iter__(self) -> Iterator[StepDefinition]:
        return iter(self._steps)

    @property
    def total_duration_ms(self) -> int:
        return sum(step.duration_ms for step in self._steps)

    def scaled(self, factor: float) -> "StepCatalog":
        """Return a copy whose durations are multiplied by `factor`."""
        if factor == 1.0:
            return self
        return StepCatalog(
            StepDefinition(
                message=step.message,
                detail=step.detail,
                duration_ms=int(step.duration_ms * factor),
                icon=step.icon,
            )
            for step in self._steps
        )
