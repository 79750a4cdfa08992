"""Configuration loading utilities for tone-deployer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = Path("config/default_config.json")

# 结果页默认值：尚无真实后端时使用的占位结果
RESULT_DEFAULTS = {
    "live_url": "https://chat.my-app.com",
    "source_repo": "https://github.com/tone-platform/my-chat-app",
    "config_repo": "https://github.com/tone-platform/my-chat-app-config",
    "services": ["Frontend", "Backend", "Redis", "Database"],
    "status": "deployed",
}


@dataclass
class SequencerConfig:
    """Timing and policy settings for the step sequencer."""

    settle_delay_ms: int = 500            # 步骤完成到下一步开始之间的停顿
    completion_delay_ms: int = 1000       # 最后一步完成到回调之间的停顿
    reactivation_policy: str = "restart"  # "restart" | "reject"
    failure_policy: str = "halt"          # "halt" | "continue"
    strict_log_store: bool = True
    time_scale: float = 1.0               # 步骤时长倍率，0 表示立即完成


@dataclass
class ResultConfig:
    """Values used to synthesize the completion payload."""

    live_url: str = RESULT_DEFAULTS["live_url"]
    source_repo: str = RESULT_DEFAULTS["source_repo"]
    config_repo: str = RESULT_DEFAULTS["config_repo"]
    services: List[str] = field(default_factory=lambda: list(RESULT_DEFAULTS["services"]))
    status: str = RESULT_DEFAULTS["status"]


@dataclass
class LoggingConfig:
    """Logging and run-log settings."""

    level: str = "INFO"
    log_dir: str = "deploy_logs"
    write_run_log: bool = True


@dataclass
class AppConfig:
    """Top-level configuration."""

    sequencer: SequencerConfig = field(default_factory=SequencerConfig)
    result: ResultConfig = field(default_factory=ResultConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    # None 表示使用内置的默认步骤目录
    steps: Optional[List[Dict[str, Any]]] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        sequencer_payload = _strip_comments(payload.get("sequencer", {}) or {})
        result_payload = _strip_comments(payload.get("result", {}) or {})
        logging_payload = _strip_comments(payload.get("logging", {}) or {})
        steps = payload.get("steps")

        return cls(
            sequencer=SequencerConfig(
                **{**SequencerConfig().__dict__, **sequencer_payload}
            ),
            result=ResultConfig(**{**ResultConfig().__dict__, **result_payload}),
            logging=LoggingConfig(**{**LoggingConfig().__dict__, **logging_payload}),
            steps=list(steps) if steps is not None else None,
        )


def _strip_comments(section: Dict[str, Any]) -> Dict[str, Any]:
    """过滤掉以下划线开头的注释字段"""
    return {k: v for k, v in section.items() if not k.startswith("_")}


def _apply_env_overrides(config: AppConfig) -> AppConfig:
    env_settle = os.getenv("TONE_DEPLOYER_SETTLE_DELAY_MS")
    if env_settle:
        config.sequencer.settle_delay_ms = int(env_settle)

    env_completion = os.getenv("TONE_DEPLOYER_COMPLETION_DELAY_MS")
    if env_completion:
        config.sequencer.completion_delay_ms = int(env_completion)

    env_scale = os.getenv("TONE_DEPLOYER_TIME_SCALE")
    if env_scale:
        config.sequencer.time_scale = float(env_scale)

    env_policy = os.getenv("TONE_DEPLOYER_REACTIVATION_POLICY")
    if env_policy:
        config.sequencer.reactivation_policy = env_policy

    env_failure = os.getenv("TONE_DEPLOYER_FAILURE_POLICY")
    if env_failure:
        config.sequencer.failure_policy = env_failure.lower()

    env_strict = os.getenv("TONE_DEPLOYER_STRICT_LOG_STORE")
    if env_strict:
        config.sequencer.strict_log_store = env_strict.lower() in ["1", "true", "yes", "on"]

    env_level = os.getenv("TONE_DEPLOYER_LOG_LEVEL")
    if env_level:
        config.logging.level = env_level.upper()

    env_log_dir = os.getenv("TONE_DEPLOYER_LOG_DIR")
    if env_log_dir:
        config.logging.log_dir = env_log_dir

    env_live_url = os.getenv("TONE_DEPLOYER_LIVE_URL")
    if env_live_url:
        config.result.live_url = env_live_url

    return config


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    An explicit `path` must exist. Without one, the default config file is
    used when present, otherwise built-in defaults apply.

    Environment variables (higher priority than config file):
    - TONE_DEPLOYER_SETTLE_DELAY_MS: Pause between steps
    - TONE_DEPLOYER_COMPLETION_DELAY_MS: Pause before the completion callback
    - TONE_DEPLOYER_TIME_SCALE: Multiplier applied to step durations
    - TONE_DEPLOYER_REACTIVATION_POLICY: "restart" or "reject"
    - TONE_DEPLOYER_FAILURE_POLICY: "halt" or "continue"
    - TONE_DEPLOYER_STRICT_LOG_STORE: "true"/"false", unknown entry ids raise or only warn
    - TONE_DEPLOYER_LOG_LEVEL: Logging level name
    - TONE_DEPLOYER_LOG_DIR: Directory for JSON run logs
    - TONE_DEPLOYER_LIVE_URL: Live URL reported in the result
    """

    if path:
        candidate = Path(path)
        if not candidate.is_file():
            raise FileNotFoundError(f"Could not find configuration file: {candidate}")
    else:
        candidate = _DEFAULT_CONFIG_PATH

    if candidate.is_file():
        with candidate.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        config = AppConfig.from_dict(data)
    else:
        config = AppConfig()

    return _apply_env_overrides(config)
