"""Path constants for tone-deployer.

- deploy_logs/   # JSON mirror of every run
"""

from pathlib import Path
from typing import Optional, Union

LOGS_DIR = Path("deploy_logs")  # 运行日志目录
LOG_FILE_PATTERN = "deploy_*.json"


def get_logs_dir(log_dir: Optional[Union[str, Path]] = None) -> Path:
    """获取运行日志目录路径（按需创建）."""
    path = Path(log_dir) if log_dir else LOGS_DIR
    path.mkdir(parents=True, exist_ok=True)
    return path


def list_run_logs(log_dir: Optional[Union[str, Path]] = None) -> list:
    """列出运行日志，最新的在前."""
    path = Path(log_dir) if log_dir else LOGS_DIR
    if not path.exists():
        return []
    return sorted(path.glob(LOG_FILE_PATTERN), key=lambda p: p.stat().st_mtime, reverse=True)
