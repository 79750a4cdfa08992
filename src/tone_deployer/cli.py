"""Command-line interface for tone-deployer."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from .config import AppConfig, load_config
from .orchestrator import SequencingError
from .paths import list_run_logs
from .progress import preview_prompt, render_result
from .utils.logging import get_logger, set_level
from .workflow import AppState, DeploymentWorkflow

logger = get_logger(__name__)

# 提示输入界面上展示的示例请求
EXAMPLE_PROMPTS = (
    "Python으로 만든 실시간 채팅 앱, Redis 사용, 도메인은 chat.my-app.com",
    "Node.js REST API with PostgreSQL database for a todo app",
    "React 대시보드 앱과 Express 백엔드, JWT 인증 포함",
    "Go 마이크로서비스로 이메일 발송 API, SMTP 연결",
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tone-deployer",
        description="Describe a service in plain words and watch it get deployed.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Logging level (DEBUG, INFO, WARNING, ...).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    deploy_parser = subparsers.add_parser(
        "deploy", help="Run a deployment for a natural-language request"
    )
    prompt_group = deploy_parser.add_mutually_exclusive_group()
    prompt_group.add_argument(
        "--prompt", "-p", type=str, default=None,
        help="What to deploy (read from stdin when omitted)"
    )
    prompt_group.add_argument(
        "--example", "-e", type=int, default=None, metavar="N",
        help=f"Use example request N (1-{len(EXAMPLE_PROMPTS)})"
    )
    deploy_parser.add_argument(
        "--dry-run", action="store_true",
        help="Use a virtual clock instead of waiting in real time"
    )
    deploy_parser.add_argument(
        "--no-run-log", action="store_true",
        help="Do not write a JSON run log"
    )

    # logs 子命令 - 查看运行日志
    logs_parser = subparsers.add_parser("logs", help="View deployment run logs")
    logs_parser.add_argument(
        "--list", "-l", action="store_true", dest="list_logs",
        help="List all available logs"
    )
    logs_parser.add_argument(
        "--latest", action="store_true",
        help="Show the latest run log"
    )
    logs_parser.add_argument(
        "--file", "-f", type=str,
        help="Show a specific log file"
    )

    return parser


def example_prompt(number: int) -> str:
    """Return example request `number` (1-based)."""
    if not 1 <= number <= len(EXAMPLE_PROMPTS):
        raise ValueError(
            f"Example must be between 1 and {len(EXAMPLE_PROMPTS)}, got {number}"
        )
    return EXAMPLE_PROMPTS[number - 1]


def _read_prompt(args: argparse.Namespace) -> str:
    if args.example is not None:
        return example_prompt(args.example)
    if args.prompt is not None:
        return args.prompt
    if sys.stdin.isatty():
        print("💡 Try one of these:")
        for i, example in enumerate(EXAMPLE_PROMPTS, 1):
            print(f"  {i}. {example}")
        answer = input("💬 What should we deploy? (text or example number) ").strip()
        if answer.isdigit():
            return example_prompt(int(answer))
        return answer
    return sys.stdin.read().strip()


def handle_deploy_command(args: argparse.Namespace, config: AppConfig) -> int:
    """Handle the deploy subcommand."""
    if args.no_run_log:
        config.logging.write_run_log = False

    try:
        prompt = _read_prompt(args)
    except ValueError as exc:
        print(f"❌ {exc}")
        return 1

    if not prompt.strip():
        print("❌ Nothing to deploy: describe the service you want first")
        return 1

    workflow = DeploymentWorkflow(config=config, dry_run=args.dry_run)
    try:
        result = workflow.run(prompt)
    except KeyboardInterrupt:
        print("\n⚠️ Deployment interrupted")
        workflow.start_new()
        return 130
    finally:
        workflow.close()

    if workflow.state == AppState.COMPLETED and result is not None:
        render_result(result)
        return 0

    if workflow.failed_entry is not None:
        print(f"❌ Deployment failed at: {workflow.failed_entry.message}")
    return 1


def handle_logs_command(args: argparse.Namespace, config: AppConfig) -> int:
    """Handle the logs subcommand."""
    log_dir = Path(config.logging.log_dir)
    log_files = list_run_logs(log_dir)

    if not log_files:
        print("📁 No deployment logs found. Run a deployment first.")
        return 0

    if args.list_logs:
        print(f"📁 Run logs in: {log_dir}\n")
        print(f"{'#':<4} {'Status':<14} {'Steps':<7} {'Time':<20} {'File'}")
        print("-" * 80)
        for i, log_file in enumerate(log_files, 1):
            try:
                with open(log_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                logger.debug("Unreadable log %s: %s", log_file, exc)
                print(f"{i:<4} ❓ {'error':<12} {'?':<7} {'?':<20} {log_file.name}")
                continue
            status = data.get("status", "unknown")
            start_time = (data.get("start_time") or "")[:19].replace("T", " ")
            status_emoji = _status_emoji(status)
            steps = len(data.get("steps", []))
            print(f"{i:<4} {status_emoji} {status:<12} {steps:<7} {start_time:<20} {log_file.name}")
        return 0

    target_file = log_files[0]
    if args.file:
        target_file = Path(args.file)
        if not target_file.exists():
            target_file = log_dir / args.file
        if not target_file.exists():
            print(f"❌ Log file not found: {args.file}")
            return 1

    show_log_file(target_file)
    return 0


def _status_emoji(status: str) -> str:
    return {
        "completed": "✅",
        "failed": "❌",
        "running": "🔄",
        "abandoned": "⏹️",
    }.get(status, "❓")


def show_log_file(log_file: Path) -> None:
    """Display a run log file."""
    with open(log_file, "r", encoding="utf-8") as f:
        data = json.load(f)

    status = data.get("status", "unknown")
    print(f"\n{'='*60}")
    print(f"📄 Run Log: {log_file.name}")
    print(f"{'='*60}")
    print(f"💬 Prompt:   {preview_prompt(data.get('prompt') or '')}")
    print(f"⏰ Started:  {data.get('start_time', 'N/A')}")
    print(f"⏱️  Ended:    {data.get('end_time', 'N/A')}")
    print(f"{_status_emoji(status)} Status:   {status}")
    print(f"📊 Steps:    {len(data.get('steps', []))}")
    print(f"{'='*60}\n")

    for step in data.get("steps", []):
        icon = {"completed": "✓", "failed": "✗"}.get(step.get("status"), "•")
        print(f"[{step.get('step_index', 0) + 1}] {icon} {step.get('message', '')}")
        if step.get("detail"):
            print(f"    {step['detail']}")
        if step.get("error"):
            print(f"    ⚠️ {step['error']}")

    result = data.get("result")
    if result:
        print(f"\n🌐 Live URL: {result.get('liveUrl', 'N/A')}")


def dispatch_command(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.config)
    except FileNotFoundError as exc:
        logger.error("%s", exc)
        return 1

    level = args.log_level or config.logging.level
    set_level(level)

    if args.command == "logs":
        return handle_logs_command(args, config)

    if args.command == "deploy":
        try:
            return handle_deploy_command(args, config)
        except SequencingError as exc:
            logger.error("Sequencing error: %s", exc)
            return 1
        except OSError as exc:
            logger.error("Deployment aborted: %s", exc)
            return 1

    return 1


def run_cli(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return dispatch_command(args)
