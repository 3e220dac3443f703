"""CLI entry point: ``python -m patchline``."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from patchline.claude_code import ClaudeCodeGateway
from patchline.pipeline import PipelineConfig, PipelinePool
from patchline.preflight import PreflightReport, build_preflight_report
from patchline.schemas import PipelineMode, PipelineRunResult, TaskRequest

logger = logging.getLogger(__name__)


def _load_dotenv() -> None:
    """Load .env from cwd, its parent, or the project root."""
    project_root = Path(__file__).resolve().parent.parent.parent  # src/patchline/__main__.py
    for dir_ in (Path.cwd(), Path.cwd().parent, project_root):
        env_file = dir_ / ".env"
        if env_file.is_file():
            load_dotenv(env_file)
            return
    load_dotenv()


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the command-line parser."""
    p = argparse.ArgumentParser(
        prog="patchline",
        description="Patchline - plan, implement, verify and fix a code change with Claude Code.",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command")

    run_p = sub.add_parser("run", help="Run one task through the pipeline.")
    run_p.add_argument("--workspace", required=True, help="Path to the working copy")
    run_p.add_argument("--prompt", required=True, help="Natural-language change request")
    run_p.add_argument(
        "--mode",
        choices=[m.value for m in PipelineMode],
        default=PipelineMode.AUTO.value,
        help="Pipeline mode (default: auto)",
    )
    run_p.add_argument("--model", default=None, help="Model for every stage (default: config)")
    run_p.add_argument(
        "--target",
        action="append",
        default=[],
        metavar="PATH",
        help="File or directory the task concerns (repeatable)",
    )
    run_p.add_argument(
        "--max-fix-iterations",
        type=int,
        default=None,
        help="Fix cycles allowed before the run fails (default: 2)",
    )
    run_p.add_argument("--claude-bin", default=None, help="Claude Code binary (default: claude)")
    run_p.add_argument(
        "--skip-preflight", action="store_true", help="Skip binary and workspace checks"
    )
    run_p.add_argument("--json", action="store_true", help="Print the run result as JSON")

    pre_p = sub.add_parser("preflight", help="Check that the pipeline can run.")
    pre_p.add_argument("--workspace", default=".", help="Path to the working copy")
    pre_p.add_argument("--claude-bin", default=None, help="Claude Code binary (default: claude)")
    pre_p.add_argument("--json", action="store_true", help="Print the report as JSON")
    return p


def _config_from_args(args: argparse.Namespace) -> PipelineConfig:
    overrides: dict[str, object] = {}
    if getattr(args, "claude_bin", None):
        overrides["claude_binary"] = args.claude_bin
    if getattr(args, "max_fix_iterations", None) is not None:
        overrides["max_fix_iterations"] = args.max_fix_iterations
    return PipelineConfig.from_env(**overrides)


def _print_preflight_report(report: PreflightReport) -> None:
    print(f"\n  Preflight - {report.workspace_path}")
    print("  " + "=" * 58)
    marks = {"pass": "OK  ", "warn": "WARN", "fail": "FAIL"}
    for check in report.checks:
        print(f"  [{marks.get(check.status, '????')}] {check.label}")
        print(f"         {check.detail}")
        if check.hint and check.status != "pass":
            print(f"         Hint: {check.hint}")
    print(f"\n  Ready: {'yes' if report.ready else 'no'}\n")


def _print_run_summary(result: PipelineRunResult) -> None:
    print("\n" + "=" * 60)
    print("  Patchline - Run Summary")
    print("=" * 60)
    print(f"  Task:        {result.task_id}")
    print(f"  Status:      {result.status.value}")
    if result.effective_mode is not None:
        print(f"  Mode:        {result.effective_mode.value}")
    print(f"  Stages:      {', '.join(s.value for s in result.stages_completed) or '-'}")
    if result.located_paths:
        print(f"  Located:     {', '.join(result.located_paths)}")
    print(f"  Fix cycles:  {result.fix_iterations}")
    print(f"  Tokens:      {result.usage.total_tokens:,} (${result.usage.cost_usd:.4f})")
    print(f"  Duration:    {result.duration_seconds:.1f}s")
    if result.changes:
        print("  Changes:")
        for change in result.changes:
            print(f"    - {change.file} [{change.action.value}] {change.summary}")
    if result.error:
        stage = f" in {result.stage_failed.value}" if result.stage_failed else ""
        print(f"  Error{stage}: {result.error}")
    if result.verification is not None and result.verification.bugs and not result.success:
        print("  Remaining bugs:")
        for bug in result.verification.bugs:
            where = f"{bug.file}:{bug.line}" if bug.line else bug.file
            print(f"    - [{bug.severity.value}] {where}: {bug.description}")
    print()


def _run_preflight(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    report = build_preflight_report(args.workspace, claude_binary=config.claude_binary)
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        _print_preflight_report(report)
    return 0 if report.ready else 1


def _run_task(args: argparse.Namespace) -> int:
    workspace = Path(args.workspace).expanduser().resolve()
    if not workspace.is_dir():
        print(f"Error: workspace does not exist: {workspace}", file=sys.stderr)
        return 2
    config = _config_from_args(args)

    if not args.skip_preflight:
        report = build_preflight_report(workspace, claude_binary=config.claude_binary)
        if not report.ready:
            print("\nError: preflight checks failed before execution.", file=sys.stderr)
            for message in report.failure_messages():
                print(f"  - {message}", file=sys.stderr)
            return 1

    request = TaskRequest(
        prompt=args.prompt,
        workspace_path=str(workspace),
        target_paths=list(args.target),
        model=args.model,
        pipeline_mode=PipelineMode(args.mode),
    )
    gateway = ClaudeCodeGateway(
        claude_binary=config.claude_binary, retry_policy=config.retry_policy()
    )

    with PipelinePool(gateway, config) as pool:
        future = pool.submit(request)
        try:
            result = future.result()
        except KeyboardInterrupt:
            print("\nStopping... (waiting for the active stage to terminate)", file=sys.stderr)
            pool.cancel(future)
            result = future.result()

    if args.json:
        print(result.model_dump_json(indent=2))
    else:
        _print_run_summary(result)
    return 0 if result.success else 1


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and dispatch to the requested command."""
    _load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.command == "run":
        return _run_task(args)
    if args.command == "preflight":
        return _run_preflight(args)
    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
