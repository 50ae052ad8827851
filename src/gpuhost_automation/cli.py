from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

from .config import DEFAULT_CONFIG, ProvisionConfig, load_config
from .errors import CyclicDependency, FactUnavailable, MalformedVersion
from .executors import LocalExecutor
from .facts import FactCollector
from .graph import build
from .rules import RuleOptions, default_ruleset
from .ruleset import RulesetLoader
from .runner import ActionRunner
from .types import Action, ActionResult, PlannedAction


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    RESET = "\033[0m"


def colorize(text: str, color: Optional[str]) -> str:
    if not color:
        return text
    if not sys.stdout.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"

_last_progress_len = 0


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="gpuhost",
        description="Provision a host for GPU-accelerated container workloads",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    provision = subparsers.add_parser("provision", help="Converge the host to the GPU container stack")
    provision.add_argument(
        "--min-cuda-version",
        default=None,
        help="Minimum acceptable CUDA version (default from config or 11.8)",
    )
    provision.add_argument("--dry-run", action="store_true", help="Report planned actions without executing")
    provision.add_argument("--force", action="store_true", help="Run effects even when already satisfied")
    provision.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to gpuhost config file (default: {DEFAULT_CONFIG})",
    )
    provision.add_argument("--rules", type=Path, help="Extra TOML ruleset appended to the built-in rules")
    provision.add_argument("--daemon-config", type=Path, help="Docker daemon config to patch")
    provision.add_argument("--timeout", type=float, help="Per-action timeout in seconds")
    provision.add_argument(
        "--no-smoke-test",
        action="store_true",
        help="Skip the GPU container smoke test after configuring Docker",
    )
    provision.add_argument("--log-level", default=None, help="Python logging level (default: INFO)")
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s %(name)s - %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        cfg = load_config(args.config)
    except (ValueError, OSError) as exc:
        configure_logging(args.log_level or "INFO")
        print(colorize(f"Config load failed: {exc}", Ansi.RED), file=sys.stderr)
        return 1
    _apply_overrides(cfg, args)
    configure_logging(cfg.log_level)

    if hasattr(os, "geteuid") and os.geteuid() != 0 and not args.dry_run:
        logging.warning("Not running as root; package and service commands will likely fail")

    executor = LocalExecutor(dry_run=args.dry_run)
    try:
        facts = FactCollector(executor).collect()
        ruleset = default_ruleset(RuleOptions.from_config(cfg))
        if cfg.rules_file:
            ruleset.extend(RulesetLoader().load(cfg.rules_file))
        graph = build(facts, ruleset)
    except (FactUnavailable, CyclicDependency, MalformedVersion, ValueError, OSError) as exc:
        print(colorize(f"Provisioning aborted: {exc}", Ansi.RED), file=sys.stderr)
        return 1

    gpu_line = ", ".join(facts.gpu_devices) if facts.gpu_present else "none"
    print(f"Host: {facts.distro} {facts.version} | GPU: {gpu_line} | CUDA: {facts.cuda_version or 'n/a'}")

    runner = ActionRunner(
        facts,
        executor,
        force=args.force,
        default_timeout=cfg.command_timeout,
        progress_callback=print_progress,
    )

    if args.dry_run:
        for planned in runner.plan(graph):
            print(format_planned(planned))
        return 0

    previous = signal.signal(signal.SIGINT, lambda signum, frame: _request_cancel(runner))
    try:
        results = runner.run(graph)
    finally:
        signal.signal(signal.SIGINT, previous)

    summary = Summary()
    for result in results.values():
        _clear_progress()
        summary.add(result)
        print(format_result(result))

    _clear_progress()
    print(summary.render())
    return min(summary.failures, 255)


def _apply_overrides(cfg: ProvisionConfig, args: argparse.Namespace) -> None:
    if args.min_cuda_version:
        cfg.min_cuda_version = args.min_cuda_version
    if args.rules:
        cfg.rules_file = args.rules
    if args.daemon_config:
        cfg.daemon_config = args.daemon_config
    if args.timeout is not None:
        cfg.command_timeout = args.timeout if args.timeout > 0 else None
    if args.no_smoke_test:
        cfg.smoke_test = False
    if args.log_level:
        cfg.log_level = args.log_level


def _request_cancel(runner: ActionRunner) -> None:
    _clear_progress()
    print(colorize("Interrupt received; stopping after the current action", Ansi.YELLOW), file=sys.stderr)
    runner.cancel()


def format_result(result: ActionResult) -> str:
    if result.failed:
        color = Ansi.RED
    elif result.succeeded:
        color = Ansi.GREEN
    else:
        color = Ansi.BLUE
    line = f"{result.action} {result.status.value} - {result.details}"
    if result.failed and result.diagnostic:
        diagnostic = "\n".join(f"    {row}" for row in result.diagnostic.splitlines())
        line = f"{line}\n{diagnostic}"
    return colorize(line, color)


def format_planned(planned: PlannedAction) -> str:
    verb = "would run" if planned.would_run else "would skip"
    line = f"{planned.action} {verb} - {planned.description}"
    if planned.details:
        line = f"{line} [{planned.details}]"
    return colorize(line, Ansi.YELLOW if planned.would_run else Ansi.BLUE)


def print_progress(action: Action) -> None:
    global _last_progress_len
    line = f"{action.id} pending..."
    _last_progress_len = len(line)
    print(colorize(line, Ansi.YELLOW), end="\r", flush=True)


def _clear_progress() -> None:
    global _last_progress_len
    if _last_progress_len:
        print(" " * _last_progress_len, end="\r", flush=True)
        _last_progress_len = 0


class Summary:
    def __init__(self) -> None:
        self.succeeded = 0
        self.skipped = 0
        self.failures = 0

    def add(self, result: ActionResult) -> None:
        if result.failed:
            self.failures += 1
        elif result.skipped:
            self.skipped += 1
        else:
            self.succeeded += 1

    def render(self) -> str:
        parts = [
            f"Succeeded: {self.succeeded}",
            f"Skipped: {self.skipped}",
            f"Failed: {self.failures}",
        ]
        text = " | ".join(parts)
        color = Ansi.GREEN if self.failures == 0 else Ansi.RED
        return colorize(text, color)


if __name__ == "__main__":
    raise SystemExit(main())
