"""
Command-line interface for case verification.

Exit codes: 0 when verification passes or only warns, 1 when it fails,
2 for usage errors (bad case directory, bad config, unknown step).
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from .logging_config import configure_logging
from .verification import pipeline
from .verification.models import STATUS_ERROR, STATUS_FAIL, StepResult
from .verification.patterns import ConfigError, VerificationConfig, get_config, load_config

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _load_config(args: argparse.Namespace) -> VerificationConfig:
    return load_config(Path(args.config)) if args.config else get_config()


def _case_dir(args: argparse.Namespace) -> Optional[Path]:
    case_dir = Path(args.case_dir)
    if not case_dir.is_dir():
        print(f"Error: case directory not found: {case_dir}", file=sys.stderr)
        return None
    return case_dir


def _print_step(result: StepResult, verbose: bool = False) -> None:
    print(f"  Step {result.step} {result.name:<12} {result.status.upper():<6} ({result.duration_ms}ms)")
    for issue in result.issues:
        if issue.is_blocking or verbose:
            source = f"[{issue.source_id}] " if issue.source_id else ""
            print(f"      {issue.severity.upper():<8} {issue.type}: {source}{issue.message}")


def _exit_code(status: str) -> int:
    return EXIT_FAILED if status in (STATUS_FAIL, STATUS_ERROR) else EXIT_OK


def cmd_verify(args: argparse.Namespace) -> int:
    """Run the verification pipeline (or one step) over a case."""
    case_dir = _case_dir(args)
    if case_dir is None:
        return EXIT_USAGE

    try:
        config = _load_config(args)

        if args.step:
            result = pipeline.run_single_step(case_dir, args.step, config=config)
            if args.json:
                print(json.dumps(result.to_dict(), indent=2))
            else:
                print(f"Verification step '{result.name}' for {case_dir.name}")
                _print_step(result, args.verbose)
            return _exit_code(result.status)

        state = pipeline.run_pipeline(case_dir, write_state=args.write_state, config=config)

    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return EXIT_USAGE
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    if args.json:
        print(json.dumps(state.to_dict(), indent=2))
    else:
        print(f"Verification of {state.case_id}")
        print("=" * 60)
        for step in state.steps:
            _print_step(step, args.verbose)
        print("-" * 60)
        summary = state.summary()
        print(f"Final status: {state.final_status.upper()}")
        print(f"Steps passed: {summary['steps_passed']}/{summary['total_steps']}, "
              f"warned: {summary['steps_warned']}, failed: {summary['steps_failed']}")
        print(f"Chain hash:   {state.chain_hash}")
        if args.write_state:
            print(f"State written to {case_dir / config.paths['verification_state']}")

    return _exit_code(state.final_status)


def cmd_summary(args: argparse.Namespace) -> int:
    """Show the persisted verification summary for a case."""
    case_dir = _case_dir(args)
    if case_dir is None:
        return EXIT_USAGE

    try:
        summary = pipeline.get_verification_summary(case_dir, config=_load_config(args))
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return EXIT_USAGE

    if summary is None:
        print(f"No verification state found for {case_dir.name}")
        return EXIT_FAILED

    if args.json:
        print(json.dumps(summary, indent=2))
    else:
        print(f"Case:            {summary['case_id']}")
        print(f"Final status:    {summary['final_status']}")
        print(f"Generated at:    {summary['generated_at']}")
        print(f"Chain hash:      {summary['chain_hash']}")
        print(f"Blocking issues: {summary['blocking_issues_count']}")
        print(f"Warnings:        {summary['warnings_count']}")

    return _exit_code(summary["final_status"] or STATUS_FAIL)


def cmd_current(args: argparse.Namespace) -> int:
    """Check whether the persisted verification still matches the article."""
    case_dir = _case_dir(args)
    if case_dir is None:
        return EXIT_USAGE

    try:
        status = pipeline.is_verification_current(case_dir, config=_load_config(args))
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return EXIT_USAGE

    if status["current"]:
        print(f"Verification is current ({status['final_status']})")
        return EXIT_OK

    print(f"Verification is not current: {status['reason']}")
    return EXIT_FAILED


def main(argv: Optional[list] = None) -> int:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="caseguard",
        description="Evidence integrity and claim verification for research cases"
    )

    # Global options
    parser.add_argument(
        "--config",
        help="Path to verification config YAML (default: $CASEGUARD_CONFIG or packaged config)"
    )
    parser.add_argument(
        "--log-dir",
        default="logs",
        help="Directory for verification.log"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # verify command
    verify_parser = subparsers.add_parser("verify", help="Run the verification pipeline")
    verify_parser.add_argument("case_dir", help="Case directory")
    verify_parser.add_argument("--step", choices=[s.name for s in pipeline.STEPS],
                               help="Run a single step only")
    verify_parser.add_argument("--json", action="store_true", help="Print the full result as JSON")
    verify_parser.add_argument("--write-state", action="store_true",
                               help="Write verification-state.json into the case directory")
    verify_parser.add_argument("-v", "--verbose", action="store_true", help="Show warnings as well as blocking issues")
    verify_parser.set_defaults(func=cmd_verify)

    # summary command
    summary_parser = subparsers.add_parser("summary", help="Show persisted verification summary")
    summary_parser.add_argument("case_dir", help="Case directory")
    summary_parser.add_argument("--json", action="store_true", help="Print as JSON")
    summary_parser.set_defaults(func=cmd_summary)

    # current command
    current_parser = subparsers.add_parser("current", help="Check the article hasn't changed since verification")
    current_parser.add_argument("case_dir", help="Case directory")
    current_parser.set_defaults(func=cmd_current)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_USAGE

    level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    configure_logging(level, args.log_dir)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
