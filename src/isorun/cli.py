"""CLI entry point for isolated test runs.

Provides ``main()`` as the console-script entry point registered in
``pyproject.toml`` as ``isorun = "isorun.cli:main"``. Parses command-line
arguments, loads an optional config YAML file, and runs each named test in
its own interpreter.
"""

from __future__ import annotations

import argparse
from pathlib import Path
import sys
from typing import Any

import yaml

from isorun.errors import IsolationError
from isorun.isolation import configure_logging, run_job, run_test
from isorun.job import build_job
from isorun.models import IsolationConfig
from isorun.reconcile import TestCase, TestRunResult


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured ``ArgumentParser``.
    """
    parser = argparse.ArgumentParser(
        prog="isorun",
        description="Run unittest tests, each in its own Python interpreter.",
    )
    parser.add_argument(
        "tests",
        nargs="+",
        metavar="TEST_ID",
        help="Dotted unittest name, e.g. pkg.test_mod.TestThing.test_case.",
    )
    parser.add_argument(
        "--config",
        required=False,
        default=None,
        help="Path to an optional IsolationConfig YAML file.",
    )
    parser.add_argument(
        "--raw",
        action="store_true",
        help="Print the child's raw stdout/stderr instead of reconciling results.",
    )
    return parser


def _load_yaml(path: str, label: str) -> dict[str, Any]:
    """Load and validate a YAML file as a dict.

    Args:
        path: File path to the YAML file.
        label: Human-readable label for error messages.

    Returns:
        The parsed YAML content as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file does not parse to a dict.
    """
    file_path = Path(path)
    if not file_path.exists():
        msg = f"{label} file not found: {path}"
        raise FileNotFoundError(msg)

    with open(file_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"{label} file must contain a YAML mapping, got {type(data).__name__}"
        raise ValueError(msg)

    return data


def _print_raw(test_id: str, config: IsolationConfig) -> None:
    job = build_job(test_id, extra_sys_path=config.extra_sys_path, bootstrap=config.bootstrap)
    raw = run_job(job, binary=config.python_binary)
    assert raw is not None
    print(f"=== {test_id} ===")
    print(f"stdout: {raw.stdout!r}")
    print(f"stderr: {raw.stderr_text}")


def _print_summary(result: TestRunResult) -> None:
    """Print failures, errors and a one-line summary to stdout."""
    sep = "=" * 60
    for label, entries in (("ERROR", result.errors), ("FAIL", result.failures)):
        for test, exc in entries:
            print(sep)
            print(f"{label}: {test.test_id}")
            print(f"  {type(exc).__name__}: {exc}")
    print(sep)
    print(
        f"Ran {result.run_count} test(s) in {result.time:.3f}s: "
        f"{result.failure_count} failure(s), {result.error_count} error(s)"
    )


def main(argv: list[str] | None = None) -> int:
    """Entry point for the isorun CLI application.

    Args:
        argv: Argument list; ``sys.argv[1:]`` when ``None``.

    Returns:
        Exit code: 0 when every test passed, 1 otherwise.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = IsolationConfig()
        if args.config is not None:
            config = IsolationConfig(**_load_yaml(args.config, "config"))
        configure_logging(config)

        if args.raw:
            for test_id in args.tests:
                _print_raw(test_id, config)
            return 0

        result = TestRunResult(collect_code_coverage=config.collect_code_coverage)
        for test_id in args.tests:
            run_test(TestCase(test_id), result, config)
        _print_summary(result)

    except IsolationError as exc:
        print(f"Isolation error: {exc}", file=sys.stderr)
        print(f"Diagnostics: {exc.diagnostics}", file=sys.stderr)
        return 1
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return 0 if result.was_successful() else 1


if __name__ == "__main__":
    sys.exit(main())
