"""Shared subprocess plumbing for the host providers."""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Sequence

from ..errors import ExecutionError, ProbeError

LOGGER = logging.getLogger(__name__)

Runner = Callable[[Sequence[str]], subprocess.CompletedProcess[str]]


def default_runner(args: Sequence[str]) -> subprocess.CompletedProcess[str]:
    """Run *args* capturing text output without raising on failure."""
    return subprocess.run(  # noqa: S603, S607
        list(args),
        capture_output=True,
        text=True,
        check=False,
    )


def describe_failure(result: subprocess.CompletedProcess[str]) -> str:
    """Return the most useful line of output from a failed command."""
    stdout = getattr(result, "stdout", "") or ""
    stderr = getattr(result, "stderr", "") or ""
    return stderr.strip() or stdout.strip() or "no output"


def run_query(runner: Runner, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
    """Run a read-only command; failure to launch it becomes a :class:`ProbeError`."""
    LOGGER.debug("query: %s", " ".join(args))
    try:
        return runner(list(args))
    except FileNotFoundError as exc:
        raise ProbeError(f"{args[0]} not found", detail=str(exc)) from exc
    except PermissionError as exc:
        raise ProbeError(f"permission denied running {args[0]}", detail=str(exc)) from exc


def run_checked(
    runner: Runner,
    args: Sequence[str],
    *,
    error_cls: type[ExecutionError] = ExecutionError,
    error_prefix: str | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a mutating command and raise *error_cls* when it fails."""
    LOGGER.debug("exec: %s", " ".join(args))
    prefix = error_prefix or " ".join(args[:2])
    try:
        result = runner(list(args))
    except FileNotFoundError as exc:
        raise error_cls(f"{args[0]} not found: {exc}", command=args) from exc
    except PermissionError as exc:
        raise error_cls(f"{prefix} not permitted: {exc}", command=args) from exc
    if result.returncode != 0:
        raise error_cls(
            f"{prefix} failed (exit {result.returncode}): {describe_failure(result)}",
            command=args,
            returncode=result.returncode,
        )
    return result


__all__ = ["Runner", "default_runner", "describe_failure", "run_checked", "run_query"]
