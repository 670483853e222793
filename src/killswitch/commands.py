"""Command handlers for the ``killswitch`` CLI.

Each handler receives the parsed arguments, the loaded config and the
process environment, resolves signing once, and returns an exit code.
User-facing output is printed with a ``[KILLSWITCH]`` prefix; diagnostics
go through :mod:`logging`.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Mapping

from killswitch.core.config import KillswitchConfig, SigningConfig
from killswitch.core.engine import TerminationEngine
from killswitch.core.errors import (
    InvalidSigningKey,
    MissingSigningKey,
    ReceiptParseError,
)
from killswitch.core.models import ResourceSample, TerminationResult, ThresholdPolicy
from killswitch.core.monitor import Monitor, format_number
from killswitch.core.wrap import WrapSupervisor
from killswitch.receipts.signer import verify_file
from killswitch.response.notifier import CounterNotifier
from killswitch.sensors.process import ResourceSampler

logger = logging.getLogger(__name__)

PREFIX = "[KILLSWITCH]"
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_KILL_FAILED = 2


def _say(message: str) -> None:
    print(f"{PREFIX} {message}", flush=True)


def _err(message: str) -> None:
    print(message, file=sys.stderr, flush=True)


def _resolve_signing(
    args: argparse.Namespace, config: KillswitchConfig, environ: Mapping[str, str],
) -> SigningConfig:
    return SigningConfig.resolve(
        args.key, environ, config.get("signing.env_vars", []),
    )


def _notifier(config: KillswitchConfig) -> CounterNotifier:
    return CounterNotifier(
        url=config.get("notification.url"),
        tenant_id=config.get("notification.tenant_id", "ai-killswitch"),
        timeout=float(config.get("notification.timeout_seconds", 5.0)),
        enabled=bool(config.get("notification.enabled", True)),
    )


def _output_path(args: argparse.Namespace, config: KillswitchConfig) -> str:
    return args.out or config.get("receipts.output_path", "death-receipt.json")


def _report_termination(result: TerminationResult) -> int:
    if result.killed:
        _say(f"Process {result.pid} terminated.")
    else:
        _say(result.message)
    if result.receipt is not None:
        _say(f"Death receipt signed: {result.receipt_path}")
        _say(f"Signer: {result.receipt.signer}")
    return EXIT_OK if result.killed else EXIT_KILL_FAILED


# ---------------------------------------------------------------------------
# kill
# ---------------------------------------------------------------------------


def cmd_kill(
    args: argparse.Namespace, config: KillswitchConfig, environ: Mapping[str, str],
) -> int:
    """Terminate a process and sign a death receipt.  A key is mandatory."""
    signing = _resolve_signing(args, config, environ)
    try:
        signing.require_signer()
        notifier = _notifier(config)
        engine = TerminationEngine(
            signing, output_path=_output_path(args, config), notifier=notifier,
        )
    except (MissingSigningKey, InvalidSigningKey) as exc:
        _err(str(exc))
        return EXIT_ERROR

    _say(f"Targeting PID {args.pid}...")
    result = engine.terminate(args.pid, args.reason)
    _say(f"Process: {result.handle.name}")
    code = _report_termination(result)
    notifier.drain()
    return code


# ---------------------------------------------------------------------------
# watch
# ---------------------------------------------------------------------------


def _print_sample(sample: ResourceSample) -> None:
    sys.stdout.write(
        f"\r{PREFIX} CPU: {sample.cpu_percent:.1f}% | "
        f"Memory: {sample.memory_mb:.1f}MB    "
    )
    sys.stdout.flush()


def cmd_watch(
    args: argparse.Namespace, config: KillswitchConfig, environ: Mapping[str, str],
) -> int:
    """Watch a running process; kill it on timeout or a resource limit."""
    cpu = args.cpu if args.cpu is not None else config.get("limits.cpu_percent")
    memory = args.memory if args.memory is not None else config.get("limits.memory_mb")
    timeout = (
        args.timeout if args.timeout is not None
        else config.get("limits.timeout_seconds")
    )
    try:
        policy = ThresholdPolicy.from_megabytes(cpu, memory, timeout)
    except ValueError as exc:
        _err(f"Invalid limits: {exc}")
        return EXIT_ERROR

    signing = _resolve_signing(args, config, environ)
    notifier = _notifier(config)
    try:
        engine = TerminationEngine(
            signing, output_path=_output_path(args, config), notifier=notifier,
        )
    except InvalidSigningKey as exc:
        _err(str(exc))
        return EXIT_ERROR
    if not engine.signing_enabled:
        logger.warning("No signing key; a kill will not produce a receipt")

    _say(f"Watching PID {args.pid}...")
    print(f"  CPU limit: {format_number(cpu)}%")
    print(f"  Memory limit: {format_number(memory)}MB")
    print(f"  Timeout: {format_number(timeout)}s", flush=True)

    monitor = Monitor(
        args.pid,
        policy,
        engine,
        sampler=ResourceSampler(
            float(config.get("monitor.sample_window_seconds", 0.1)),
        ),
        tick_interval=float(config.get("monitor.tick_interval_seconds", 1.0)),
        on_sample=_print_sample,
    )
    outcome = monitor.run()
    print()

    if outcome.termination is None:
        _say("Process ended naturally.")
        return EXIT_OK

    _say(f"{outcome.reason}. Terminated.")
    code = _report_termination(outcome.termination)
    notifier.drain()
    return code


# ---------------------------------------------------------------------------
# wrap
# ---------------------------------------------------------------------------

_WRAP_OPTIONS = ("--timeout", "-k", "--key", "-r", "--reason", "-o", "--out")


def misplaced_wrap_options(command: list[str]) -> list[str]:
    """Wrap options that appear inside *command* and reach the child."""
    found = []
    for arg in command:
        name = arg.split("=", 1)[0]
        if name in _WRAP_OPTIONS and name not in found:
            found.append(name)
    return found


def cmd_wrap(
    args: argparse.Namespace, config: KillswitchConfig, environ: Mapping[str, str],
) -> int:
    """Run a command; kill it with a system-signed receipt on timeout."""
    timeout = (
        args.timeout if args.timeout is not None
        else config.get("limits.timeout_seconds")
    )
    command = list(args.command)
    if command[:1] == ["--"]:
        command = command[1:]
    elif command:
        misplaced = misplaced_wrap_options(command[1:])
        if misplaced:
            _err(
                f"Warning: {', '.join(misplaced)} after the command is passed "
                "to it, not to wrap. Put wrap options before the command."
            )
    if not command:
        _err("No command given")
        return EXIT_ERROR
    if timeout <= 0:
        _err("Invalid timeout: must be > 0")
        return EXIT_ERROR

    signing = _resolve_signing(args, config, environ)
    notifier = _notifier(config)
    try:
        engine = TerminationEngine(
            signing, output_path=_output_path(args, config), notifier=notifier,
        )
    except InvalidSigningKey as exc:
        _err(str(exc))
        return EXIT_ERROR

    supervisor = WrapSupervisor(
        command, timeout, engine, reason=args.reason,
    )
    _say(f"Wrapping: {supervisor.command}")
    _say(f"Timeout: {format_number(timeout)}s")

    outcome = supervisor.run()
    if outcome.termination is None:
        _say(f"Process exited with code {outcome.exit_code}")
        return outcome.exit_code

    print()
    _say("Timeout! Wrapped process terminated.")
    _report_termination(outcome.termination)
    notifier.drain()
    return outcome.exit_code


# ---------------------------------------------------------------------------
# verify
# ---------------------------------------------------------------------------


def cmd_verify(
    args: argparse.Namespace, config: KillswitchConfig, environ: Mapping[str, str],
) -> int:
    """Verify a death receipt signature."""
    try:
        receipt, result = verify_file(args.file)
    except ReceiptParseError as exc:
        _say(f"INVALID - {exc}")
        return EXIT_ERROR

    if not result.valid:
        _say(f"INVALID - {result.message}")
        if result.recovered:
            print(f"  Recovered: {result.recovered}")
            print(f"  Claimed:   {result.signer}")
        return EXIT_ERROR

    status = receipt.status.value if receipt.status else "unknown"
    _say("VALID death receipt")
    print(f"  Killed: PID {receipt.process.pid} ({receipt.process.name})")
    print(f"  Reason: {receipt.reason}")
    print(f"  Time: {receipt.timestamp}")
    print(f"  Signed by: {result.signer}")
    print(f"  Status: {status}")
    return EXIT_OK
