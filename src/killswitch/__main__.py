"""Entry point for killswitch: dead man's switch for AI processes.

Commands:
  kill    terminate a process and sign a death receipt
  watch   watch a process, kill it if it exceeds limits
  wrap    run a command, kill it if it exceeds its timeout
  verify  verify a death receipt signature

Usage:
    python -m killswitch <command> [options]
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Mapping, Sequence
from logging.handlers import RotatingFileHandler
from pathlib import Path

from killswitch import __version__

logger = logging.getLogger("killswitch")

_HANDLER_NAMES = ("killswitch-console", "killswitch-file")


def _setup_logging(verbose: bool, log_dir: str | None, level: str = "INFO") -> None:
    """Configure logging with console and rotating file handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for handler in list(root_logger.handlers):
        if handler.get_name() in _HANDLER_NAMES:
            root_logger.removeHandler(handler)
            handler.close()

    fmt = logging.Formatter(
        "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
    )

    # Console handler; user-facing output is printed, so keep this quiet
    console = logging.StreamHandler()
    console.set_name("killswitch-console")
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(fmt)
    root_logger.addHandler(console)

    if not log_dir:
        return
    path = Path(log_dir).expanduser()
    try:
        path.mkdir(parents=True, exist_ok=True)
        # Rotating file handler (10 MB, keep 5)
        file_handler = RotatingFileHandler(
            path / "killswitch.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
    except OSError as exc:
        logger.warning("File logging disabled: %s", exc)
        return
    file_handler.set_name("killswitch-file")
    file_handler.setFormatter(fmt)
    root_logger.addHandler(file_handler)


def positive_pid(value: str) -> int:
    """argparse type for a process id: an integer greater than zero."""
    try:
        pid = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid pid: {value!r}") from None
    if pid <= 0:
        raise argparse.ArgumentTypeError(f"pid must be > 0 (got {pid})")
    return pid


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level argument parser."""
    p = argparse.ArgumentParser(
        prog="killswitch",
        description="Dead man's switch for AI. Monitor. Kill. Sign receipt.",
    )
    p.add_argument(
        "-v", "--version", action="version", version=f"%(prog)s {__version__}",
    )
    p.add_argument("--config", type=Path, help="Path to config.yaml")
    p.add_argument(
        "--verbose", action="store_true", help="Log diagnostics to stderr",
    )
    sub = p.add_subparsers(dest="command_name", metavar="COMMAND")
    sub.required = True

    kill = sub.add_parser(
        "kill", help="Terminate AI process and sign death receipt",
    )
    kill.add_argument("pid", type=positive_pid)
    kill.add_argument(
        "-r", "--reason", default="manual kill", help="Reason for termination",
    )
    kill.add_argument(
        "-k", "--key", help="Private key (or use KILLSWITCH_KEY env)",
    )
    kill.add_argument("-o", "--out", help="Output receipt file")

    watch = sub.add_parser(
        "watch", help="Watch a process and kill if it exceeds limits",
    )
    watch.add_argument("pid", type=positive_pid)
    watch.add_argument(
        "--cpu", type=float, help="Kill if CPU exceeds this %% (default 90)",
    )
    watch.add_argument(
        "--memory", type=float,
        help="Kill if memory exceeds this MB (default 8000)",
    )
    watch.add_argument(
        "--timeout", type=float,
        help="Kill after this many seconds (default 3600)",
    )
    watch.add_argument("-k", "--key", help="Private key for signing")
    watch.add_argument("-o", "--out", help="Output receipt file")

    wrap = sub.add_parser(
        "wrap", help="Wrap a command, monitor it, kill if needed",
        description=(
            "Run COMMAND and kill it if it exceeds its timeout. Options go "
            "before the command; everything from the command on is passed "
            "to it unchanged."
        ),
    )
    wrap.add_argument("command", nargs=argparse.REMAINDER)
    wrap.add_argument(
        "--timeout", type=float,
        help="Kill after this many seconds (default 3600)",
    )
    wrap.add_argument("-k", "--key", help="Private key for signing")
    wrap.add_argument(
        "-r", "--reason", default="wrapped execution", help="Reason if killed",
    )
    wrap.add_argument("-o", "--out", help="Output receipt file")

    verify = sub.add_parser("verify", help="Verify a death receipt signature")
    verify.add_argument("file", type=Path)

    return p


def main(
    argv: Sequence[str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> int:
    """Parse arguments, load config and run one command."""
    from killswitch import commands
    from killswitch.core.config import KillswitchConfig

    env = dict(os.environ) if environ is None else environ
    args = build_parser().parse_args(argv)

    config_path = args.config or KillswitchConfig.default_path(env)
    config = KillswitchConfig.load(config_path)
    _setup_logging(
        args.verbose, config.get("logging.dir"), config.get("logging.level", "INFO"),
    )
    logger.info("killswitch v%s: %s", __version__, args.command_name)

    handlers = {
        "kill": commands.cmd_kill,
        "watch": commands.cmd_watch,
        "wrap": commands.cmd_wrap,
        "verify": commands.cmd_verify,
    }
    try:
        return handlers[args.command_name](args, config, env)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
