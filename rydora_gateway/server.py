from __future__ import annotations

import argparse
import logging
import os
import re
import signal
import socket
import subprocess
import time
from collections.abc import Callable, Sequence

from rydora_gateway.settings import get_settings

PORT_RETRY_DELAY_SECONDS = 2.0

logger = logging.getLogger("uvicorn.error")

CommandRunner = Callable[[Sequence[str]], str | None]


def port_available(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        probe.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            probe.bind((host, port))
        except OSError:
            return False
    return True


def _run_command(command: Sequence[str]) -> str | None:
    try:
        completed = subprocess.run(
            list(command),
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    # fuser writes the port prefix to stderr and the pids to stdout.
    return completed.stdout


def find_port_owners(port: int, run: CommandRunner = _run_command) -> list[int]:
    """Return the pids listening on ``port`` (lsof first, then fuser)."""
    commands = (
        ("lsof", "-t", f"-iTCP:{port}", "-sTCP:LISTEN"),
        ("fuser", f"{port}/tcp"),
    )
    for command in commands:
        output = run(command)
        if not output:
            continue
        pids = sorted({int(match) for match in re.findall(r"\d+", output) if int(match) > 0})
        pids = [pid for pid in pids if pid != os.getpid()]
        if pids:
            return pids
    return []


def release_port(
    host: str,
    port: int,
    *,
    run: CommandRunner = _run_command,
    kill: Callable[[int, int], None] = os.kill,
    sleep: Callable[[float], None] = time.sleep,
    is_available: Callable[[str, int], bool] = port_available,
) -> bool:
    if is_available(host, port):
        return True

    logger.warning("port_in_use port=%d action=terminate_owner", port)
    owners = find_port_owners(port, run=run)
    if not owners:
        logger.error("port_owner_unknown port=%d", port)
        return False
    for pid in owners:
        try:
            kill(pid, signal.SIGTERM)
        except OSError as exc:
            logger.warning("port_owner_kill_failed pid=%d error=%s", pid, exc)
            continue
        logger.info("port_owner_terminated pid=%d port=%d", pid, port)

    sleep(PORT_RETRY_DELAY_SECONDS)
    if is_available(host, port):
        return True
    logger.error("port_still_in_use port=%d", port)
    return False


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rydora-gateway",
        description="Run the Rydora session-authenticating API gateway.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    serve = subparsers.add_parser("serve", help="Start the HTTP server.")
    serve.add_argument("--host", default=None, help="Bind address (default: HOST setting).")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: PORT setting).")
    serve.add_argument("--reload", action="store_true", help="Reload on source changes.")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = get_settings()
    host = args.host or settings.host
    port = args.port or settings.port

    if not release_port(host, port):
        return 1

    import uvicorn

    uvicorn.run("rydora_gateway.main:app", host=host, port=port, reload=args.reload)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
