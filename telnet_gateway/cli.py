"""
Command line entry point.

Settings come from (highest wins): CLI flags, environment (HOST, PORT,
LOG_LEVEL), the optional json-ish config file, built-in defaults.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .addressbook import AddressBook
from .bridge import Bridge
from .connector import TargetConnector
from .server import GatewayServer
from .util import clamp_int, ensure_float, get_path, load_config, parse_level

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 2323


@dataclass
class GatewaySettings:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "info"
    connect_timeout: float = 5.0
    chunk_size: int = 65536
    max_line_bytes: int = 1024
    stats_interval_sec: float = 0.0
    drain_timeout_sec: float = 2.0


def resolve_settings(
    cfg: Dict[str, Any],
    *,
    env: Optional[Mapping[str, str]] = None,
    args: Optional[argparse.Namespace] = None,
) -> GatewaySettings:
    env = os.environ if env is None else env
    s = GatewaySettings()

    listen = get_path(cfg, "listen", {}) or {}
    s.host = str(listen.get("host", s.host))
    port: Any = listen.get("port", s.port)
    s.log_level = str(get_path(cfg, "logging.console.verbosity", s.log_level))

    conn = get_path(cfg, "connector.timeouts", {}) or {}
    s.connect_timeout = ensure_float(conn, "connect", s.connect_timeout)
    rt = get_path(cfg, "runtime", {}) or {}
    s.chunk_size = clamp_int(rt.get("chunk_size", s.chunk_size), default=s.chunk_size, lo=1, hi=16 * 1024 * 1024)
    s.max_line_bytes = clamp_int(rt.get("max_line_bytes", s.max_line_bytes), default=s.max_line_bytes, lo=16, hi=65536)
    s.stats_interval_sec = ensure_float(rt, "stats_interval_sec", s.stats_interval_sec)
    s.drain_timeout_sec = ensure_float(rt, "drain_timeout_sec", s.drain_timeout_sec)

    if env.get("HOST"):
        s.host = env["HOST"]
    if env.get("PORT"):
        port = env["PORT"]
    if env.get("LOG_LEVEL"):
        s.log_level = env["LOG_LEVEL"]

    if args is not None:
        if args.host:
            s.host = args.host
        if args.port is not None:
            port = args.port
        if args.log_level:
            s.log_level = args.log_level

    try:
        s.port = int(port)
    except (TypeError, ValueError):
        raise SystemExit(f"Invalid listen port: {port!r}") from None
    if not 0 <= s.port <= 65535:
        raise SystemExit(f"Invalid listen port: {s.port}")
    if s.connect_timeout <= 0:
        raise SystemExit(f"Invalid connect timeout: {s.connect_timeout}")
    return s


# =============================================================================
# Logging setup from config
# =============================================================================

def setup_logging_from_config(cfg: Dict[str, Any], cli_level: Optional[str] = None) -> logging.Logger:
    log = logging.getLogger("telnet_gateway")
    log.propagate = False
    log.handlers.clear()
    log.setLevel(logging.DEBUG)  # handlers gate output

    lc = get_path(cfg, "logging", {}) or {}

    console_cfg = lc.get("console", {}) or {}
    file_cfg = lc.get("file", {}) or {}

    console_level = parse_level(cli_level or console_cfg.get("verbosity"), logging.INFO)

    ch = logging.StreamHandler()
    ch.setLevel(console_level)
    ch.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    log.addHandler(ch)

    if bool(file_cfg.get("enabled", False)):
        path = str(file_cfg.get("path", "telnet_gateway.log"))
        file_level = parse_level(file_cfg.get("verbosity"), logging.INFO)
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        log.addHandler(fh)

    return log


# =============================================================================
# CLI + entrypoint
# =============================================================================

def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="TCP gateway with an address book menu and byte relay")
    p.add_argument("--config", default=None, help="Path to JSON (or json-ish) config file")
    p.add_argument("--host", default=None, help=f"Bind host (env HOST, default {DEFAULT_HOST})")
    p.add_argument("--port", type=int, default=None, help=f"Bind port (env PORT, default {DEFAULT_PORT})")
    p.add_argument("--log-level", default=None, help="Console log level (env LOG_LEVEL, default info)")
    return p


def build_server(cfg: Dict[str, Any], settings: GatewaySettings, log: logging.Logger, *, base_dir: Optional[str] = None) -> GatewayServer:
    book = AddressBook.from_config(cfg, base_dir=base_dir)
    return GatewayServer(
        book=book,
        connector=TargetConnector(connect_timeout=settings.connect_timeout, log=log.getChild("connector")),
        bridge=Bridge(chunk_size=settings.chunk_size, log=log.getChild("bridge")),
        log=log,
        max_line_bytes=settings.max_line_bytes,
        chunk_size=settings.chunk_size,
    )


async def amain(args: argparse.Namespace) -> int:
    cfg: Dict[str, Any] = load_config(args.config) if args.config else {}
    base_dir = os.path.dirname(os.path.abspath(args.config)) if args.config else None
    settings = resolve_settings(cfg, args=args)
    log = setup_logging_from_config(cfg, settings.log_level)

    gw = build_server(cfg, settings, log, base_dir=base_dir)

    stop_ev = asyncio.Event()

    def _stop(*_a) -> None:
        stop_ev.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _stop)
        except NotImplementedError:
            pass

    try:
        await gw.start(settings.host, settings.port, stats_interval_sec=settings.stats_interval_sec)
    except OSError as e:
        log.error("cannot listen on %s:%d: %s", settings.host, settings.port, e)
        return 1

    await stop_ev.wait()
    log.info("shutting down")
    await gw.stop(drain_timeout=settings.drain_timeout_sec)

    # Let pending cancellations settle
    await asyncio.sleep(0)

    return 0


def main() -> None:
    args = build_argparser().parse_args()
    try:
        rc = asyncio.run(amain(args))
    except KeyboardInterrupt:
        rc = 130
    raise SystemExit(rc)


if __name__ == "__main__":
    main()
