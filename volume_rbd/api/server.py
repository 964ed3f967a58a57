"""
Uvicorn server entrypoint for the Docker volume plugin.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import uvicorn

from volume_rbd.cli.lib.config import load_config

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s - %(message)s"


def setup_logging(level: str = "info", log_file: Optional[str] = None) -> None:
    """Configure the root logger for the plugin process."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="docker-volume-rbd", description="Docker volume plugin for Ceph RBD")
    parser.add_argument("--socket", default=None, help="Plugin unix socket (default: from config)")
    parser.add_argument("--log-level", default="info", help="Log level (default: info)")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file")
    return parser


def serve(socket_path: Optional[str] = None, log_level: str = "info", log_file: Optional[str] = None) -> int:
    cfg = load_config()
    socket_path = socket_path or cfg.socket_path

    setup_logging(log_level, log_file)
    logger = logging.getLogger(__name__)

    Path(socket_path).parent.mkdir(parents=True, exist_ok=True)
    if os.path.exists(socket_path):
        # Stale socket from a previous run
        os.unlink(socket_path)

    logger.info("volume-rbd Message=listening on %s", socket_path)
    uvicorn.run("volume_rbd.api.main:app", uds=socket_path, log_level=log_level.lower(), log_config=None)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return serve(args.socket, args.log_level, args.log_file)


if __name__ == "__main__":
    sys.exit(main())
