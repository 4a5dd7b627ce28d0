"""
Command line entry point.

    python -m agent [--config FILE] [--port N] [--host H] [--work-dir DIR]
                    [--poll-interval SECONDS] [--no-poll] [--quiet] [--version]
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, List, Dict, Any

import uvicorn

from . import __version__
from .config import load_config
from .errors import ConfigError
from .logging_setup import configure_logging
from .main import create_app

logger = logging.getLogger("agent_cli")

EPILOG = """\
environment variables:
  PORT, HOST, WORK_DIR, JETSITE_SCRIPT, AUTO_OPEN_VSCODE, GITHUB_TOKEN,
  GH_TOKEN, API_KEY, QUEUE_URL, POLL_INTERVAL, QUEUE_POLL_INTERVAL,
  LOG_LEVEL, LOG_DIR, AGENT_CONFIG

api endpoints:
  GET  /health              health check
  GET  /status              agent status
  POST /create-repository   create repository
  GET  /task/<id>           task status
  GET  /tasks               task list
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent",
        description="Self-hosted automation daemon for template-based repository creation.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", "-v", action="version", version=f"Agent v{__version__}")
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument("--port", type=int, help="API server port (default: 3000)")
    parser.add_argument("--host", help="API server host (default: localhost)")
    parser.add_argument("--work-dir", type=Path, help="Work directory (default: ./workspace)")
    parser.add_argument(
        "--poll-interval", type=int, metavar="SECONDS",
        help="Seconds between task drain ticks (default: 30)",
    )
    parser.add_argument("--no-poll", action="store_true", help="Disable external queue polling")
    parser.add_argument("--quiet", action="store_true", help="Reduce log output")
    return parser


def overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.port is not None:
        overrides["port"] = args.port
    if args.host:
        overrides["host"] = args.host
    if args.work_dir:
        overrides["work_dir"] = args.work_dir
    if args.poll_interval is not None:
        overrides["drain_interval"] = args.poll_interval
    if args.no_poll:
        overrides["queue_url"] = None
    if args.quiet:
        overrides["log_level"] = "WARNING"
    return overrides


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(config_file=args.config, overrides=overrides_from_args(args))
    except (ConfigError, OSError) as e:
        parser.error(str(e))

    configure_logging(config.log_level, config.log_dir)

    app = create_app(config)
    logger.info(f"Starting agent v{__version__}")
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
