"""
FilterProxy — Main Entry Point

    python main.py [port] [--host ADDR] [--policy FILE]
                          [--log-file FILE] [--log-level LEVEL]

Loads the forbidden-words file, then serves until interrupted.  Every
log record is written as ``[YYYY-MM-DD HH:MM:SS] message`` to standard
output and appended to the log file.
"""

import sys
import argparse
import logging

from config.settings      import Settings
from core.policy          import PolicyStore
from traffic.proxy_server import ProxyServer

logger = logging.getLogger("FilterProxy.Main")


def configure_logging(log_file: str = Settings.LOG_FILE,
                      level: str = Settings.LOG_LEVEL):
    """Send every record to stdout and to *log_file* (append mode)."""
    formatter = logging.Formatter(
        Settings.LOG_FORMAT, datefmt=Settings.LOG_DATE_FORMAT,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    try:
        file_handler = logging.FileHandler(log_file, mode="a",
                                           encoding="utf-8")
    except OSError as exc:
        logger.warning("Cannot open log file %s: %s", log_file, exc)
        return
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="filterproxy",
        description="HTTP/HTTPS forwarding proxy with content filtering",
    )
    parser.add_argument("port", nargs="?", type=int,
                        default=Settings.DEFAULT_PORT,
                        help=f"port to listen on "
                             f"(default {Settings.DEFAULT_PORT})")
    parser.add_argument("--host", default=Settings.PROXY_HOST,
                        help="bind address")
    parser.add_argument("--policy", default=Settings.POLICY_FILE,
                        help="forbidden words / sites file")
    parser.add_argument("--log-file", default=Settings.LOG_FILE,
                        help="log file (appended to)")
    parser.add_argument("--log-level", default=Settings.LOG_LEVEL,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        type=str.upper, help="minimum log level")
    return parser


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Entry Point
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_file, args.log_level)

    logger.info("%s v%s starting", Settings.APP_NAME, Settings.APP_VERSION)
    policy = PolicyStore.load(args.policy)
    server = ProxyServer(args.host, args.port, policy)

    try:
        server.serve_forever()
    except OSError as exc:
        logger.error("Cannot listen on %s:%d: %s", args.host, args.port, exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Shutting down…")
    finally:
        server.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
