#!/usr/bin/env python3
"""
Aegis host agent: ransomware-like filesystem behaviour detector
Version: 1.0.0
"""

import sys
import signal
import logging
import argparse

from aegis.agent_loop import AgentLoop
from aegis.config.settings import AgentConfig, ConfigError, load_config

DEFAULT_CONFIG_PATH = "config.yml"
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


class AegisAgentApp:
    """Wires configuration, logging and signals around the agent loop"""

    def __init__(self, config: AgentConfig):
        self.config = config
        self.loop = None

    def handle_interrupt(self, signum, frame):
        """Handle SIGINT/SIGTERM by letting the current tick finish"""
        logging.info(f"Received signal {signum}, stopping agent")
        if self.loop is not None:
            self.loop.request_stop()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self.handle_interrupt)
        signal.signal(signal.SIGTERM, self.handle_interrupt)

    def init_components(self) -> None:
        try:
            self.loop = AgentLoop(self.config)
            logging.info("Agent components initialized")
        except Exception as e:
            logging.error(f"Failed to initialize components: {str(e)}")
            raise

    def run(self) -> None:
        self.init_components()
        self.install_signal_handlers()
        self.loop.run()


def setup_logging(debug: bool = False, log_file: str = None) -> None:
    """Log to stderr (stdout carries telemetry lines) and optionally to a file"""
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )


def parse_arguments(argv=None) -> argparse.Namespace:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog="aegis-agent",
        description="Host agent detecting ransomware-like filesystem activity",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument(
        "-c", "--config",
        default=DEFAULT_CONFIG_PATH,
        help="Path to the YAML configuration file"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )

    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_arguments(argv)
    setup_logging(args.debug)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Failed to start agent: {e}", file=sys.stderr)
        return 1

    if config.log_file:
        try:
            setup_logging(args.debug, config.log_file)
        except OSError as e:
            logging.warning(f"Cannot open log file {config.log_file}: {e}")
            setup_logging(args.debug)

    app = AegisAgentApp(config)
    try:
        app.run()
    except KeyboardInterrupt:
        logging.info("Agent interrupted by user")
    except Exception as e:
        print(f"Failed to start agent: {e}", file=sys.stderr)
        logging.exception("Unexpected error occurred")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
