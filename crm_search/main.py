#!/usr/bin/env python3
"""
CRM Search Engine - Main Entry Point

This module serves as the entry point for the search server, loading
configuration and starting the HTTP server.
"""

import argparse
import sys
from pathlib import Path

from crm_search.config.config import load_config, load_config_from_env
from crm_search.server.server import create_server
from crm_search.utils.environment import load_env_file
from crm_search.utils.logging import configure_logging, get_logger


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="CRM Search Engine")
    parser.add_argument(
        "--config", "-c",
        help="Path to configuration file; environment variables are used if omitted",
        default=None,
    )
    parser.add_argument(
        "--log-level", "-l",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
    )
    parser.add_argument(
        "--env-file", "-e",
        help="Path to .env file",
        default=None,
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Application entry point."""
    args = parse_arguments(argv)

    load_env_file(args.env_file)

    configure_logging(log_level=args.log_level or "INFO")
    logger = get_logger(__name__)

    logger.info("Starting CRM Search Engine")

    try:
        if args.config:
            config_path = Path(args.config)
            if not config_path.exists():
                logger.error(f"Configuration file not found: {config_path}")
                sys.exit(1)
            config = load_config(config_path)
            logger.info(f"Configuration loaded from {config_path}")
        else:
            config = load_config_from_env()
            logger.info("Configuration loaded from environment")

        configure_logging(
            config_path=config.logging.config_file,
            log_level=args.log_level or config.logging.level,
            log_file=config.logging.log_file,
        )

        server = create_server(config)
        logger.info(f"Server created, listening on {config.server.host}:{config.server.port}")
        server.run()

    except Exception as e:
        logger.exception(f"Error starting server: {e}")
        sys.exit(1)

    logger.info("CRM Search Engine stopped")


if __name__ == "__main__":
    main()
