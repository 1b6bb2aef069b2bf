# File: src/parking_system/main.py
"""
Main application entry point for the Parking System
Wires configuration, logging, collaborators and the interactive shell
"""

from typing import Optional, List
import argparse
import logging
import os
import sys

from .infrastructure.config import load_config, ConfigError, AppConfig
from .application.parking_service import ParkingServiceFactory, ParkingOrchestrator
from .presentation.cli import InteractiveShell


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Setup application logging configuration"""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
    return logging.getLogger("parking_system")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="parking-system",
        description="Parking ticket and fare management console"
    )
    parser.add_argument("--config", help="Path to a YAML configuration file")
    parser.add_argument("--database-url", help="SQLAlchemy database URL (overrides config)")
    parser.add_argument(
        "--in-memory",
        action="store_true",
        help="Keep spots and tickets in memory instead of a database"
    )
    parser.add_argument("--log-level", help="Logging level (overrides config)")
    return parser


def build_orchestrator(config: AppConfig, in_memory: bool = False) -> ParkingOrchestrator:
    if in_memory:
        return ParkingServiceFactory.create_in_memory(settings=config.fare.to_settings())
    return ParkingServiceFactory.create_from_config(config)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application"""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
        overrides = {}
        if args.database_url:
            overrides["database_url"] = args.database_url
        if args.log_level:
            overrides["log_level"] = args.log_level
        if overrides:
            config = AppConfig(**{**config.model_dump(), **overrides})
    except (ConfigError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logger = setup_logging(config.log_level, config.log_file)
    logger.info("Starting Parking System...")

    try:
        orchestrator = build_orchestrator(config, in_memory=args.in_memory)
        InteractiveShell(orchestrator).run()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error in main: {e}", exc_info=True)
        return 1
    finally:
        logger.info("Application shutting down...")

    return 0


if __name__ == "__main__":
    sys.exit(main())
