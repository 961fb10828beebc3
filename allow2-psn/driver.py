"""
Allow2 PlayStation Network plugin command line driver.

Validates a plugin configuration and tests the PSN connection by listing the
child accounts of the family.

:copyright: (c) 2025 by Jack Powell.
:license: Mozilla Public License Version 2.0, see LICENSE for more details.
"""

import asyncio
import logging
import os
import sys

from api import PlayStationNetwork
from config import load_config
from errors import PlayStationPluginError

_LOG = logging.getLogger("driver")

_LOGGERS = ("driver", "api", "auth", "config", "pipeline", "plugin", "sessions")


def setup_logging() -> None:
    """Configure logging from the ALLOW2_PSN_LOG_LEVEL environment variable."""
    logging.basicConfig()

    level = os.getenv("ALLOW2_PSN_LOG_LEVEL", "DEBUG").upper()
    for name in _LOGGERS:
        logging.getLogger(name).setLevel(level)


async def check_connection(config_path: str) -> int:
    """
    Authenticate with PSN and print the family's child accounts.

    :param config_path: Path of the plugin configuration JSON file
    :return: Process exit code
    """
    try:
        config = load_config(config_path)
    except PlayStationPluginError as ex:
        _LOG.error("Invalid configuration: %s", ex)
        return 1

    _LOG.debug("Using configuration %s", config.redacted())
    psn = PlayStationNetwork(config)
    try:
        accounts = await psn.validate_connection()
    except PlayStationPluginError as ex:
        _LOG.error("Failed to connect to PSN: %s", ex)
        return 1
    finally:
        psn.close()

    _LOG.info("Connection successful, %d child accounts found", len(accounts))
    for account in accounts:
        print(f"{account.account_id}\t{account.display_name}")
    return 0


def main() -> None:
    """Run the connection test for the configured plugin."""
    setup_logging()

    config_path = sys.argv[1] if len(sys.argv) > 1 else os.getenv("ALLOW2_PSN_CONFIG")
    if not config_path:
        _LOG.error("Usage: allow2-psn <config.json> (or set ALLOW2_PSN_CONFIG)")
        sys.exit(1)

    sys.exit(asyncio.run(check_connection(config_path)))


if __name__ == "__main__":
    main()
