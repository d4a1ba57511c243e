import argparse
import asyncio
import importlib
import json
import sys
from typing import Callable

from loguru import logger

import relaytools.configuration.constants as global_constants
from relaytools.configuration.configuration import get_bot_config, RelayBotConfig
from relaytools.container.service_container import ServiceContainer
from relaytools.protocols.relay_node import RelayNode
from relaytools.utilities.db_manager import DBConnectionManager
from relaytools.utilities.exceptions import StartupConfigError, PersistenceError
from relaytools.utilities.key_value_store import PostgresKeyValueStore
from relaytools.utilities.participant_ledger import ParticipantLedger

def configure_logging(debug: bool, log_to_file: bool = False):
    """Route loguru output to stderr, and optionally to a rotating file in the config directory"""
    level = "DEBUG" if debug else "INFO"
    logger.remove()
    logger.add(sys.stderr, level=level)
    if log_to_file:
        global_constants.CONFIG_DIR.mkdir(exist_ok=True)
        logger.add(
            global_constants.CONFIG_DIR / "relaybot.log",
            level=level,
            rotation="10 MB",
            retention=5,
        )

def load_node_factory(path: str) -> Callable[[RelayBotConfig], RelayNode]:
    """Resolve a 'module:callable' path to a relay node factory"""
    module_name, _, attribute = path.partition(':')
    if not module_name or not attribute:
        raise StartupConfigError('node_factory', f"'{path}' is not of the form module:callable")
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attribute)
    except (ImportError, AttributeError) as e:
        raise StartupConfigError('node_factory', str(e))

def _require_storage(config: RelayBotConfig) -> PostgresKeyValueStore:
    if not config.storage_dsn:
        raise StartupConfigError('storage_dsn', 'is required for this command')
    return PostgresKeyValueStore(DBConnectionManager(config.storage_dsn))

async def _run(config: RelayBotConfig, node_factory: str):
    node = load_node_factory(node_factory)(config)
    container = ServiceContainer.initialize(config=config, node=node)
    await container.serve()

async def _init_db(config: RelayBotConfig):
    store = _require_storage(config)
    try:
        await store.initialize()
    finally:
        await store.db_manager.close()

async def _restore_scores(config: RelayBotConfig) -> int:
    if not config.restore_score_from:
        raise StartupConfigError('restore_score_from', 'is required for this command')
    store = _require_storage(config)
    try:
        await store.initialize()
        ledger = ParticipantLedger(store=store, environment=config.environment)
        return await ledger.restore_scores(config.restore_score_from)
    finally:
        await store.db_manager.close()

def main():
    parser = argparse.ArgumentParser(description="Relay network verification bot")
    parser.add_argument("--config", help="Path to a JSON configuration file")
    parser.add_argument("--log-file", action="store_true", help="Also log to a file in the config directory")
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    run_parser = subparsers.add_parser('run', help='Run the verification bot')
    run_parser.add_argument("--node-factory", required=True,
                            help="module:callable returning a relay node for the configuration")
    subparsers.add_parser('check-config', help='Validate and print the configuration')
    subparsers.add_parser('init-db', help='Create the ledger tables')
    subparsers.add_parser('restore-scores', help='Restore scores from the configured source environment')

    args = parser.parse_args()

    try:
        config = get_bot_config(args.config)
    except StartupConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    configure_logging(config.debug_mode, args.log_file)

    try:
        if args.command == 'run':
            asyncio.run(_run(config, args.node_factory))
        elif args.command == 'check-config':
            print(json.dumps({**config.public_env(), 'environment': config.environment}, indent=2))
        elif args.command == 'init-db':
            asyncio.run(_init_db(config))
        elif args.command == 'restore-scores':
            restored = asyncio.run(_restore_scores(config))
            print(f"Restored {restored} scores into {config.environment}")
        else:
            parser.print_help()
    except StartupConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)
    except PersistenceError as e:
        logger.error(f"Storage unavailable: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nShutting down")

if __name__ == '__main__':
    main()
