# Standard Library
from dataclasses import dataclass
from typing import Optional
import traceback
import asyncio

# Third Party
from loguru import logger

# Local
from ..configuration.configuration import RelayBotConfig
from ..protocols.relay_node import RelayNode
from ..protocols.key_value_store import KeyValueStore
from ..utilities.attestation import AttestationVerifier
from ..utilities.balance_gate import BalanceGate
from ..utilities.db_manager import DBConnectionManager
from ..utilities.key_value_store import PostgresKeyValueStore, MemoryKeyValueStore
from ..utilities.participant_ledger import ParticipantLedger
from ..utilities.relay_gateway import RelayGateway
from ..utilities.verification_orchestrator import VerificationOrchestrator
from ..utilities.exceptions import PersistenceError

@dataclass
class ServiceContainer:
    """Container for relay bot service initialization and management"""
    config: RelayBotConfig
    store: KeyValueStore
    gateway: RelayGateway
    ledger: ParticipantLedger
    orchestrator: VerificationOrchestrator
    db_connection_manager: Optional[DBConnectionManager] = None

    @classmethod
    def initialize(
        cls,
        config: RelayBotConfig,
        node: RelayNode,
        store: Optional[KeyValueStore] = None
    ) -> 'ServiceContainer':
        """
        Initialize all relay bot services

        Args:
            config: Validated bot configuration
            node: Relay network node implementation
            store: Optional store override. Defaults to Postgres when a DSN is configured, memory otherwise
        """
        try:
            db_connection_manager = None
            if store is None:
                if config.storage_dsn:
                    db_connection_manager = DBConnectionManager(config.storage_dsn)
                    store = PostgresKeyValueStore(db_connection_manager)
                else:
                    logger.warning("ServiceContainer.initialize: No storage DSN configured, ledger is kept in memory")
                    store = MemoryKeyValueStore()

            gateway = RelayGateway(node=node)

            attestation_verifier = AttestationVerifier(
                expected_tag=config.attestation_tag,
                expected_mention=config.attestation_mention,
                required_flags=config.required_flags,
                debug_mode=config.debug_mode,
                debug_relay_address=config.debug_relay_address,
            )

            balance_gate = BalanceGate(chain_provider=config.chain_provider)

            ledger = ParticipantLedger(store=store, environment=config.environment)

            orchestrator = VerificationOrchestrator(
                config=config,
                gateway=gateway,
                attestation_verifier=attestation_verifier,
                balance_gate=balance_gate,
                ledger=ledger,
            )

            logger.info("All relay bot services initialized")

            return cls(
                config=config,
                store=store,
                gateway=gateway,
                ledger=ledger,
                orchestrator=orchestrator,
                db_connection_manager=db_connection_manager,
            )

        except Exception as e:
            logger.error(f"Error initializing services: {e}")
            logger.error(traceback.format_exc())
            raise

    @property
    def running(self):
        """Check if the orchestrator is running"""
        return self.orchestrator.running

    async def start(self) -> bool:
        """Start the relay node, the storage backend and the orchestrator. Storage failures are retried later"""
        if isinstance(self.store, PostgresKeyValueStore):
            try:
                await self.store.initialize()
            except PersistenceError as e:
                logger.error(f"ServiceContainer.start: {e}. Tables will be created on first successful access")

        if not await self.gateway.start():
            logger.error("ServiceContainer.start: Relay node did not start")
            return False

        await self.orchestrator.start()
        return True

    async def serve(self):
        """Start everything and handle messages until cancelled"""
        if not await self.start():
            return
        try:
            await self.orchestrator.run()
        except asyncio.CancelledError:
            logger.info("ServiceContainer.serve: Cancelled")
        finally:
            await self.stop()

    async def stop(self):
        await self.orchestrator.stop()
        if self.db_connection_manager:
            await self.db_connection_manager.close()
