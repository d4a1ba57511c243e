"""
Drives participant verification and relay probing.

Two independent flows share the participant ledger and the pending probe map:

1. Inbound messages run through a fixed transition table:
   - a message from our own address is a completed round trip and rewards the relayer,
     once per relay test we actually sent;
   - a participant with a pending probe is told to wait;
   - an attestation link triggers attestation, balance and ledger checks;
   - anything else gets onboarding instructions.
   Every message except the first two kinds ends with exactly one status summary.

2. A periodic cycle persists the ledger and picks a random verified participant
   to relay a message back to us. The deadline starts when the relay test is sent.
   Probes that don't return before it fail without penalty, and the participant
   becomes eligible again.

Everything runs on one event loop. The probe map is only touched from loop
callbacks, and a probe is registered before the first await of its startup.
"""
# Standard imports
from datetime import datetime, timezone
from typing import Dict, Optional, List, Set, Any
import asyncio
import random
import traceback

# Third party imports
from loguru import logger

# Relaytools imports
import relaytools.prompts.bot_responses as responses
from relaytools.configuration.configuration import RelayBotConfig
from relaytools.configuration.constants import ScoreReward, RELAY_CHANNEL_REWARD
from relaytools.models.models import (
    NodeState,
    ProbeOutcome,
    RelayProbe,
    RelayMessage,
    IdentityKind,
    BalanceResult,
    AttestationDecision,
    VerificationState,
)
from relaytools.utilities.attestation import AttestationVerifier, FetchOptions, find_relay_address
from relaytools.utilities.balance_gate import BalanceGate
from relaytools.utilities.participant_ledger import ParticipantLedger
from relaytools.utilities.relay_gateway import RelayGateway
from relaytools.utilities.exceptions import (
    TransientFetchError,
    PersistenceError,
    ProbeAlreadyPendingError,
)

class VerificationOrchestrator:
    """
    Verification state machine and probe cycle scheduler.

    Dependencies:
    - gateway: relay network send/receive and identities
    - attestation_verifier: fetches and classifies attestation posts
    - balance_gate: live chain balance checks
    - ledger: participant records and scores

    State:
    - pending_probes: address -> RelayProbe, at most one per address
    - unrewarded_probes: address -> last probe whose relay test went out, until its round trip is rewarded
    - outbound notification tasks, drained on shutdown
    """
    def __init__(
            self,
            config: RelayBotConfig,
            gateway: RelayGateway,
            attestation_verifier: AttestationVerifier,
            balance_gate: BalanceGate,
            ledger: ParticipantLedger
        ):
        self.config = config
        self.gateway = gateway
        self.attestation_verifier = attestation_verifier
        self.balance_gate = balance_gate
        self.ledger = ledger

        # state
        self.pending_probes: Dict[str, RelayProbe] = {}
        self.unrewarded_probes: Dict[str, RelayProbe] = {}
        self.address: Optional[str] = None
        self.native_address: Optional[str] = None
        self._outbound: Set[asyncio.Task] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._cycle_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._cycle_task is not None and not self._cycle_task.done()

    # LIFECYCLE

    async def start(self):
        """Resolve identities, prepare the ledger and start the probe cycle"""
        self.address = await self.gateway.identity(IdentityKind.NETWORK)
        self.native_address = await self.gateway.identity(IdentityKind.NATIVE)

        logger.info(f"VerificationOrchestrator.start: Relay Address: {self.address}")
        logger.info(f"VerificationOrchestrator.start: Native Address: {self.native_address}")
        logger.info(f"VerificationOrchestrator.start: Chain Provider: {self.config.chain_provider}")
        logger.info(f"VerificationOrchestrator.start: Environment: {self.config.environment}")
        logger.info(f"VerificationOrchestrator.start: Threshold: {self.config.balance_threshold}")
        logger.info(f"VerificationOrchestrator.start: Debug Mode: {self.config.debug_mode}")
        logger.info(f"VerificationOrchestrator.start: Verification Cycle: {self.config.verification_cycle_in_ms}ms")
        logger.info(f"VerificationOrchestrator.start: Probe Timeout: {self.config.probe_timeout_in_ms}ms")
        logger.info(f"VerificationOrchestrator.start: Relaying Starts At: {self.config.relay_start.isoformat()}")

        await self.prepare_ledger()

        self._shutdown_event.clear()
        self._cycle_task = asyncio.create_task(self._cycle_loop(), name="VerificationCycle")

    async def prepare_ledger(self) -> bool:
        """One-time score restore followed by the ledger load. Returns False if storage was unavailable"""
        try:
            if self.config.restore_score_from and not self.ledger.scores_restored:
                logger.info(
                    f"VerificationOrchestrator.prepare_ledger: Restoring scores from "
                    f"'{self.config.restore_score_from}' if our scores don't exist"
                )
                await self.ledger.restore_scores(self.config.restore_score_from)
            if not self.ledger.loaded:
                await self.ledger.load()
        except PersistenceError as e:
            logger.error(f"VerificationOrchestrator.prepare_ledger: {e}. Will retry on next cycle")
            return False
        return True

    async def run(self):
        """Consume inbound messages until stopped. Each message is handled in its own task"""
        while not self._shutdown_event.is_set():
            try:
                message = await asyncio.wait_for(self.gateway.inbound.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            self._spawn(self.handle_message(message), name=f"HandleMessage_{message.sender}")
            self.gateway.inbound.task_done()

    async def stop(self):
        """Stop the probe cycle, cancel pending probes and flush outbound notifications"""
        logger.info("VerificationOrchestrator.stop: Stopping")
        self._shutdown_event.set()

        if self._cycle_task:
            self._cycle_task.cancel()
            try:
                await self._cycle_task
            except asyncio.CancelledError:
                pass
            self._cycle_task = None

        for address in list(self.pending_probes):
            self.cancel_probe(address)

        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.drain_notifications()

    def _spawn(self, coro, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # NOTIFICATIONS

    def _notify(self, recipient: str, text: str, intermediate_hops: Optional[List[str]] = None):
        """Send a message without waiting for it. Failures are logged and never propagate"""
        logger.debug(f"VerificationOrchestrator._notify: -> {recipient}: {text}")
        task = asyncio.create_task(self.gateway.send(recipient, text, intermediate_hops or []))
        self._outbound.add(task)

        def _on_done(t: asyncio.Task):
            self._outbound.discard(t)
            if t.cancelled():
                return
            if (error := t.exception()) is not None:
                logger.error(f"VerificationOrchestrator._notify: Sending message to {recipient} failed: {error}")

        task.add_done_callback(_on_done)

    async def drain_notifications(self):
        """Wait for all outstanding outbound messages"""
        while self._outbound:
            await asyncio.gather(*list(self._outbound), return_exceptions=True)

    # INBOUND MESSAGES

    async def handle_message(self, message: RelayMessage):
        """Route an inbound message through the transition table"""
        sender = message.sender
        logger.debug(f"VerificationOrchestrator.handle_message: <- {sender}: {message.text}")

        if not sender:
            logger.warning("VerificationOrchestrator.handle_message: Dropping message without a sender")
            return

        if sender == self.address:
            await self._handle_round_trip(message)
            return

        if self.has_pending_probe(sender):
            # The probe's own timeout or round trip will resolve this participant
            self._notify(sender, responses.relaying_in_progress_response)
            return

        node_state = NodeState.NEW_UNVERIFIED
        try:
            url = self.attestation_verifier.find_attestation_url(message.text)
            if url:
                node_state = await self._verify_participant(sender, url)
            else:
                self._notify(sender, responses.new_unverified_response)
        except Exception as e:
            logger.error(f"VerificationOrchestrator.handle_message: Error handling message from {sender}: {e}")
            logger.error(traceback.format_exc())
        finally:
            self._notify(sender, responses.status_response(node_state, self.ledger.score_of(sender)))

    async def _verify_participant(self, sender: str, url: str) -> NodeState:
        """
        Attestation, balance and ledger steps.

        Returns the state the participant ended in. If a step raises, the last
        state reached before it is returned.
        """
        node_state = NodeState.ATTESTATION_FAILED
        try:
            self._notify(sender, responses.attestation_in_progress_response)

            try:
                record = await self.attestation_verifier.verify(url, claimed_address=sender)
            except TransientFetchError as e:
                logger.warning(f"VerificationOrchestrator._verify_participant: {e}")
                self._notify(sender, responses.attestation_failed_response([]))
                return NodeState.ATTESTATION_FAILED

            if self.attestation_verifier.decide(record.flags) == AttestationDecision.INVALID:
                missing = record.flags.missing(self.attestation_verifier.required_flags)
                self._notify(sender, responses.attestation_failed_response(missing))
                return NodeState.ATTESTATION_FAILED

            node_state = NodeState.ATTESTATION_SUCCEEDED
            self._notify(sender, responses.attestation_succeeded_response)

            try:
                native_address = await self.gateway.native_address_of(sender)
                balance, result = await self.balance_gate.check(native_address, self.config.balance_threshold)
            except TransientFetchError as e:
                logger.warning(f"VerificationOrchestrator._verify_participant: {e}")
                self._notify(sender, responses.balance_unavailable_response)
                return NodeState.BALANCE_FAILED

            if result == BalanceResult.FAIL:
                self._notify(sender, responses.balance_failed_response(balance, self.config.balance_threshold))
                return NodeState.BALANCE_FAILED

            prior_score = self.ledger.score_of(sender)
            self.ledger.upsert(
                sender,
                native_address=native_address,
                attestation_id=record.id,
                attestation_url=record.url,
                state=VerificationState.VERIFIED,
            )
            if prior_score == 0:
                self.ledger.add_reward(sender, ScoreReward.VERIFIED)
            node_state = NodeState.BALANCE_SUCCEEDED

            await self.persist_ledger()

            self._notify(sender, responses.balance_succeeded_response(balance))
            return node_state

        except Exception as e:
            logger.error(f"VerificationOrchestrator._verify_participant: Error verifying {sender}: {e}")
            logger.error(traceback.format_exc())
            return node_state

    async def _handle_round_trip(self, message: RelayMessage):
        """Our relay test came back. Reward the participant it went through"""
        relayer = find_relay_address(message.text)
        if not relayer:
            logger.warning(f"VerificationOrchestrator._handle_round_trip: No relayer in message: {message.text}")
            return

        if self.unrewarded_probes.pop(relayer, None) is None:
            # Duplicate delivery, or a message claiming our address that we never relayed
            logger.warning(f"VerificationOrchestrator._handle_round_trip: No relay test outstanding for {relayer}, ignoring")
            return

        logger.info(
            f"VerificationOrchestrator._handle_round_trip: Successful relay through {relayer} "
            f"({message.latency_ms}ms)"
        )
        self._notify(relayer, responses.relaying_succeeded_response)

        if not self.close_probe(relayer, ProbeOutcome.SUCCEEDED):
            logger.info(f"VerificationOrchestrator._handle_round_trip: {relayer} returned after its deadline")

        new_score = self.ledger.add_reward(relayer, ScoreReward.RELAYED)
        await self.ledger.persist_scores()
        self._notify(relayer, responses.verified_response(new_score))

    # PROBES

    def has_pending_probe(self, address: str) -> bool:
        probe = self.pending_probes.get(address)
        return probe is not None and probe.is_pending

    def start_probe(self, address: str) -> RelayProbe:
        """
        Register a pending probe. Synchronous, so no other task can start a probe
        for the same address in between. The timeout is armed once the relay test is sent.

        Raises:
            ProbeAlreadyPendingError: If the address already has a pending probe
        """
        if self.has_pending_probe(address):
            raise ProbeAlreadyPendingError(address)

        probe = RelayProbe(address=address, started_at=asyncio.get_running_loop().time())
        self.pending_probes[address] = probe
        return probe

    def close_probe(self, address: str, outcome: ProbeOutcome) -> bool:
        """Close and remove a pending probe. Returns False if there was none"""
        probe = self.pending_probes.pop(address, None)
        if probe is None:
            return False
        return probe.close(outcome)

    def cancel_probe(self, address: str) -> bool:
        return self.close_probe(address, ProbeOutcome.CANCELLED)

    def _on_probe_timeout(self, address: str, probe: RelayProbe):
        """The deadline passed without a round trip"""
        if self.pending_probes.get(address) is not probe or not probe.is_pending:
            return

        self.close_probe(address, ProbeOutcome.FAILED)
        logger.info(f"VerificationOrchestrator._on_probe_timeout: No response from {address}")
        self._notify(address, responses.relaying_failed_response)

    def select_participant(self) -> Optional[str]:
        """Uniformly random verified participant without a pending probe"""
        candidates = [a for a in self.ledger.verified_addresses() if not self.has_pending_probe(a)]
        if not candidates:
            return None
        return random.choice(candidates)

    def _abandon_probe(self, probe: RelayProbe):
        """Cancel a probe only if it is still the one registered for its address"""
        if self.pending_probes.get(probe.address) is probe:
            self.cancel_probe(probe.address)

    async def _run_probe(self, address: str, probe: RelayProbe):
        """Confirm the attestation is still up, fund a channel and send a message to ourselves through address"""
        participant = self.ledger.get(address)
        logger.info(f"VerificationOrchestrator._run_probe: Probing {address}, looking for {participant.attestation_url}")

        try:
            text = await self.attestation_verifier.fetch(
                participant.attestation_url,
                FetchOptions(mock=self.config.debug_mode)
            )
        except TransientFetchError as e:
            logger.info(f"VerificationOrchestrator._run_probe: {e}. Skipping {address} this cycle")
            self._abandon_probe(probe)
            return

        if not self.attestation_verifier.extract_address(text):
            logger.info(f"VerificationOrchestrator._run_probe: No relay address in attestation of {address}")
            self._abandon_probe(probe)
            return

        if not probe.is_pending:
            return

        self._notify(address, responses.online_response)

        channel_id = await self.gateway.open_channel(address, RELAY_CHANNEL_REWARD)
        self._notify(address, responses.channel_opened_response(channel_id))

        if not probe.is_pending:
            return

        logger.info(
            f"VerificationOrchestrator._run_probe: Relaying through {address}, "
            f"checking in {self.config.probe_timeout_in_ms}ms"
        )
        probe.arm(asyncio.get_running_loop(), self.config.probe_timeout_seconds, self._on_probe_timeout, address, probe)
        self.unrewarded_probes[address] = probe
        self._notify(self.address, responses.relay_test_message(address), [address])

    # CYCLE

    async def _cycle_loop(self):
        """Start a verification cycle every interval. Cycles run concurrently with each other"""
        while not self._shutdown_event.is_set():
            await asyncio.sleep(self.config.verification_cycle_seconds)
            self._spawn(self.verification_cycle(), name="VerificationCycleTick")

    async def verification_cycle(self):
        """One tick: persist the ledger, then maybe probe one participant"""
        if not self.ledger.loaded and not await self.prepare_ledger():
            return

        await self.persist_ledger()

        now = datetime.now(timezone.utc)
        if now < self.config.relay_start:
            logger.debug(
                f"VerificationOrchestrator.verification_cycle: Not ready to relay. "
                f"It's {now.isoformat()}, waiting until {self.config.relay_start.isoformat()}"
            )
            return

        address = self.select_participant()
        if address is None:
            logger.debug("VerificationOrchestrator.verification_cycle: No participant to probe. Skipping")
            return

        try:
            probe = self.start_probe(address)
        except ProbeAlreadyPendingError:
            logger.debug(f"VerificationOrchestrator.verification_cycle: {address} is already relaying. Skipping")
            return

        try:
            await self._run_probe(address, probe)
        except Exception as e:
            # The participant stays verified and can be probed again next cycle
            logger.error(f"VerificationOrchestrator.verification_cycle: Error probing {address}: {e}")
            logger.error(traceback.format_exc())
            self._abandon_probe(probe)

    # PERSISTENCE

    async def _ledger_metadata(self) -> Dict[str, Any]:
        """Chain and node details saved alongside the ledger. Unavailable values are None"""
        metadata: Dict[str, Any] = {
            'env': self.config.public_env(),
            'bot_address': self.address,
            'bot_native_address': self.native_address,
            'connected_peers': None,
            'chain_id': None,
            'balance': None,
            'available': None,
            'locked': 0,
        }

        try:
            metadata['connected_peers'] = sorted(self.gateway.list_connected_peers())
            metadata['available'] = str(await self.gateway.balance())
        except Exception as e:
            logger.warning(f"VerificationOrchestrator._ledger_metadata: Could not query relay node: {e}")

        if self.native_address:
            try:
                metadata['chain_id'] = await self.balance_gate.chain_id()
                metadata['balance'] = str(await self.balance_gate.native_balance(self.native_address))
            except TransientFetchError as e:
                logger.warning(f"VerificationOrchestrator._ledger_metadata: {e}")

        return metadata

    async def persist_ledger(self) -> bool:
        """Best-effort snapshot of the ledger into storage"""
        metadata = await self._ledger_metadata()
        return await self.ledger.persist(self.ledger.snapshot(metadata))
