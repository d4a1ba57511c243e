import asyncio
import traceback
from decimal import Decimal
from typing import List, Optional, Set, Dict
from loguru import logger
from relaytools.models.models import IdentityKind, RelayMessage, SendAck
from relaytools.protocols.relay_node import RelayNode
from relaytools.utilities.envelope import encode_envelope, decode_envelope, now_in_ms
from relaytools.utilities.exceptions import NotStartedError, DecodeError

class RelayGateway:
    """Wraps the relay network node: enveloped send/receive, identity resolution and channels"""

    def __init__(self, node: RelayNode, inbound: Optional[asyncio.Queue] = None):
        self.node = node
        self.inbound: asyncio.Queue = inbound if inbound is not None else asyncio.Queue()
        self.started = False
        self._identities: Dict[IdentityKind, str] = {}

    def _require_started(self, operation: str):
        if not self.started:
            logger.error(f"RelayGateway.{operation}: called before the relay node was started")
            raise NotStartedError(operation)

    async def start(self) -> bool:
        """Start the relay node. Returns False if the node could not be started"""
        try:
            logger.info("RelayGateway.start: Starting relay node")
            await self.node.start(self._on_payload)
            self.started = True
            logger.info("RelayGateway.start: Started relay node")
        except Exception as e:
            logger.error(f"RelayGateway.start: Unable to start relay node: {e}")
            logger.error(traceback.format_exc())
        return self.started

    def _on_payload(self, payload: bytes):
        """Decode a delivered payload and queue it. Undecodable payloads are dropped"""
        try:
            envelope = decode_envelope(payload)
        except DecodeError as e:
            logger.error(f"RelayGateway._on_payload: {e}")
            logger.debug(f"RelayGateway._on_payload: Dropped payload {payload[:64]!r}")
            return

        latency = envelope.latency_ms(now_in_ms())
        logger.debug(f"RelayGateway._on_payload: Received message from {envelope.sender}, latency {latency}ms")
        self.inbound.put_nowait(
            RelayMessage(
                sender=envelope.sender,
                text=envelope.body,
                origin_timestamp=envelope.origin_timestamp,
                latency_ms=latency,
            )
        )

    async def send(
            self,
            destination: str,
            payload: str,
            intermediate_hops: Optional[List[str]] = None,
            include_sender: bool = True
        ) -> SendAck:
        """
        Send a message through the relay network.

        Args:
            destination: Recipient address
            payload: Message text
            intermediate_hops: Relay addresses the message must pass through, in order
            include_sender: Embed our network address so the recipient can reply

        Returns:
            SendAck: The hops the message was routed through
        """
        self._require_started('send')
        intermediate_hops = list(intermediate_hops or [])
        sender = await self.identity(IdentityKind.NETWORK) if include_sender else None
        logger.debug(f"RelayGateway.send: Sending {len(intermediate_hops)} hop message to {destination}")
        await self.node.send_message(encode_envelope(payload, sender=sender), destination, intermediate_hops)
        return SendAck(intermediate_hops=intermediate_hops)

    async def identity(self, kind: IdentityKind) -> str:
        """Our own address of the given kind. Resolved once per gateway"""
        self._require_started('identity')
        if kind not in self._identities:
            self._identities[kind] = await self.node.own_address(kind)
        return self._identities[kind]

    async def native_address_of(self, peer_id: str) -> str:
        self._require_started('native_address_of')
        return await self.node.native_address_of(peer_id)

    def list_connected_peers(self) -> Set[str]:
        self._require_started('list_connected_peers')
        return set(self.node.list_connected_peers())

    async def open_channel(self, counterparty: str, amount: int) -> str:
        """Open a funded payment channel to counterparty. Returns the hex channel id"""
        self._require_started('open_channel')
        channel_id = await self.node.open_payment_channel(counterparty, amount)
        return '0x' + channel_id.hex() if isinstance(channel_id, (bytes, bytearray)) else str(channel_id)

    async def balance(self) -> Decimal:
        self._require_started('balance')
        return Decimal(await self.node.get_balance())
