from typing import Protocol, Callable, List, Set
from decimal import Decimal
from relaytools.models.models import IdentityKind

class RelayNode(Protocol):
    """Protocol for the relay network node. Routing, encryption and payment channels live behind it"""

    async def start(self, on_payload: Callable[[bytes], None]) -> None:
        """Start the node. on_payload is called with every raw payload delivered to us"""
        ...

    async def send_message(self, payload: bytes, destination: str, intermediate_hops: List[str]) -> None:
        """Send a raw payload to destination through the given intermediate hops"""
        ...

    async def own_address(self, kind: IdentityKind) -> str:
        """Our own address, either the chain account or the relay network peer id"""
        ...

    async def native_address_of(self, peer_id: str) -> str:
        """Derive the chain account address of another peer"""
        ...

    def list_connected_peers(self) -> Set[str]:
        """Peers currently connected to the node"""
        ...

    async def open_payment_channel(self, counterparty: str, amount: int) -> bytes:
        """Open and fund a payment channel, returning its channel id"""
        ...

    async def get_balance(self) -> Decimal:
        """Balance available to the node for funding channels"""
        ...
