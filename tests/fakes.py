"""In-process stand-ins for the relay node, attestation host, chain and database used across tests"""
import asyncio
import contextlib
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Set, Tuple
from relaytools.configuration.configuration import RelayBotConfig
from relaytools.models.models import IdentityKind, BalanceResult
from relaytools.utilities.attestation import AttestationVerifier, FetchOptions
from relaytools.utilities.envelope import decode_envelope, Envelope
from relaytools.utilities.exceptions import TransientFetchError, PersistenceError
from relaytools.utilities.key_value_store import MemoryKeyValueStore

BOT_ADDRESS = '16Uiu2HA' + 'C' * 45
BOT_NATIVE_ADDRESS = '0x' + '11' * 20
PARTICIPANT = '16Uiu2HA' + 'B' * 45
OTHER_PARTICIPANT = '16Uiu2HA' + 'D' * 45
ATTESTATION_URL = 'https://twitter.com/relayer/status/1311000000000000001'
OTHER_ATTESTATION_URL = 'https://twitter.com/other/status/1311000000000000002'

def native_address_for(peer_id: str) -> str:
    return '0x' + peer_id[-40:].lower()

def valid_attestation(address: str) -> str:
    return f"Running a relay node for the campaign #basodino @hoprnet {address}"

class FakeRelayNode:
    def __init__(self, fail_start: bool = False):
        self.fail_start = fail_start
        self.fail_sends = False
        self.fail_channels = False
        self.fail_native_address = False
        self.channel_delay = 0.0
        self.on_payload: Optional[Callable[[bytes], None]] = None
        self.sent: List[Tuple[bytes, str, List[str]]] = []
        self.channels: List[Tuple[str, int]] = []
        self.connected_peers: Set[str] = {PARTICIPANT}

    async def start(self, on_payload):
        if self.fail_start:
            raise ConnectionError("bootstrap servers unreachable")
        self.on_payload = on_payload

    async def send_message(self, payload: bytes, destination: str, intermediate_hops: List[str]):
        self.sent.append((payload, destination, list(intermediate_hops)))
        if self.fail_sends:
            raise ConnectionError("no route to peer")

    async def own_address(self, kind: IdentityKind) -> str:
        return BOT_ADDRESS if kind == IdentityKind.NETWORK else BOT_NATIVE_ADDRESS

    async def native_address_of(self, peer_id: str) -> str:
        if self.fail_native_address:
            raise RuntimeError("peer id could not be converted")
        return native_address_for(peer_id)

    def list_connected_peers(self) -> Set[str]:
        return set(self.connected_peers)

    async def open_payment_channel(self, counterparty: str, amount: int) -> bytes:
        if self.channel_delay:
            await asyncio.sleep(self.channel_delay)
        if self.fail_channels:
            raise RuntimeError("insufficient funds to open channel")
        self.channels.append((counterparty, amount))
        return bytes.fromhex('ab' * 32)

    async def get_balance(self) -> Decimal:
        return Decimal('100')

    # helpers

    def envelopes(self) -> List[Tuple[Envelope, str, List[str]]]:
        return [(decode_envelope(payload), destination, hops) for payload, destination, hops in self.sent]

    def bodies_to(self, destination: str) -> List[str]:
        return [envelope.body for envelope, dest, hops in self.envelopes() if dest == destination and not hops]

    def relayed(self) -> List[Tuple[bytes, str, List[str]]]:
        return [(payload, dest, hops) for payload, dest, hops in self.sent if hops]

class FakeAttestationVerifier(AttestationVerifier):
    """Serves attestation texts from a dict instead of the network"""

    def __init__(self, texts: Optional[Dict[str, str]] = None, **kwargs):
        super().__init__(**kwargs)
        self.texts = texts if texts is not None else {}
        self.fetched: List[str] = []
        self.unreachable: Set[str] = set()

    async def fetch(self, url: str, options: Optional[FetchOptions] = None) -> str:
        self.fetched.append(url)
        if url in self.unreachable:
            raise TransientFetchError(url, "read timed out")
        return self.texts.get(url, '')

class FakeBalanceGate:
    def __init__(self, balances: Optional[Dict[str, Decimal]] = None):
        self.balances = balances if balances is not None else {}
        self.checked: List[str] = []
        self.unreachable = False

    async def native_balance(self, address: str) -> Decimal:
        if self.unreachable:
            raise TransientFetchError(f"balance of {address}", "connection refused")
        return self.balances.get(address, Decimal('0'))

    async def check(self, address: str, threshold: Decimal):
        self.checked.append(address)
        balance = await self.native_balance(address)
        return balance, BalanceResult.PASS if balance >= threshold else BalanceResult.FAIL

    async def chain_id(self) -> int:
        return 100

class FailingKeyValueStore(MemoryKeyValueStore):
    """Reads work, writes fail until healed"""

    def __init__(self, documents=None):
        super().__init__(documents)
        self.failing = True

    async def set(self, key, value):
        if self.failing:
            raise PersistenceError(key, "connection reset by peer")
        await super().set(key, value)

class FakeConnection:
    def __init__(self, executed: List[str]):
        self.executed = executed

    async def execute(self, statement, *args):
        self.executed.append(statement)

    async def fetchval(self, query, *args):
        return None

class FakePool:
    def __init__(self):
        self.executed: List[str] = []

    @contextlib.asynccontextmanager
    async def acquire(self):
        yield FakeConnection(self.executed)

class FlakyDBManager:
    """Refuses connections until marked available"""

    def __init__(self):
        self.available = False
        self.pool = FakePool()

    async def get_pool(self):
        if not self.available:
            raise OSError("connection refused")
        return self.pool

    async def close(self):
        pass

def make_config(**overrides) -> RelayBotConfig:
    options = {
        'balance_threshold': Decimal('1'),
        'environment': 'basodino-develop',
        'verification_cycle_in_ms': 3_600_000,
        'probe_timeout_in_ms': 10_000,
    }
    options.update(overrides)
    return RelayBotConfig(**options)
