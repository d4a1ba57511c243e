from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, FrozenSet, Callable
import asyncio
from relaytools.configuration.constants import AttestationFlag

class VerificationState(Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"

class NodeState(Enum):
    """States a participant can be told about"""
    NEW_UNVERIFIED = "new_unverified"
    ATTESTATION_IN_PROGRESS = "attestation_in_progress"
    ATTESTATION_FAILED = "attestation_failed"
    ATTESTATION_SUCCEEDED = "attestation_succeeded"
    BALANCE_FAILED = "balance_failed"
    BALANCE_SUCCEEDED = "balance_succeeded"
    ONLINE = "online"
    RELAYING_IN_PROGRESS = "relaying_in_progress"
    RELAYING_SUCCEEDED = "relaying_succeeded"
    RELAYING_FAILED = "relaying_failed"
    VERIFIED = "verified"

class ProbeOutcome(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

class IdentityKind(Enum):
    NATIVE = "native"    # Chain account address
    NETWORK = "network"  # Relay network peer id

class BalanceResult(Enum):
    PASS = "pass"
    FAIL = "fail"

class AttestationDecision(Enum):
    VALID = "valid"
    INVALID = "invalid"

@dataclass
class Participant:
    """A remote relay network identity being verified and rewarded"""
    address: str
    native_address: Optional[str] = None
    attestation_id: Optional[str] = None
    attestation_url: Optional[str] = None
    score: int = 0
    state: VerificationState = VerificationState.UNVERIFIED

    def to_dict(self) -> Dict[str, Any]:
        """Serialized form used in the persisted ledger state"""
        return {
            'id': self.address,
            'native_address': self.native_address,
            'attestation_id': self.attestation_id,
            'attestation_url': self.attestation_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], score: int = 0) -> 'Participant':
        return cls(
            address=data['id'],
            native_address=data.get('native_address'),
            attestation_id=data.get('attestation_id'),
            attestation_url=data.get('attestation_url'),
            score=score,
            state=VerificationState.VERIFIED,
        )

@dataclass
class AttestationFlags:
    has_tag: bool = False
    has_mention: bool = False
    same_node: bool = False

    def is_set(self, flag: AttestationFlag) -> bool:
        return getattr(self, flag.value)

    def missing(self, required: FrozenSet[AttestationFlag]) -> List[AttestationFlag]:
        """Required flags that are not set, in declaration order"""
        return [flag for flag in AttestationFlag if flag in required and not self.is_set(flag)]

@dataclass
class AttestationRecord:
    """Externally hosted text asserting a participant's identity"""
    url: str
    text: str
    flags: AttestationFlags = field(default_factory=AttestationFlags)
    id: Optional[str] = None

@dataclass
class RelayProbe:
    """A bounded relay round trip through a single participant"""
    address: str
    started_at: float  # event loop time
    deadline: Optional[float] = None  # event loop time, set once the relay test is sent
    outcome: ProbeOutcome = ProbeOutcome.PENDING
    timeout_handle: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    @property
    def is_pending(self) -> bool:
        return self.outcome == ProbeOutcome.PENDING

    def arm(self, loop: asyncio.AbstractEventLoop, timeout: float, on_timeout: Callable[..., None], *args):
        """Start the round trip deadline"""
        self.deadline = loop.time() + timeout
        self.timeout_handle = loop.call_at(self.deadline, on_timeout, *args)

    def close(self, outcome: ProbeOutcome) -> bool:
        """Move a pending probe to a final outcome. Returns False if it was already closed"""
        if not self.is_pending:
            return False
        self.outcome = outcome
        if self.timeout_handle is not None:
            self.timeout_handle.cancel()
        return True

@dataclass
class RelayMessage:
    """An inbound message decoded from a relay envelope"""
    sender: Optional[str]
    text: str
    origin_timestamp: int  # ms since epoch
    latency_ms: int

@dataclass
class SendAck:
    intermediate_hops: List[str]

@dataclass
class LedgerSnapshot:
    """Point-in-time dump of the ledger and derived chain metadata"""
    scores: Dict[str, int]
    connected: List[Dict[str, Any]]
    metadata: Dict[str, Any]
    refreshed: datetime

    def state_record(self) -> Dict[str, Any]:
        return {
            **self.metadata,
            'connected': self.connected,
            'refreshed': self.refreshed.isoformat(),
        }
