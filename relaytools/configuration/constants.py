from enum import Enum, IntEnum
from pathlib import Path
import re

CONFIG_DIR = Path.home().joinpath("relaytools")

# CAMPAIGN ENVIRONMENTS
# Score namespaces that may be used as a score restore source
RELAY_ENVIRONMENTS = (
    'basodino',
    'basodino-develop',
    'basodino-v2',
    'ouagadougou',
    'ouagadougou-develop',
)
DEFAULT_ENVIRONMENT = 'basodino-develop'

# RELAY CONSTANTS
DEFAULT_VERIFICATION_CYCLE_IN_MS = 30_000
DEFAULT_PROBE_TIMEOUT_IN_MS = 10_000
RELAY_CHANNEL_REWARD = 1_000_000_000_000_000  # Payment channel funding per probe, in base units
ENVELOPE_VERSION = 1

# CHAIN CONSTANTS
DEFAULT_CHAIN_PROVIDER = 'https://rpc.gnosischain.com'
DEFAULT_BALANCE_THRESHOLD = '0.001'  # Native currency units

# ATTESTATION CONSTANTS
DEFAULT_ATTESTATION_TAG = 'basodino'
DEFAULT_ATTESTATION_MENTION = 'hoprnet'
ATTESTATION_URL_PATTERN = re.compile(r'https://(?:www\.|mobile\.)?(?:twitter|x)\.com/\S+', re.IGNORECASE)
ATTESTATION_ID_PATTERN = re.compile(r'/status(?:es)?/(\d+)')
ATTESTATION_FETCH_TIMEOUT = 10  # seconds
RELAY_ADDRESS_PATTERN = re.compile(r'16Uiu2HA[1-9A-HJ-NP-Za-km-z]{45}')


class ScoreReward(IntEnum):
    """Named reward events. Scores only ever grow by these amounts"""
    VERIFIED = 10
    RELAYED = 1


class AttestationFlag(Enum):
    HAS_TAG = 'has_tag'
    HAS_MENTION = 'has_mention'
    SAME_NODE = 'same_node'


DEFAULT_REQUIRED_FLAGS = frozenset(AttestationFlag)
