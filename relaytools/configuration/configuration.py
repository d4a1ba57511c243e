from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, Mapping, FrozenSet
from pathlib import Path
import json
import os
from loguru import logger
import relaytools.configuration.constants as global_constants
from relaytools.configuration.constants import AttestationFlag
from relaytools.utilities.exceptions import StartupConfigError

ENV_PREFIX = 'RELAYBOT_'

@dataclass
class RelayBotConfig:
    """Configuration for a relay verification bot"""
    chain_provider: str = global_constants.DEFAULT_CHAIN_PROVIDER
    debug_mode: bool = False
    verification_cycle_in_ms: int = global_constants.DEFAULT_VERIFICATION_CYCLE_IN_MS
    probe_timeout_in_ms: int = global_constants.DEFAULT_PROBE_TIMEOUT_IN_MS
    balance_threshold: Decimal = Decimal(global_constants.DEFAULT_BALANCE_THRESHOLD)
    environment: str = global_constants.DEFAULT_ENVIRONMENT
    relay_start: Optional[datetime] = None  # Campaign start. Probing is skipped before it
    restore_score_from: Optional[str] = None
    debug_relay_address: Optional[str] = None
    storage_dsn: Optional[str] = None  # No DSN means an in-memory store
    attestation_tag: str = global_constants.DEFAULT_ATTESTATION_TAG
    attestation_mention: str = global_constants.DEFAULT_ATTESTATION_MENTION
    required_flags: FrozenSet[AttestationFlag] = field(default_factory=lambda: global_constants.DEFAULT_REQUIRED_FLAGS)

    def __post_init__(self):
        """Validate configuration and set defaults"""
        if self.relay_start is None:
            self.relay_start = datetime.now(timezone.utc)

        if not isinstance(self.balance_threshold, Decimal):
            self.balance_threshold = _parse_decimal('balance_threshold', self.balance_threshold)
        if self.balance_threshold < 0:
            raise StartupConfigError('balance_threshold', 'must not be negative')

        if self.verification_cycle_in_ms <= 0:
            raise StartupConfigError('verification_cycle_in_ms', 'must be positive')
        if self.probe_timeout_in_ms <= 0:
            raise StartupConfigError('probe_timeout_in_ms', 'must be positive')

        if not self.environment:
            raise StartupConfigError('environment', 'must not be empty')

        # restore_score_from must be a known campaign environment
        if self.restore_score_from and self.restore_score_from not in global_constants.RELAY_ENVIRONMENTS:
            raise StartupConfigError(
                'restore_score_from',
                f"'{self.restore_score_from}' is not a valid relay environment"
            )

        if self.debug_mode and self.debug_relay_address:
            if not global_constants.RELAY_ADDRESS_PATTERN.fullmatch(self.debug_relay_address):
                raise StartupConfigError('debug_relay_address', 'is not a relay address')

    @property
    def verification_cycle_seconds(self) -> float:
        return self.verification_cycle_in_ms / 1000

    @property
    def probe_timeout_seconds(self) -> float:
        return self.probe_timeout_in_ms / 1000

    def public_env(self) -> dict:
        """Settings echoed into the persisted ledger state. Excludes the storage DSN"""
        return {
            'chain_provider': self.chain_provider,
            'debug_mode': self.debug_mode,
            'verification_cycle_in_ms': self.verification_cycle_in_ms,
            'balance_threshold': str(self.balance_threshold),
            'relay_start': self.relay_start.isoformat(),
        }

def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')

def _parse_decimal(option: str, value) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise StartupConfigError(option, f"'{value}' is not a number")

def _parse_int(option: str, value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise StartupConfigError(option, f"'{value}' is not an integer")

def _parse_timestamp(option: str, value) -> datetime:
    """Campaign start is given as unix seconds"""
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        raise StartupConfigError(option, f"'{value}' is not a unix timestamp")

def _config_from_mapping(values: Mapping[str, object]) -> RelayBotConfig:
    """Build a RelayBotConfig from option name -> raw value pairs"""
    kwargs = {}
    for key, raw in values.items():
        if raw is None or raw == '':
            continue
        match key:
            case 'chain_provider' | 'environment' | 'restore_score_from' | 'debug_relay_address' \
                    | 'storage_dsn' | 'attestation_tag' | 'attestation_mention':
                kwargs[key] = str(raw)
            case 'debug_mode':
                kwargs[key] = raw if isinstance(raw, bool) else _parse_bool(str(raw))
            case 'verification_cycle_in_ms' | 'probe_timeout_in_ms':
                kwargs[key] = _parse_int(key, raw)
            case 'balance_threshold':
                kwargs[key] = _parse_decimal(key, raw)
            case 'relay_start':
                kwargs[key] = _parse_timestamp(key, raw)
            case 'required_flags':
                try:
                    kwargs[key] = frozenset(AttestationFlag(flag) for flag in raw)
                except ValueError as e:
                    raise StartupConfigError(key, str(e))
            case _:
                logger.warning(f"Ignoring unknown configuration option: {key}")
    return RelayBotConfig(**kwargs)

ENV_OPTIONS = {
    'CHAIN_PROVIDER': 'chain_provider',
    'DEBUG_MODE': 'debug_mode',
    'VERIFICATION_CYCLE_IN_MS': 'verification_cycle_in_ms',
    'PROBE_TIMEOUT_IN_MS': 'probe_timeout_in_ms',
    'BALANCE_THRESHOLD': 'balance_threshold',
    'ENVIRONMENT': 'environment',
    'TIMESTAMP': 'relay_start',
    'RESTORE_SCORE_FROM': 'restore_score_from',
    'DEBUG_RELAY_ADDRESS': 'debug_relay_address',
    'STORAGE_DSN': 'storage_dsn',
    'ATTESTATION_TAG': 'attestation_tag',
    'ATTESTATION_MENTION': 'attestation_mention',
}

def load_config_from_env(environ: Optional[Mapping[str, str]] = None) -> RelayBotConfig:
    """Load bot configuration from RELAYBOT_* environment variables"""
    environ = os.environ if environ is None else environ
    values = {
        option: environ.get(f"{ENV_PREFIX}{name}")
        for name, option in ENV_OPTIONS.items()
    }
    return _config_from_mapping(values)

def load_config(config_path: str | Path) -> RelayBotConfig:
    """Load bot configuration from JSON file. Environment variables override file values"""
    try:
        with open(config_path, 'r') as file:
            config_data = json.load(file)
    except (OSError, json.JSONDecodeError) as e:
        raise StartupConfigError('config_file', f"{config_path}: {e}")

    for name, option in ENV_OPTIONS.items():
        value = os.environ.get(f"{ENV_PREFIX}{name}")
        if value:
            config_data[option] = value

    return _config_from_mapping(config_data)

def get_bot_config(config_path: Optional[str | Path] = None) -> RelayBotConfig:
    """Get bot configuration from the given file, the default config file, or the environment"""
    if config_path is not None:
        return load_config(config_path)

    config_file = global_constants.CONFIG_DIR / "relaybot_config.json"
    if config_file.exists():
        logger.debug(f"Loading configuration from {config_file}")
        return load_config(config_file)

    return load_config_from_env()
