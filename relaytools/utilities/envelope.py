"""
Relay envelope codec.

Every payload sent through the relay network is wrapped in a versioned JSON
envelope carrying the message body and the time it left its origin, then
Brotli-compressed. Receivers use the origin timestamp to compute latency.
"""
from dataclasses import dataclass
from typing import Optional
import json
import time
import brotli
from relaytools.configuration.constants import ENVELOPE_VERSION
from relaytools.utilities.exceptions import DecodeError

@dataclass
class Envelope:
    body: str
    origin_timestamp: int  # ms since epoch
    sender: Optional[str] = None

    def latency_ms(self, now_ms: Optional[int] = None) -> int:
        now_ms = now_ms if now_ms is not None else now_in_ms()
        return now_ms - self.origin_timestamp

def now_in_ms() -> int:
    return int(time.time() * 1000)

def encode_envelope(body: str, sender: Optional[str] = None, origin_timestamp: Optional[int] = None) -> bytes:
    """
    Wrap a message body in an envelope.

    Args:
        body: Message text
        sender: Our own address, included so the receiver can reply
        origin_timestamp: ms since epoch, defaults to now

    Returns:
        bytes: Compressed envelope
    """
    envelope = {
        'v': ENVELOPE_VERSION,
        'body': body,
        'origin_timestamp': origin_timestamp if origin_timestamp is not None else now_in_ms(),
        'sender': sender,
    }
    return brotli.compress(json.dumps(envelope, separators=(',', ':')).encode('utf-8'))

def decode_envelope(payload: bytes) -> Envelope:
    """
    Unwrap an envelope received from the relay network.

    Raises:
        DecodeError: If the payload is not a valid envelope
    """
    try:
        raw = brotli.decompress(payload)
        data = json.loads(raw.decode('utf-8'))
    except Exception as e:
        raise DecodeError(str(e))

    if not isinstance(data, dict):
        raise DecodeError("envelope is not an object")
    if data.get('v') != ENVELOPE_VERSION:
        raise DecodeError(f"unsupported envelope version {data.get('v')!r}")

    body = data.get('body')
    origin_timestamp = data.get('origin_timestamp')
    sender = data.get('sender')
    if not isinstance(body, str):
        raise DecodeError("missing body")
    if not isinstance(origin_timestamp, int) or isinstance(origin_timestamp, bool):
        raise DecodeError("missing origin timestamp")
    if sender is not None and not isinstance(sender, str):
        raise DecodeError("invalid sender")

    return Envelope(body=body, origin_timestamp=origin_timestamp, sender=sender)
