import json
from typing import Any, Dict

"""
framing.py — one JSON object per UDP datagram.

Protocol (simple on purpose):
- Each datagram = UTF-8 JSON for exactly one object. No length prefix: UDP
  already preserves message boundaries.
- Hard cap at the largest IPv4 UDP payload. Nothing is fragmented or
  reassembled, so anything bigger must be refused before it hits the socket.
- JSON is compact (no extra spaces) to leave room for payload.
"""

MAX_DATAGRAM_SIZE = 65507  # 65535 - 8 byte UDP header - 20 byte IP header

# Child stdout/stderr is read in pieces of this size; each piece becomes one
# push message, so it must stay comfortably under MAX_DATAGRAM_SIZE.
OUTPUT_CHUNK_SIZE = 4096


class FrameError(ValueError):
    """Datagram could not be turned into (or from) a JSON object."""


def decode_datagram(data: bytes) -> Dict[str, Any]:
    """
    Parse one datagram into a dict.

    Raises:
        FrameError: if the datagram is too big, not UTF-8, not JSON, or not a
        JSON object.
    """
    if len(data) > MAX_DATAGRAM_SIZE:
        raise FrameError(f"Datagram too large: {len(data)} > {MAX_DATAGRAM_SIZE}")

    try:
        obj = json.loads(data.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise FrameError(f"Datagram is not UTF-8: {exc}") from exc
    except json.JSONDecodeError as exc:
        # Keep the message short; no payload echo in logs.
        raise FrameError(f"Invalid JSON datagram: {exc}") from exc

    if not isinstance(obj, dict):
        raise FrameError(f"Expected a JSON object, got {type(obj).__name__}")
    return obj


def encode_datagram(obj: Dict[str, Any]) -> bytes:
    """
    Serialize a dict to compact JSON bytes for a single sendto().

    Raises:
        FrameError: if the result would not fit in one datagram.
    """
    payload = json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    if len(payload) > MAX_DATAGRAM_SIZE:
        raise FrameError(f"Datagram exceeds maximum size: {len(payload)} > {MAX_DATAGRAM_SIZE}")
    return payload
