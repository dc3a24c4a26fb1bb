"""Pure ABI helpers — call encoding, result decoding, log matching. No I/O."""
from __future__ import annotations

from typing import Any

from eth_abi import decode, encode
from eth_utils import (
    event_signature_to_log_topic,
    function_signature_to_4byte_selector,
    to_checksum_address,
)


def signature_types(signature: str) -> list[str]:
    """Return the argument types of a flat signature.

    Examples:
        "withdraw(address,uint256,address)" → ["address", "uint256", "address"]
        "name()" → []
    """
    inner = signature[signature.index("(") + 1 : signature.rindex(")")]
    return [t.strip() for t in inner.split(",") if t.strip()]


def encode_call(signature: str, *args: Any) -> str:
    """Encode a function call as 0x-prefixed calldata."""
    selector = function_signature_to_4byte_selector(signature)
    types = signature_types(signature)
    if len(types) != len(args):
        raise ValueError(
            f"{signature} expects {len(types)} arguments, got {len(args)}"
        )
    return "0x" + (selector + encode(types, list(args))).hex()


def decode_result(types: list[str], data: bytes) -> tuple[Any, ...]:
    """Decode an ``eth_call`` return payload."""
    return tuple(decode(types, data))


def hex_to_bytes(value: str) -> bytes:
    if value.startswith("0x"):
        value = value[2:]
    return bytes.fromhex(value)


def topic_for(event_signature: str) -> str:
    return "0x" + event_signature_to_log_topic(event_signature).hex()


def address_topic(address: str) -> str:
    """Left-pad an address to a 32-byte indexed topic."""
    return "0x" + address.lower().removeprefix("0x").rjust(64, "0")


def topic_to_address(topic: str) -> str:
    return to_checksum_address("0x" + topic[-40:])


def find_logs(
    receipt: dict[str, Any], emitter: str, event_signature: str
) -> list[dict[str, Any]]:
    """Return logs in ``receipt`` emitted by ``emitter`` for ``event_signature``."""
    topic0 = topic_for(event_signature)
    return [
        log
        for log in receipt.get("logs", [])
        if log.get("address", "").lower() == emitter.lower()
        and log.get("topics")
        and log["topics"][0].lower() == topic0
    ]


def decode_log_data(types: list[str], log: dict[str, Any]) -> tuple[Any, ...]:
    """Decode the non-indexed fields of a log entry."""
    return decode_result(types, hex_to_bytes(log.get("data", "0x")))
