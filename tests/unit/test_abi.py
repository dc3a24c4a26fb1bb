"""Unit tests for ABI encoding and log helpers."""
from __future__ import annotations

import pytest
from eth_abi import encode

from pool_positions.chains.evm import abi

EMITTER = "0x" + "50" * 20
HOLDER = "0x" + "aa" * 20

TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


class TestSignatureTypes:
    def test_multiple_args(self) -> None:
        assert abi.signature_types("withdraw(address,uint256,address)") == [
            "address", "uint256", "address",
        ]

    def test_no_args(self) -> None:
        assert abi.signature_types("name()") == []


class TestEncodeCall:
    def test_transfer_selector(self) -> None:
        data = abi.encode_call("transfer(address,uint256)", HOLDER, 1)
        assert data.startswith("0xa9059cbb")
        assert len(data) == 2 + 8 + 2 * 64
        assert data.endswith("1".rjust(64, "0"))

    def test_no_args(self) -> None:
        assert abi.encode_call("name()") == "0x06fdde03"

    def test_arity_mismatch(self) -> None:
        with pytest.raises(ValueError, match="expects 2 arguments"):
            abi.encode_call("transfer(address,uint256)", HOLDER)


class TestDecode:
    def test_decode_result(self) -> None:
        data = encode(["uint256", "bool"], [42, True])
        assert abi.decode_result(["uint256", "bool"], data) == (42, True)

    def test_hex_to_bytes(self) -> None:
        assert abi.hex_to_bytes("0x0102") == b"\x01\x02"
        assert abi.hex_to_bytes("ff") == b"\xff"


class TestTopics:
    def test_topic_for_transfer(self) -> None:
        assert abi.topic_for("Transfer(address,address,uint256)") == TRANSFER_TOPIC

    def test_address_topic_round_trip(self) -> None:
        topic = abi.address_topic(HOLDER)
        assert len(topic) == 66
        assert abi.topic_to_address(topic).lower() == HOLDER


class TestFindLogs:
    def _receipt(self) -> dict:
        return {
            "logs": [
                {
                    "address": EMITTER.upper().replace("0X", "0x"),
                    "topics": [TRANSFER_TOPIC],
                    "data": "0x" + encode(["uint256"], [7]).hex(),
                },
                {
                    "address": "0x" + "99" * 20,
                    "topics": [TRANSFER_TOPIC],
                    "data": "0x",
                },
                {"address": EMITTER, "topics": [], "data": "0x"},
            ]
        }

    def test_filters_by_emitter_and_topic(self) -> None:
        logs = abi.find_logs(
            self._receipt(), EMITTER, "Transfer(address,address,uint256)"
        )
        assert len(logs) == 1
        assert abi.decode_log_data(["uint256"], logs[0]) == (7,)

    def test_no_match(self) -> None:
        assert abi.find_logs(self._receipt(), EMITTER, "Approval(address,address,uint256)") == []

    def test_missing_logs_key(self) -> None:
        assert abi.find_logs({}, EMITTER, "Transfer(address,address,uint256)") == []
