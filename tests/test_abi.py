"""
Ballot Contract ABI Test Suite
"""

import pytest
from eth_abi import encode

from privyballot.ledger import abi


class TestSelectors:

    def test_known_selector(self):
        assert abi.compute_function_selector("transfer(address,uint256)").hex() == "a9059cbb"

    def test_error_selector_matches_signature(self):
        assert abi.compute_function_selector("Error(string)") == abi.ERROR_SELECTOR

    def test_event_topic_format(self):
        topic = abi.event_topic(abi.PROPOSAL_CREATED_EVENT)
        assert topic.startswith("0x")
        assert len(topic) == 66


class TestCallData:

    def test_no_argument_call(self):
        data = abi.encode_function_call(abi.NEXT_PROPOSAL_ID)
        assert data == abi.compute_function_selector(abi.NEXT_PROPOSAL_ID)

    def test_arguments_encoded(self):
        data = abi.encode_function_call(abi.REQUEST_REVEAL, 7)
        assert data[:4] == abi.compute_function_selector(abi.REQUEST_REVEAL)
        assert int.from_bytes(data[4:], "big") == 7

    def test_argument_count_checked(self):
        with pytest.raises(ValueError):
            abi.encode_function_call(abi.HAS_VOTED, 1)

    def test_decode_result(self):
        data = encode(["uint256"], [42])
        assert abi.decode_function_result(["uint256"], data) == (42,)


class TestRevertReasons:

    def test_error_string(self):
        payload = abi.ERROR_SELECTOR + encode(["string"], ["Already voted"])
        assert abi.decode_revert_reason(payload) == "Already voted"

    def test_panic_is_not_a_reason(self):
        payload = bytes.fromhex("4e487b71") + encode(["uint256"], [0x11])
        assert abi.decode_revert_reason(payload) is None

    @pytest.mark.parametrize("payload", [None, b"", b"\x08\xc3"])
    def test_empty_payloads(self, payload):
        assert abi.decode_revert_reason(payload) is None

    def test_garbled_payload(self):
        assert abi.decode_revert_reason(abi.ERROR_SELECTOR + b"\x01\x02") is None
