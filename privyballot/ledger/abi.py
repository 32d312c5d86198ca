"""
Ballot Contract ABI

Function selectors, call data encoding and result decoding for the ballot
contract, plus the `Error(string)` revert payload decoder.
"""

from typing import Any, Optional, Sequence, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak

# Contract functions
CREATE_PROPOSAL = "createProposal(bytes32,uint64)"
VOTE = "vote(uint256,bytes32,bytes)"
REQUEST_REVEAL = "requestReveal(uint256)"
NEXT_PROPOSAL_ID = "nextProposalId()"
GET_PROPOSAL_PUBLIC = "getProposalPublic(uint256)"
HAS_VOTED = "hasVoted(uint256,address)"

PROPOSAL_PUBLIC_TYPES = ["bytes32", "address", "uint64", "bool", "bool", "uint128", "uint128"]

# Events
PROPOSAL_CREATED_EVENT = "ProposalCreated(uint256,address,bytes32,uint64)"
VOTE_CAST_EVENT = "VoteCast(uint256,address)"
REVEALED_EVENT = "Revealed(uint256,uint128,uint128)"

# Error(string)
ERROR_SELECTOR = bytes.fromhex("08c379a0")


def compute_function_selector(function_signature: str) -> bytes:
    """
    Compute the function selector (first 4 bytes of keccak256(sig)).

    Args:
        function_signature: Function signature like "hasVoted(uint256,address)"

    Returns:
        4-byte function selector
    """
    return keccak(function_signature.encode('utf-8'))[:4]


def event_topic(event_signature: str) -> str:
    """Topic0 of an event, as a 0x-prefixed hex string."""
    return '0x' + keccak(event_signature.encode('utf-8')).hex()


def _argument_types(function_signature: str) -> list:
    args_start = function_signature.index('(') + 1
    args_end = function_signature.rindex(')')
    arg_types_str = function_signature[args_start:args_end]
    return [t.strip() for t in arg_types_str.split(',')] if arg_types_str else []


def encode_function_call(function_signature: str, *args) -> bytes:
    """
    Encode function call data (selector + ABI-encoded arguments).

    Args:
        function_signature: Function signature
        *args: Function arguments

    Returns:
        Encoded call data
    """
    selector = compute_function_selector(function_signature)
    arg_types = _argument_types(function_signature)
    if len(arg_types) != len(args):
        raise ValueError(
            f"{function_signature} expects {len(arg_types)} arguments, got {len(args)}"
        )
    encoded_args = encode(arg_types, list(args)) if arg_types else b''
    return selector + encoded_args


def decode_function_result(types: Sequence[str], data: bytes) -> Tuple[Any, ...]:
    return tuple(decode(list(types), data))


def decode_revert_reason(data: Optional[bytes]) -> Optional[str]:
    """
    Extract the message of an `Error(string)` revert payload.

    Returns None for empty data, custom errors and panics.
    """
    if not data or len(data) < 4 or data[:4] != ERROR_SELECTOR:
        return None
    try:
        (reason,) = decode(['string'], data[4:])
    except DecodingError:
        return None
    return reason
