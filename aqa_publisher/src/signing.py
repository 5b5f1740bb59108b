"""EIP-712 signing of Hyperliquid ``validatorL1Stream`` votes.

An L1 action is signed indirectly: the action is MessagePack-encoded, the
nonce and an empty vault marker are appended, and the keccak of that blob
becomes the ``connectionId`` of a phantom ``Agent`` message which is what the
wallet actually signs.

Field order in the action dict matters; MessagePack preserves insertion order
and the exchange hashes the same bytes.
"""

from __future__ import annotations

from typing import Any

import msgpack
from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount
from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Domain of the exchange's L1 actions; chainId is fixed regardless of network.
CORE_DOMAIN = {
    "chainId": 1337,
    "name": "Exchange",
    "verifyingContract": ZERO_ADDRESS,
    "version": "1",
}

AGENT_TYPES = {
    "Agent": [
        {"name": "source", "type": "string"},
        {"name": "connectionId", "type": "bytes32"},
    ],
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
}


def vote_action(rate: str) -> dict[str, str]:
    """Build the ``validatorL1Stream`` action for a formatted rate."""
    return {"type": "validatorL1Stream", "riskFreeRate": rate}


def action_hash(action: dict[str, Any], nonce: int) -> bytes:
    """keccak256(msgpack(action) || nonce (8 bytes, big-endian) || 0x00)."""
    data = msgpack.packb(action)
    data += nonce.to_bytes(8, "big")
    data += b"\x00"
    return bytes(Web3.keccak(data))


def l1_payload(connection_id: bytes, is_mainnet: bool) -> dict[str, Any]:
    """Full EIP-712 message for the phantom agent of an action hash."""
    return {
        "domain": CORE_DOMAIN,
        "types": AGENT_TYPES,
        "primaryType": "Agent",
        "message": {
            "source": "a" if is_mainnet else "b",
            "connectionId": connection_id,
        },
    }


def sign_vote(
    account: LocalAccount,
    rate: str,
    nonce: int,
    is_mainnet: bool,
) -> tuple[dict[str, str], dict[str, Any]]:
    """Sign a rate vote.

    :param account: Signer holding the validator's private key.
    :param rate: Submission-formatted rate (e.g. "0.03823958").
    :param nonce: Millisecond timestamp used as the action nonce.
    :param is_mainnet: Selects the phantom agent source ("a" or "b").
    :returns: Tuple of (action, signature) where signature has r, s (0x hex) and v.
    """
    action = vote_action(rate)
    payload = l1_payload(action_hash(action, nonce), is_mainnet)
    signed = account.sign_message(encode_typed_data(full_message=payload))
    signature = {"r": hex(signed.r), "s": hex(signed.s), "v": signed.v}
    return action, signature
