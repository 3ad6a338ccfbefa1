"""Deterministic identifiers and signature helpers.

Request identifiers are content-addressed: keccak256 over the packed
(requester, per-requester nonce, timestamp, input hash). Two requests
from the same requester differ at least in nonce, so no central counter
is needed to keep identifiers unique.

Providers may sign results off-chain. The signed message is the EIP-191
personal message over keccak256(request_id, result_hash), so a relayer
can submit the result on the provider's behalf.
"""

from __future__ import annotations

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from computemarket.errors import InvalidParameter, InvalidSignature, ZeroAddress


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalize_address(address: str) -> str:
    """Return the checksummed form of address, rejecting zero and junk."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise InvalidParameter(f"Not a valid address: {address!r}")
    checksummed = Web3.to_checksum_address(address)
    if checksummed == ZERO_ADDRESS:
        raise ZeroAddress("Zero address is not allowed")
    return checksummed


def to_bytes32(value: str, name: str = "hash") -> bytes:
    """Parse a 0x-prefixed 32-byte hex string."""
    if not isinstance(value, str):
        raise InvalidParameter(f"{name} must be a hex string")
    try:
        raw = Web3.to_bytes(hexstr=value)
    except ValueError as exc:
        raise InvalidParameter(f"{name} is not valid hex: {value!r}") from exc
    if len(raw) != 32:
        raise InvalidParameter(f"{name} must be 32 bytes, got {len(raw)}")
    return raw


def derive_request_id(
    requester: str,
    nonce: int,
    timestamp: int,
    input_hash: str,
) -> str:
    """keccak256(abi.encodePacked(requester, nonce, timestamp, input_hash))."""
    digest = Web3.solidity_keccak(
        ["address", "uint256", "uint256", "bytes32"],
        [requester, nonce, timestamp, to_bytes32(input_hash, "input_hash")],
    )
    return Web3.to_hex(digest)


def _result_message(request_id: str, result_hash: str):
    digest = Web3.solidity_keccak(
        ["bytes32", "bytes32"],
        [to_bytes32(request_id, "request_id"), to_bytes32(result_hash, "result_hash")],
    )
    return encode_defunct(primitive=bytes(digest))


def sign_result(private_key: str, request_id: str, result_hash: str) -> str:
    """Sign a result as the provider. Returns the 65-byte signature as hex."""
    signed = Account.sign_message(_result_message(request_id, result_hash), private_key)
    return Web3.to_hex(signed.signature)


def recover_result_signer(request_id: str, result_hash: str, signature: str) -> str:
    """Return the checksummed address that signed the result."""
    message = _result_message(request_id, result_hash)
    try:
        signer = Account.recover_message(message, signature=signature)
    except Exception as exc:
        raise InvalidSignature(f"Malformed result signature: {exc}") from exc
    return Web3.to_checksum_address(signer)
