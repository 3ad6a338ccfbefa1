"""Tests for identifiers and signed work proofs."""

import pytest
from eth_account import Account
from web3 import Web3

from computemarket.crypto.ids import (
    ZERO_ADDRESS,
    derive_request_id,
    normalize_address,
    recover_result_signer,
    sign_result,
    to_bytes32,
)
from computemarket.errors import InvalidParameter, InvalidSignature, ZeroAddress

from support import INPUT_HASH, REQUESTER, RESULT_HASH, T0


class TestAddresses:
    def test_checksums_lowercase(self) -> None:
        assert normalize_address(REQUESTER.lower()) == REQUESTER

    def test_zero_address(self) -> None:
        with pytest.raises(ZeroAddress):
            normalize_address(ZERO_ADDRESS)

    @pytest.mark.parametrize("junk", ["", "alice", "0x1234", None])
    def test_junk(self, junk) -> None:
        with pytest.raises(InvalidParameter):
            normalize_address(junk)


class TestBytes32:
    def test_valid(self) -> None:
        assert to_bytes32(INPUT_HASH) == bytes.fromhex("ab" * 32)

    @pytest.mark.parametrize("value", ["0x" + "ab" * 31, "0xzz", 42])
    def test_invalid(self, value) -> None:
        with pytest.raises(InvalidParameter):
            to_bytes32(value)


class TestRequestIds:
    def test_matches_packed_keccak(self) -> None:
        expected = Web3.to_hex(Web3.keccak(
            bytes.fromhex(REQUESTER[2:])
            + (0).to_bytes(32, "big")
            + T0.to_bytes(32, "big")
            + bytes.fromhex("ab" * 32)
        ))
        assert derive_request_id(REQUESTER, 0, T0, INPUT_HASH) == expected

    def test_nonce_changes_id(self) -> None:
        assert (derive_request_id(REQUESTER, 0, T0, INPUT_HASH)
                != derive_request_id(REQUESTER, 1, T0, INPUT_HASH))


class TestSignedResults:
    def test_recover_signer(self) -> None:
        account = Account.create()
        request_id = derive_request_id(REQUESTER, 0, T0, INPUT_HASH)
        signature = sign_result(account.key, request_id, RESULT_HASH)
        assert recover_result_signer(request_id, RESULT_HASH, signature) == account.address

    def test_different_result_recovers_other_signer(self) -> None:
        account = Account.create()
        request_id = derive_request_id(REQUESTER, 0, T0, INPUT_HASH)
        signature = sign_result(account.key, request_id, RESULT_HASH)
        other = recover_result_signer(request_id, "0x" + "ee" * 32, signature)
        assert other != account.address

    def test_malformed_signature(self) -> None:
        request_id = derive_request_id(REQUESTER, 0, T0, INPUT_HASH)
        with pytest.raises(InvalidSignature):
            recover_result_signer(request_id, RESULT_HASH, "0x1234")
