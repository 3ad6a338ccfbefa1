"""Identifiers, addresses and signed work proofs."""

from computemarket.crypto.ids import (
    ZERO_ADDRESS,
    derive_request_id,
    normalize_address,
    recover_result_signer,
    sign_result,
    to_bytes32,
)

__all__ = [
    "ZERO_ADDRESS",
    "derive_request_id",
    "normalize_address",
    "recover_result_signer",
    "sign_result",
    "to_bytes32",
]
