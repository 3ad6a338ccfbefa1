"""ERC-20 payment token backend.

Implements the TokenLedger protocol against a deployed ERC-20 contract.
The market operates from a single hot account: it pulls requester and
provider funds with transferFrom (requiring a prior approve to the
market address) and pays out with transfer. Every call is signed
locally and the method blocks for one confirmation; the receipt status
becomes the boolean result the escrow ledger acts on.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from eth_account import Account
from web3 import HTTPProvider, Web3
from web3.exceptions import TimeExhausted

from computemarket.errors import TransferFailed


logger = logging.getLogger(__name__)


ERC20_ABI: list[dict[str, Any]] = [
    {
        "name": "transfer",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "transferFrom",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


class Erc20TokenLedger:
    """TokenLedger backed by an ERC-20 contract.

    Usage:
        token = Erc20TokenLedger.from_rpc(rpc_url, token_address, private_key)
        escrow = EscrowLedger(token, token.address)
    """

    def __init__(
        self,
        w3: Web3,
        token_address: str,
        private_key: str,
        chain_id: Optional[int] = None,
        gas: int = 100_000,
        gas_price_gwei: str = "2",
        receipt_timeout: int = 300,
    ) -> None:
        self._w3 = w3
        self._account = Account.from_key(private_key)
        self._token = w3.eth.contract(
            address=Web3.to_checksum_address(token_address), abi=ERC20_ABI,
        )
        self._chain_id = chain_id if chain_id is not None else w3.eth.chain_id
        self._gas = gas
        self._gas_price_gwei = gas_price_gwei
        self._receipt_timeout = receipt_timeout

    @classmethod
    def from_rpc(
        cls,
        rpc_url: str,
        token_address: str,
        private_key: str,
        **kwargs: Any,
    ) -> Erc20TokenLedger:
        return cls(Web3(HTTPProvider(rpc_url)), token_address, private_key, **kwargs)

    @property
    def address(self) -> str:
        """The market account that holds custody."""
        return self._account.address

    def transfer_from(self, payer: str, recipient: str, amount: int) -> bool:
        if recipient != self.address:
            logger.warning(
                "Refusing transferFrom to %s: only the market account %s can receive",
                recipient, self.address,
            )
            return False
        call = self._token.functions.transferFrom(
            Web3.to_checksum_address(payer), recipient, amount,
        )
        return self._send(call, f"transferFrom {payer} → {recipient} {amount}")

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        if sender != self.address:
            logger.warning(
                "Refusing transfer from %s: market account is %s", sender, self.address,
            )
            return False
        call = self._token.functions.transfer(Web3.to_checksum_address(recipient), amount)
        return self._send(call, f"transfer → {recipient} {amount}")

    def balance_of(self, address: str) -> int:
        return self._token.functions.balanceOf(Web3.to_checksum_address(address)).call()

    def allowance(self, owner: str, spender: str) -> int:
        return self._token.functions.allowance(
            Web3.to_checksum_address(owner), Web3.to_checksum_address(spender),
        ).call()

    def _send(self, call: Any, description: str) -> bool:
        """Sign, broadcast and await one confirmation. True iff status == 1."""
        tx = call.build_transaction({
            "from": self.address,
            "nonce": self._w3.eth.get_transaction_count(self.address),
            "gas": self._gas,
            "gasPrice": self._w3.to_wei(self._gas_price_gwei, "gwei"),
            "chainId": self._chain_id,
        })
        signed = self._account.sign_transaction(tx)
        tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        try:
            receipt = self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._receipt_timeout,
            )
        except TimeExhausted as exc:
            # Broadcast but unconfirmed: it may still be mined.
            pending = Web3.to_hex(tx_hash)
            logger.error("%s unconfirmed after %ss in tx %s", description,
                         self._receipt_timeout, pending)
            raise TransferFailed(
                f"{description} unconfirmed, reconcile tx {pending}", tx_hash=pending,
            ) from exc
        ok = receipt["status"] == 1
        if ok:
            logger.info("%s confirmed in tx %s", description, Web3.to_hex(tx_hash))
        else:
            logger.error("%s reverted in tx %s", description, Web3.to_hex(tx_hash))
        return ok
