"""Tests for the ERC-20 token backend against a mocked Web3 connection."""

from unittest.mock import MagicMock

import pytest
from eth_account import Account
from web3.exceptions import TimeExhausted

from computemarket.chain.erc20 import Erc20TokenLedger
from computemarket.errors import TransferFailed
from computemarket.escrow.token import TokenLedger

from support import PROVIDER, REQUESTER, addr


TOKEN = addr(0x70)
TX_HASH = b"\x12" * 32


def _w3(status: int = 1) -> MagicMock:
    w3 = MagicMock()
    w3.eth.get_transaction_count.return_value = 7
    w3.eth.send_raw_transaction.return_value = TX_HASH
    w3.eth.wait_for_transaction_receipt.return_value = {"status": status}
    w3.to_wei.return_value = 2_000_000_000

    def build_transaction(params: dict) -> dict:
        return {
            "to": TOKEN,
            "data": "0x",
            "value": 0,
            "gas": params["gas"],
            "gasPrice": params["gasPrice"],
            "nonce": params["nonce"],
            "chainId": params["chainId"],
        }

    contract = w3.eth.contract.return_value
    for name in ("transfer", "transferFrom"):
        getattr(contract.functions, name).return_value.build_transaction.side_effect = (
            build_transaction
        )
    contract.functions.balanceOf.return_value.call.return_value = 12345
    return w3


@pytest.fixture
def account():
    return Account.create()


class TestErc20TokenLedger:
    def test_satisfies_protocol(self, account) -> None:
        ledger = Erc20TokenLedger(_w3(), TOKEN, account.key, chain_id=1)
        assert isinstance(ledger, TokenLedger)
        assert ledger.address == account.address

    def test_transfer_from_into_market(self, account) -> None:
        w3 = _w3()
        ledger = Erc20TokenLedger(w3, TOKEN, account.key, chain_id=1)
        assert ledger.transfer_from(REQUESTER, ledger.address, 500)
        contract = w3.eth.contract.return_value
        contract.functions.transferFrom.assert_called_once_with(REQUESTER, account.address, 500)
        w3.eth.send_raw_transaction.assert_called_once()

    def test_transfer_from_elsewhere_refused(self, account) -> None:
        w3 = _w3()
        ledger = Erc20TokenLedger(w3, TOKEN, account.key, chain_id=1)
        assert not ledger.transfer_from(REQUESTER, PROVIDER, 500)
        w3.eth.send_raw_transaction.assert_not_called()

    def test_transfer_out_of_market(self, account) -> None:
        w3 = _w3()
        ledger = Erc20TokenLedger(w3, TOKEN, account.key, chain_id=1)
        assert ledger.transfer(ledger.address, PROVIDER, 500)
        w3.eth.contract.return_value.functions.transfer.assert_called_once_with(PROVIDER, 500)

    def test_transfer_from_other_sender_refused(self, account) -> None:
        w3 = _w3()
        ledger = Erc20TokenLedger(w3, TOKEN, account.key, chain_id=1)
        assert not ledger.transfer(REQUESTER, PROVIDER, 500)
        w3.eth.send_raw_transaction.assert_not_called()

    def test_reverted_transaction_is_false(self, account) -> None:
        ledger = Erc20TokenLedger(_w3(status=0), TOKEN, account.key, chain_id=1)
        assert not ledger.transfer(ledger.address, PROVIDER, 500)

    def test_balance_of(self, account) -> None:
        ledger = Erc20TokenLedger(_w3(), TOKEN, account.key, chain_id=1)
        assert ledger.balance_of(PROVIDER) == 12345

    def test_chain_id_read_from_node(self, account) -> None:
        w3 = _w3()
        w3.eth.chain_id = 11155111
        ledger = Erc20TokenLedger(w3, TOKEN, account.key)
        assert ledger.transfer(ledger.address, PROVIDER, 1)
        call = w3.eth.contract.return_value.functions.transfer.return_value
        assert call.build_transaction.call_args[0][0]["chainId"] == 11155111

    def test_receipt_timeout_reports_pending_hash(self, account) -> None:
        w3 = _w3()
        w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("no receipt")
        ledger = Erc20TokenLedger(w3, TOKEN, account.key, chain_id=1)
        with pytest.raises(TransferFailed) as excinfo:
            ledger.transfer(ledger.address, PROVIDER, 500)
        assert excinfo.value.tx_hash == "0x" + "12" * 32
        w3.eth.send_raw_transaction.assert_called_once()
