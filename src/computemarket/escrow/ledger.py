"""Escrow ledger — the market's custody of stake, request escrow and fees.

Every token movement in the market goes through here. Each method makes
exactly one TokenLedger call and records the movement only after the
token reports success, so a refused transfer leaves the books unchanged.

Custody buckets (all held at market_address):
    total_staked    — provider collateral
    total_escrowed  — locked request payments
    accrued_fees    — market fees awaiting withdrawal

Escrow entries are settled exactly once: to the provider (net of fee)
or back to the requester (optionally with a slash penalty on top).
"""

from __future__ import annotations

from typing import Dict, Optional

from computemarket.errors import InvalidParameter, TransferFailed
from computemarket.escrow.token import TokenLedger
from computemarket.models.market import EscrowEntry, EscrowState


class EscrowLedger:
    """Holds funds on behalf of the market.

    Usage:
        escrow = EscrowLedger(token, market_address)
        escrow.deposit_stake(provider, 1000)
        escrow.lock(request_id, requester, 500)
        escrow.release(request_id, provider, fee=12, now=now)
    """

    def __init__(self, token: TokenLedger, market_address: str) -> None:
        self._token = token
        self._market = market_address
        self._entries: Dict[str, EscrowEntry] = {}
        self.total_staked = 0
        self.total_escrowed = 0
        self.accrued_fees = 0

    @property
    def market_address(self) -> str:
        return self._market

    # ------------------------------------------------------------------
    # Stake
    # ------------------------------------------------------------------

    def deposit_stake(self, provider: str, amount: int) -> None:
        self._pull(provider, amount)
        self.total_staked += amount

    def return_stake(self, provider: str, amount: int) -> None:
        self._push(provider, amount)
        self.total_staked -= amount

    # ------------------------------------------------------------------
    # Request escrow
    # ------------------------------------------------------------------

    def lock(self, request_id: str, payer: str, amount: int) -> EscrowEntry:
        """Pull the request's payment into custody."""
        if request_id in self._entries:
            raise InvalidParameter(f"Escrow already exists for request {request_id}")
        self._pull(payer, amount)
        entry = EscrowEntry(request_id=request_id, payer=payer, amount=amount)
        self._entries[request_id] = entry
        self.total_escrowed += amount
        return entry

    def release(
        self,
        request_id: str,
        provider: str,
        fee: int,
        now: Optional[int] = None,
    ) -> EscrowEntry:
        """Pay the provider escrow minus fee; the fee stays in custody."""
        entry = self._locked(request_id)
        if not 0 <= fee <= entry.amount:
            raise InvalidParameter(f"Fee {fee} outside escrow amount {entry.amount}")
        payout = entry.amount - fee
        self._push(provider, payout)
        entry.state = EscrowState.RELEASED
        entry.paid_to_provider = payout
        entry.fee = fee
        entry.settled_at = now
        self.total_escrowed -= entry.amount
        self.accrued_fees += fee
        return entry

    def refund(
        self,
        request_id: str,
        penalty: int = 0,
        now: Optional[int] = None,
    ) -> EscrowEntry:
        """Return the escrow to its payer, plus penalty taken from stake."""
        entry = self._locked(request_id)
        if not 0 <= penalty <= self.total_staked:
            raise InvalidParameter(f"Penalty {penalty} exceeds staked funds")
        self._push(entry.payer, entry.amount + penalty)
        entry.state = EscrowState.REFUNDED
        entry.paid_to_requester = entry.amount
        entry.penalty = penalty
        entry.settled_at = now
        self.total_escrowed -= entry.amount
        self.total_staked -= penalty
        return entry

    # ------------------------------------------------------------------
    # Fees
    # ------------------------------------------------------------------

    def withdraw_fees(self, treasury: str) -> int:
        amount = self.accrued_fees
        if amount == 0:
            raise InvalidParameter("No accrued fees to withdraw")
        self._push(treasury, amount)
        self.accrued_fees = 0
        return amount

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_entry(self, request_id: str) -> Optional[EscrowEntry]:
        return self._entries.get(request_id)

    def entries(self) -> list[EscrowEntry]:
        return list(self._entries.values())

    @property
    def total_held(self) -> int:
        """Funds the market should hold at market_address."""
        return self.total_staked + self.total_escrowed + self.accrued_fees

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _locked(self, request_id: str) -> EscrowEntry:
        entry = self._entries.get(request_id)
        if entry is None:
            raise InvalidParameter(f"No escrow for request {request_id}")
        if entry.state != EscrowState.LOCKED:
            raise InvalidParameter(
                f"Escrow for request {request_id} already settled ({entry.state.value})"
            )
        return entry

    def _pull(self, payer: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidParameter("Amount must be positive")
        if not self._token.transfer_from(payer, self._market, amount):
            raise TransferFailed(f"transfer_from {payer} for {amount} refused")

    def _push(self, recipient: str, amount: int) -> None:
        if amount < 0:
            raise InvalidParameter("Amount must be non-negative")
        if amount == 0:
            return
        if not self._token.transfer(self._market, recipient, amount):
            raise TransferFailed(f"transfer to {recipient} for {amount} refused")
