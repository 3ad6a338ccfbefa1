"""Payment token interface — the market's only view of token balances.

Balances live outside the engine. The escrow ledger never touches them
directly; it calls a TokenLedger, and a False result (or an exception)
aborts the whole market operation before any internal state changes.

The engine assumes plain transfers: no interest-bearing balances and no
fee-on-transfer tokens.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional, Protocol, runtime_checkable


@runtime_checkable
class TokenLedger(Protocol):
    """Contract any payment token backend must satisfy."""

    def transfer_from(self, payer: str, recipient: str, amount: int) -> bool:
        """Pull amount from payer to recipient using the recipient's allowance."""
        ...

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """Send amount from sender (the market) to recipient."""
        ...

    def balance_of(self, address: str) -> int:
        """Current balance of address."""
        ...


TransferHook = Callable[[str, str, int], None]


class InMemoryTokenLedger:
    """In-process token with balances and allowances.

    Used for simulation and tests. on_transfer, when set, is invoked
    before balances move — the hook point for callback-style tokens.

    Usage:
        token = InMemoryTokenLedger()
        token.mint(alice, 10_000)
        token.approve(alice, market, 10_000)
        token.transfer_from(alice, market, 500)
    """

    def __init__(self, on_transfer: Optional[TransferHook] = None) -> None:
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[tuple[str, str], int] = {}
        self.on_transfer = on_transfer

    def mint(self, address: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Mint amount must be non-negative")
        self._balances[address] = self._balances.get(address, 0) + amount

    def approve(self, owner: str, spender: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Allowance must be non-negative")
        self._allowances[(owner, spender)] = amount

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def balance_of(self, address: str) -> int:
        return self._balances.get(address, 0)

    def transfer_from(self, payer: str, recipient: str, amount: int) -> bool:
        if amount < 0:
            return False
        if self.allowance(payer, recipient) < amount:
            return False
        if self.balance_of(payer) < amount:
            return False
        if self.on_transfer is not None:
            self.on_transfer(payer, recipient, amount)
        self._allowances[(payer, recipient)] -= amount
        self._move(payer, recipient, amount)
        return True

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        if amount < 0 or self.balance_of(sender) < amount:
            return False
        if self.on_transfer is not None:
            self.on_transfer(sender, recipient, amount)
        self._move(sender, recipient, amount)
        return True

    def _move(self, sender: str, recipient: str, amount: int) -> None:
        self._balances[sender] = self._balances.get(sender, 0) - amount
        self._balances[recipient] = self._balances.get(recipient, 0) + amount
