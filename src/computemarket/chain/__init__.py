"""On-chain token backends."""

from computemarket.chain.erc20 import ERC20_ABI, Erc20TokenLedger

__all__ = ["ERC20_ABI", "Erc20TokenLedger"]
