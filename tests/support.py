"""Shared constants and builders for the market test suite."""

from pathlib import Path

from web3 import Web3

from computemarket.models.provider import PricingModel
from computemarket.service import MarketService


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

MIN_STAKE = 10**21
FUNDING = 10**24
T0 = 1_700_000_000


def addr(n: int) -> str:
    return Web3.to_checksum_address("0x" + f"{n:02x}" * 20)


MARKET = addr(0xAA)
OWNER = addr(0x01)
TREASURY = addr(0x02)
PROVIDER = addr(0x11)
PROVIDER_B = addr(0x12)
REQUESTER = addr(0x21)
REQUESTER_B = addr(0x22)
OUTSIDER = addr(0x99)

PARTICIPANTS = (PROVIDER, PROVIDER_B, REQUESTER, REQUESTER_B, OUTSIDER)

INPUT_HASH = "0x" + "ab" * 32
RESULT_HASH = "0x" + "cd" * 32


class FakeClock:
    """Settable block timestamp."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


def fund(token, address: str, amount: int = FUNDING) -> None:
    token.mint(address, amount)
    token.approve(address, MARKET, amount)


def register(
    service: MarketService,
    address: str = PROVIDER,
    stake: int = MIN_STAKE,
    max_jobs: int = 2,
    workload_id: str = "llama-70b",
):
    return service.register_provider(
        address, stake, workload_id, "att-1",
        PricingModel.PER_UNIT, 10, 0, 0, max_jobs,
    )


def open_request(
    service: MarketService,
    requester: str = REQUESTER,
    size: int = 100,
    max_payment: int = 10**18,
    duration: int = 3600,
    input_hash: str = INPUT_HASH,
):
    return service.create_request(
        requester, "llama-70b", input_hash, size, max_payment, duration,
    )
