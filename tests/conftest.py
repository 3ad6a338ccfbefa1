import pytest

from computemarket.escrow.token import InMemoryTokenLedger
from computemarket.persistence.event_log import EventLog
from computemarket.policy.resolver import PolicyResolver
from computemarket.service import MarketService

from support import CONFIG_DIR, MARKET, OWNER, PARTICIPANTS, TREASURY, FakeClock, fund


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token() -> InMemoryTokenLedger:
    ledger = InMemoryTokenLedger()
    for address in PARTICIPANTS:
        fund(ledger, address)
    return ledger


@pytest.fixture
def service(
    resolver: PolicyResolver,
    token: InMemoryTokenLedger,
    clock: FakeClock,
) -> MarketService:
    return MarketService(
        resolver, token, MARKET, OWNER,
        treasury=TREASURY, clock=clock, event_log=EventLog(),
    )
