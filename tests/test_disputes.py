"""Tests for dispute resolution — proves rulings settle escrow and reputation."""

import pytest

from computemarket.errors import InvalidState, NotAdministrator
from computemarket.escrow.token import InMemoryTokenLedger
from computemarket.models.request import RequestStatus
from computemarket.persistence.event_log import EventKind
from computemarket.service import MarketService

from support import (
    FUNDING,
    MIN_STAKE,
    OUTSIDER,
    OWNER,
    PROVIDER,
    REQUESTER,
    RESULT_HASH,
    FakeClock,
    open_request,
    register,
)


def _disputed(service: MarketService, clock: FakeClock) -> str:
    register(service)
    request = open_request(service)
    service.accept_request(PROVIDER, request.request_id)
    clock.advance(60)
    service.submit_result(PROVIDER, request.request_id, RESULT_HASH)
    service.dispute(REQUESTER, request.request_id)
    return request.request_id


class TestDisputeRulings:
    def test_ruling_for_requester(
        self, service: MarketService, token: InMemoryTokenLedger, clock: FakeClock,
    ) -> None:
        request_id = _disputed(service, clock)
        escrow = service.get_request(request_id).escrow

        request = service.resolve_dispute(OWNER, request_id, favor_requester=True)

        assert request.status == RequestStatus.CANCELLED
        assert token.balance_of(REQUESTER) == FUNDING
        provider = service.get_provider(PROVIDER)
        assert provider.reputation == 4500
        assert provider.current_jobs == 0
        assert provider.stake == MIN_STAKE
        entry = service.get_escrow(request_id)
        assert entry.paid_to_requester == escrow
        assert service.accrued_fees == 0
        assert service.market_stats().demand == 0

    def test_ruling_for_provider(
        self, service: MarketService, token: InMemoryTokenLedger, clock: FakeClock,
    ) -> None:
        request_id = _disputed(service, clock)
        escrow = service.get_request(request_id).escrow
        fee = escrow * 250 // 10_000

        request = service.resolve_dispute(OWNER, request_id, favor_requester=False)

        assert request.status == RequestStatus.VERIFIED
        assert token.balance_of(PROVIDER) == FUNDING - MIN_STAKE + escrow - fee
        assert service.accrued_fees == fee
        provider = service.get_provider(PROVIDER)
        assert provider.reputation == 5200
        assert provider.completed_jobs == 1
        assert provider.total_earned == escrow - fee

    def test_ruling_emits_event(self, service: MarketService, clock: FakeClock) -> None:
        request_id = _disputed(service, clock)
        service.resolve_dispute(OWNER, request_id, favor_requester=True)
        event = service.event_log.events(EventKind.DISPUTE_RESOLVED)[-1]
        assert event.payload["request_id"] == request_id
        assert event.payload["favor_requester"] is True
        assert event.payload["reputation_after"] == 4500


class TestDisputeGuards:
    def test_only_owner_rules(self, service: MarketService, clock: FakeClock) -> None:
        request_id = _disputed(service, clock)
        with pytest.raises(NotAdministrator):
            service.resolve_dispute(OUTSIDER, request_id, favor_requester=True)
        assert service.get_request(request_id).status == RequestStatus.DISPUTED

    def test_requires_disputed_request(self, service: MarketService) -> None:
        register(service)
        request = open_request(service)
        with pytest.raises(InvalidState):
            service.resolve_dispute(OWNER, request.request_id, favor_requester=True)

    def test_no_second_ruling(self, service: MarketService, clock: FakeClock) -> None:
        request_id = _disputed(service, clock)
        service.resolve_dispute(OWNER, request_id, favor_requester=False)
        with pytest.raises(InvalidState):
            service.resolve_dispute(OWNER, request_id, favor_requester=True)
