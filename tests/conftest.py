"""Pytest fixtures for the cover core: in-memory stores, mock rails and a fixed clock."""

from decimal import Decimal

import pytest

from bodacover.cover.clock import FixedClock
from bodacover.cover.services import build_services
from bodacover.cover.session import RiderSession
from bodacover.database.memory import InMemoryClaimStore, InMemoryPolicyStore, InMemoryRiderStore
from bodacover.integrations.clients.mocks.ledger import InMemoryWalletLedger
from bodacover.integrations.clients.mocks.mpesa import MpesaMockClient
from bodacover.utils.config_loader import SettlementConfig, load_cover_config

RIDER_PHONE = "0712345678"
OTHER_PHONE = "0798765432"


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def cover_config():
    return load_cover_config()


@pytest.fixture
def riders():
    store = InMemoryRiderStore()
    store.get_or_create_rider(RIDER_PHONE, name="Otieno")
    store.get_or_create_rider(OTHER_PHONE, name="Wanjiru")
    return store


@pytest.fixture
def policy_store():
    return InMemoryPolicyStore()


@pytest.fixture
def claim_store():
    return InMemoryClaimStore()


@pytest.fixture
def session():
    return RiderSession(rider_id=RIDER_PHONE, auth_token="token-abc")


@pytest.fixture
def make_services(cover_config, riders, policy_store, claim_store, clock):
    """Build the full service graph; polling runs without real sleeps unless asked."""

    def _make(gateway=None, ledger=None, poll_interval_seconds=0.0, max_poll_attempts=12, min_amount="1"):
        config = cover_config.model_copy(
            update={
                "settlement": SettlementConfig(
                    poll_interval_seconds=poll_interval_seconds,
                    max_poll_attempts=max_poll_attempts,
                    mobile_money_min_amount=Decimal(min_amount),
                )
            }
        )
        return build_services(
            config,
            gateway=gateway or MpesaMockClient(),
            ledger=ledger or InMemoryWalletLedger({RIDER_PHONE: Decimal("50")}),
            riders=riders,
            policies=policy_store,
            claims=claim_store,
            clock=clock,
        )

    return _make


@pytest.fixture
def services(make_services):
    return make_services()
