from decimal import Decimal

import pytest
import yaml
from pydantic import ValidationError as PydanticValidationError

from bodacover.cover.catalog import PlanCatalog, parse_duration
from bodacover.cover.quotation import QuoteCalculator
from bodacover.errors import InvalidSelectionError, NotFoundError
from bodacover.integrations.contracts.interfaces import Duration, ProtectionType, Selection, SettlementRail
from bodacover.utils.config_loader import default_config_path, load_cover_config


@pytest.fixture
def catalog(cover_config):
    return PlanCatalog.from_config(cover_config)


@pytest.fixture
def quotes(catalog, cover_config):
    return QuoteCalculator(catalog, reward_units_per_token=cover_config.reward_units_per_token)


def test_default_plan_table_has_six_tiers(catalog):
    assert len(catalog.tiers()) == 6
    assert catalog.get_tier("rider", "Daily").premium_amount == Decimal("0.93")
    assert catalog.get_tier("rider", "Weekly").premium_amount == Decimal("4.65")
    assert catalog.get_tier("rider", "Monthly").premium_amount == Decimal("16.28")
    assert catalog.get_tier("bike", "Daily").premium_amount == Decimal("0.62")
    assert catalog.get_tier("bike", "Weekly").premium_amount == Decimal("3.10")
    assert catalog.get_tier("bike", "Monthly").premium_amount == Decimal("10.85")


def test_coverage_schedule_keeps_uncovered_benefits_as_zero(catalog):
    tier = catalog.get_tier(ProtectionType.BIKE, Duration.DAILY)
    assert tier.coverage_schedule["theft"] == 0
    assert tier.coverage_schedule["thirdPartyLiability"] == 100000


def test_unknown_tier_is_not_found(catalog):
    with pytest.raises(NotFoundError):
        catalog.get_tier("tuk-tuk", "Daily")
    with pytest.raises(NotFoundError):
        parse_duration("Yearly")


def test_fiat_value_rounds_half_up(catalog):
    # 4.65 * 12.9 = 59.985
    assert catalog.fiat_value(Decimal("4.65")) == Decimal("60")
    assert catalog.fiat_value(Decimal("0.62")) == Decimal("8")


def test_config_rejects_missing_tier(tmp_path):
    data = yaml.safe_load(default_config_path().read_text(encoding="utf-8"))
    del data["plans"]["bike"]["Monthly"]
    path = tmp_path / "cover.yml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")

    with pytest.raises(PydanticValidationError):
        load_cover_config(path)


def test_config_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_cover_config(tmp_path / "nope.yml")


def test_quote_sums_one_plan_per_type(quotes):
    quote = quotes.quote([
        {"protectionType": "rider", "plan": "Weekly"},
        {"protectionType": "bike", "plan": "Monthly"},
    ])

    assert quote.total_amount == Decimal("15.50")
    assert quote.per_type_amount == {ProtectionType.RIDER: Decimal("4.65"), ProtectionType.BIKE: Decimal("10.85")}
    assert set(quote.coverage_summary) == {ProtectionType.RIDER, ProtectionType.BIKE}
    assert quote.reward_units == 1550
    assert quote.fiat_total == Decimal("200")


def test_quote_accepts_type_to_duration_mapping(quotes):
    quote = quotes.quote({"bike": "Daily"})
    assert quote.selections == (Selection(ProtectionType.BIKE, Duration.DAILY),)
    assert quote.total_amount == Decimal("0.62")


def test_exact_duplicate_selection_collapses(quotes):
    quote = quotes.quote([("rider", "Daily"), ("rider", "Daily")])
    assert len(quote.selections) == 1
    assert quote.total_amount == Decimal("0.93")


def test_two_durations_for_one_type_is_rejected(quotes):
    with pytest.raises(InvalidSelectionError):
        quotes.quote([("rider", "Daily"), ("rider", "Monthly")])


def test_empty_selection_is_rejected(quotes):
    with pytest.raises(InvalidSelectionError):
        quotes.quote([])


def test_unknown_plan_in_selection_is_invalid_selection(quotes):
    with pytest.raises(InvalidSelectionError):
        quotes.quote([{"protectionType": "rider", "plan": "Hourly"}])


def test_charge_amount_depends_on_rail(quotes):
    quote = quotes.quote([("rider", "Weekly")])
    assert quotes.charge_amount(quote, SettlementRail.WALLET_TOKEN) == Decimal("4.65")
    assert quotes.charge_amount(quote, SettlementRail.MOBILE_MONEY) == Decimal("60")


def test_quote_to_dict_uses_display_keys(quotes):
    body = quotes.quote([("bike", "Weekly")]).to_dict()
    assert body["totalAmount"] == "3.10"
    assert body["selections"] == [{"protectionType": "bike", "plan": "Weekly"}]
    assert body["coverageSummary"]["bike"]["theft"] == 150000
