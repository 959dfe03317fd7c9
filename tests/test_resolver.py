from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from payroll_fx.core.errors import RateNotFoundError, ValidationError

from .conftest import ORG, OTHER_ORG, TODAY


def spy_store(service, monkeypatch):
    spy = MagicMock(wraps=service.db.find_effective_rate)
    monkeypatch.setattr(service.db, "find_effective_rate", spy)
    return spy


class TestIdentity:
    @pytest.mark.parametrize("code", ["USD", "SRD", "EUR", "JPY"])
    def test_same_currency_is_identity(self, service, code):
        resolved = service.get_exchange_rate(ORG, code, code, TODAY)
        assert resolved.rate == Decimal(1)
        assert resolved.source == "identity"
        assert resolved.exchange_rate_id is None

    def test_identity_skips_store_and_cache(self, service, monkeypatch):
        spy = spy_store(service, monkeypatch)
        service.get_exchange_rate(ORG, "usd", "USD")
        assert spy.call_count == 0
        stats = service.get_cache_stats()
        assert (stats["keys"], stats["hits"], stats["misses"]) == (0, 0, 0)


class TestDirectAndInverse:
    def test_direct_lookup(self, service, usd_srd):
        resolved = service.get_exchange_rate(ORG, "USD", "SRD", TODAY)
        assert resolved.rate == Decimal("21.5")
        assert resolved.source == "manual"
        assert resolved.exchange_rate_id == usd_srd["id"]

    def test_codes_are_case_normalized(self, service, usd_srd):
        resolved = service.get_exchange_rate(ORG, "usd", " srd ", TODAY)
        assert resolved.from_currency == "USD"
        assert resolved.to_currency == "SRD"

    def test_inverse_lookup(self, service, usd_srd):
        resolved = service.get_exchange_rate(ORG, "SRD", "USD", TODAY)
        assert resolved.rate == Decimal(1) / Decimal("21.5")
        assert abs(resolved.rate * Decimal("21.5") - 1) < Decimal("1e-20")
        assert resolved.source == "manual_inverted"
        assert resolved.exchange_rate_id == usd_srd["id"]
        assert (resolved.from_currency, resolved.to_currency) == ("SRD", "USD")

    def test_imported_rows_invert_with_suffix(self, service):
        service.create_exchange_rate(
            ORG, "EUR", "SRD", "23.1", source="imported", effective_from=date(2025, 1, 1)
        )
        assert service.get_exchange_rate(ORG, "SRD", "EUR", TODAY).source == "imported_inverted"

    def test_direct_row_preferred_over_inverse(self, service, usd_srd):
        service.create_exchange_rate(
            ORG, "SRD", "USD", "0.05", effective_from=date(2025, 1, 1)
        )
        assert service.get_exchange_rate(ORG, "SRD", "USD", TODAY).rate == Decimal("0.05")

    def test_date_window_selects_historical_row(self, service):
        service.create_exchange_rate(ORG, "USD", "SRD", "20", effective_from=date(2025, 1, 1))
        service.create_exchange_rate(ORG, "USD", "SRD", "21.5", effective_from=date(2025, 3, 1))

        assert service.get_exchange_rate(ORG, "USD", "SRD", date(2025, 2, 28)).rate == Decimal("20")
        # effective_to is exclusive
        assert service.get_exchange_rate(ORG, "USD", "SRD", date(2025, 3, 1)).rate == Decimal("21.5")
        assert service.get_exchange_rate(ORG, "USD", "SRD", TODAY).rate == Decimal("21.5")

    def test_date_before_any_window_is_not_found(self, service, usd_srd):
        with pytest.raises(RateNotFoundError):
            service.get_exchange_rate(ORG, "USD", "SRD", date(2024, 12, 31))

    def test_other_tenant_rates_are_invisible(self, service, usd_srd):
        with pytest.raises(RateNotFoundError):
            service.get_exchange_rate(OTHER_ORG, "USD", "SRD", TODAY)

    def test_malformed_code_rejected_before_store(self, service, monkeypatch):
        spy = spy_store(service, monkeypatch)
        with pytest.raises(ValidationError):
            service.get_exchange_rate(ORG, "US", "SRD")
        with pytest.raises(ValidationError):
            service.get_exchange_rate(ORG, "USD", "SR1")
        assert spy.call_count == 0


class TestTriangulation:
    def test_triangulates_through_base_currency(self, service, usd_srd):
        service.create_exchange_rate(ORG, "SRD", "EUR", "0.047", effective_from=date(2025, 1, 1))

        resolved = service.get_exchange_rate(ORG, "USD", "EUR", TODAY)

        assert resolved.rate == Decimal("1.0105")
        assert resolved.source == "triangulated"
        assert resolved.metadata["via"] == "SRD"
        assert resolved.metadata["from_to_base"] == Decimal("21.5")
        assert resolved.metadata["base_to_target"] == Decimal("0.047")
        assert resolved.exchange_rate_id is None

    def test_legs_may_be_inverted(self, service, usd_srd):
        # only EUR->SRD stored; the SRD->EUR leg comes from inversion
        service.create_exchange_rate(ORG, "EUR", "SRD", "20", effective_from=date(2025, 1, 1))

        resolved = service.get_exchange_rate(ORG, "USD", "EUR", TODAY)

        assert resolved.rate == Decimal("21.5") * (Decimal(1) / Decimal("20"))
        assert resolved.metadata["legs"] == ["manual", "manual_inverted"]

    def test_uses_configured_base_currency(self, service):
        service.update_org_config(ORG, {"base_currency": "USD"})
        service.create_exchange_rate(ORG, "EUR", "USD", "1.1", effective_from=date(2025, 1, 1))
        service.create_exchange_rate(ORG, "USD", "SRD", "21.5", effective_from=date(2025, 1, 1))

        resolved = service.get_exchange_rate(ORG, "EUR", "SRD", TODAY)

        assert resolved.rate == Decimal("23.65")
        assert resolved.metadata["via"] == "USD"

    def test_missing_leg_is_not_found(self, service, usd_srd):
        with pytest.raises(RateNotFoundError) as exc:
            service.get_exchange_rate(ORG, "USD", "JPY", TODAY)
        assert str(exc.value) == "Exchange rate not found for USD to JPY"

    def test_only_one_hop(self, service):
        # GBP->EUR->SRD would need two hops when SRD is the base
        service.create_exchange_rate(ORG, "GBP", "EUR", "1.17", effective_from=date(2025, 1, 1))
        service.create_exchange_rate(ORG, "EUR", "SRD", "23.1", effective_from=date(2025, 1, 1))
        with pytest.raises(RateNotFoundError):
            service.get_exchange_rate(ORG, "GBP", "SRD", TODAY)

    def test_unknown_pair_without_any_rates(self, service):
        with pytest.raises(RateNotFoundError):
            service.get_exchange_rate(ORG, "ABC", "XYZ", TODAY)


class TestResolutionCache:
    def test_repeated_resolve_hits_store_once(self, service, usd_srd, monkeypatch):
        spy = spy_store(service, monkeypatch)
        for _ in range(5):
            assert service.get_exchange_rate(ORG, "USD", "SRD").rate == Decimal("21.5")
        assert spy.call_count == 1
        stats = service.get_cache_stats()
        assert stats["hits"] == 4
        assert stats["keys"] == 1

    def test_historical_dates_bypass_cache(self, service, usd_srd, monkeypatch):
        spy = spy_store(service, monkeypatch)
        service.get_exchange_rate(ORG, "USD", "SRD", date(2025, 2, 1))
        service.get_exchange_rate(ORG, "USD", "SRD", date(2025, 2, 1))
        assert spy.call_count == 2
        assert service.get_cache_stats()["keys"] == 0

    def test_cache_is_tenant_scoped(self, service, usd_srd):
        service.get_exchange_rate(ORG, "USD", "SRD")
        with pytest.raises(RateNotFoundError):
            service.get_exchange_rate(OTHER_ORG, "USD", "SRD")

    def test_create_invalidates(self, service, usd_srd, monkeypatch):
        spy = spy_store(service, monkeypatch)
        service.get_exchange_rate(ORG, "USD", "SRD")
        service.create_exchange_rate(ORG, "USD", "SRD", "22", effective_from=TODAY)

        assert service.get_exchange_rate(ORG, "USD", "SRD").rate == Decimal("22")
        assert spy.call_count == 2

    def test_update_invalidates(self, service, usd_srd, monkeypatch):
        spy = spy_store(service, monkeypatch)
        service.get_exchange_rate(ORG, "USD", "SRD")
        service.update_exchange_rate(ORG, usd_srd["id"], {"rate": "21.75"})

        assert service.get_exchange_rate(ORG, "USD", "SRD").rate == Decimal("21.75")
        assert spy.call_count == 2

    def test_delete_invalidates(self, service, usd_srd):
        service.get_exchange_rate(ORG, "USD", "SRD")
        service.delete_exchange_rate(ORG, usd_srd["id"], deleted_by="admin")
        with pytest.raises(RateNotFoundError):
            service.get_exchange_rate(ORG, "USD", "SRD")

    def test_mutation_drops_derived_entries(self, service, usd_srd):
        # the inverted SRD->USD entry derives from the USD->SRD row
        service.get_exchange_rate(ORG, "SRD", "USD")
        service.update_exchange_rate(ORG, usd_srd["id"], {"rate": "25"})
        assert service.get_exchange_rate(ORG, "SRD", "USD").rate == Decimal(1) / Decimal(25)

    def test_clear_cache(self, service, usd_srd, monkeypatch):
        spy = spy_store(service, monkeypatch)
        service.get_exchange_rate(ORG, "USD", "SRD")
        service.clear_cache()
        service.get_exchange_rate(ORG, "USD", "SRD")
        assert spy.call_count == 2
