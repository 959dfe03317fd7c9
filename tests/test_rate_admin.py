from datetime import date
from decimal import Decimal

import pytest

from payroll_fx.core.errors import (
    RateConflictError,
    RateNotFoundError,
    RateRecordNotFoundError,
    ValidationError,
)

from .conftest import ORG, OTHER_ORG, TODAY


class TestCreate:
    def test_create_returns_decoded_row(self, service, usd_srd):
        assert usd_srd["organization_id"] == ORG
        assert usd_srd["rate"] == Decimal("21.5")
        assert usd_srd["source"] == "manual"
        assert usd_srd["effective_from"] == date(2025, 1, 1)
        assert usd_srd["effective_to"] is None
        assert usd_srd["metadata"] == {}
        assert usd_srd["created_by"] == "admin"
        assert usd_srd["created_at"]

    def test_effective_from_defaults_to_today(self, service):
        row = service.create_exchange_rate(ORG, "eur", "srd", "23.1")
        assert row["effective_from"] == TODAY
        assert (row["from_currency"], row["to_currency"]) == ("EUR", "SRD")

    def test_iso_strings_accepted(self, service):
        row = service.create_exchange_rate(
            ORG, "EUR", "SRD", "23.1", effective_from="2025-01-01", effective_to="2025-02-01"
        )
        assert row["effective_to"] == date(2025, 2, 1)

    def test_metadata_round_trips(self, service):
        row = service.create_exchange_rate(
            ORG, "EUR", "SRD", "23.1", metadata={"provider": "CBvS", "batch": 3}
        )
        assert service.db.get_rate(ORG, row["id"])["metadata"] == {"provider": "CBvS", "batch": 3}

    def test_new_current_row_closes_previous(self, service, usd_srd):
        newer = service.create_exchange_rate(
            ORG, "USD", "SRD", "22", effective_from=date(2025, 6, 1)
        )
        previous = service.db.get_rate(ORG, usd_srd["id"])
        assert previous["effective_to"] == date(2025, 6, 1)
        assert newer["effective_to"] is None
        assert [r["id"] for r in service.get_active_rates(ORG)] == [newer["id"]]

    def test_backdated_current_row_conflicts(self, service):
        current = service.create_exchange_rate(
            ORG, "USD", "SRD", "22", effective_from=date(2025, 6, 1)
        )
        with pytest.raises(RateConflictError):
            service.create_exchange_rate(ORG, "USD", "SRD", "21", effective_from=date(2025, 5, 1))
        assert service.db.get_rate(ORG, current["id"])["effective_to"] is None

    def test_historical_row_leaves_current_alone(self, service, usd_srd):
        service.create_exchange_rate(
            ORG,
            "USD",
            "SRD",
            "19",
            effective_from=date(2024, 1, 1),
            effective_to=date(2025, 1, 1),
        )
        assert service.db.get_rate(ORG, usd_srd["id"])["effective_to"] is None
        assert service.get_exchange_rate(ORG, "USD", "SRD", date(2024, 6, 1)).rate == Decimal("19")

    def test_current_rows_are_per_tenant(self, service, usd_srd):
        other = service.create_exchange_rate(
            OTHER_ORG, "USD", "SRD", "30", effective_from=date(2025, 2, 1)
        )
        assert service.db.get_rate(ORG, usd_srd["id"])["effective_to"] is None
        assert other["effective_to"] is None

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"from_currency": "USD", "to_currency": "USD", "rate": "1"},
            {"from_currency": "US", "to_currency": "SRD", "rate": "1"},
            {"from_currency": "USD", "to_currency": "SRD", "rate": "0"},
            {"from_currency": "USD", "to_currency": "SRD", "rate": "-2"},
            {"from_currency": "USD", "to_currency": "SRD", "rate": "1e13"},
            {"from_currency": "USD", "to_currency": "SRD", "rate": "1e-13"},
            {"from_currency": "USD", "to_currency": "SRD", "rate": "1", "source": "scraped"},
            {
                "from_currency": "USD",
                "to_currency": "SRD",
                "rate": "1",
                "effective_from": date(2025, 2, 1),
                "effective_to": date(2025, 2, 1),
            },
            {"from_currency": "USD", "to_currency": "SRD", "rate": "1", "effective_from": "01/02/2025"},
            {"from_currency": "USD", "to_currency": "SRD", "rate": "1", "metadata": ["x"]},
        ],
    )
    def test_invalid_input(self, service, kwargs):
        with pytest.raises(ValidationError):
            service.create_exchange_rate(ORG, **kwargs)
        assert service.get_active_rates(ORG) == []


class TestUpdate:
    def test_update_rate_in_place(self, service, usd_srd):
        row = service.update_exchange_rate(
            ORG, usd_srd["id"], {"rate": "21.75"}, updated_by="ops"
        )
        assert row["id"] == usd_srd["id"]
        assert row["rate"] == Decimal("21.75")
        assert row["updated_by"] == "ops"
        assert row["effective_from"] == usd_srd["effective_from"]

    def test_update_metadata_and_source(self, service, usd_srd):
        row = service.update_exchange_rate(
            ORG, usd_srd["id"], {"source": "imported", "metadata": {"note": "fixed"}}
        )
        assert row["source"] == "imported"
        assert row["metadata"] == {"note": "fixed"}
        row = service.update_exchange_rate(ORG, usd_srd["id"], {"metadata": None})
        assert row["metadata"] == {}

    def test_missing_row(self, service):
        with pytest.raises(RateRecordNotFoundError):
            service.update_exchange_rate(ORG, 999, {"rate": "1"})

    def test_other_tenant_row_is_not_found(self, service, usd_srd):
        with pytest.raises(RateRecordNotFoundError):
            service.update_exchange_rate(OTHER_ORG, usd_srd["id"], {"rate": "1"})

    @pytest.mark.parametrize(
        "changes",
        [
            {},
            {"from_currency": "EUR"},
            {"rate": "0"},
            {"source": "feed"},
            {"effective_from": None},
            {"effective_to": date(2024, 12, 31)},
            {"effective_from": date(2026, 1, 1), "effective_to": date(2025, 12, 1)},
            {"metadata": "note"},
        ],
    )
    def test_invalid_changes(self, service, usd_srd, changes):
        with pytest.raises(ValidationError):
            service.update_exchange_rate(ORG, usd_srd["id"], changes)
        assert service.db.get_rate(ORG, usd_srd["id"]) == usd_srd

    def test_window_checked_against_stored_values(self, service, usd_srd):
        row = service.update_exchange_rate(ORG, usd_srd["id"], {"effective_to": date(2025, 3, 1)})
        assert row["effective_to"] == date(2025, 3, 1)
        with pytest.raises(ValidationError):
            service.update_exchange_rate(ORG, usd_srd["id"], {"effective_from": date(2025, 3, 1)})

    def test_reopening_behind_current_row_conflicts(self, service, usd_srd):
        service.create_exchange_rate(ORG, "USD", "SRD", "22", effective_from=date(2025, 3, 1))
        with pytest.raises(RateConflictError):
            service.update_exchange_rate(ORG, usd_srd["id"], {"effective_to": None})
        assert service.db.get_rate(ORG, usd_srd["id"])["effective_to"] == date(2025, 3, 1)


class TestDelete:
    def test_soft_delete_closes_window(self, service, usd_srd):
        row = service.delete_exchange_rate(ORG, usd_srd["id"], deleted_by="ops")
        assert row["effective_to"] == TODAY
        assert row["updated_by"] == "ops"
        assert service.get_active_rates(ORG) == []
        with pytest.raises(RateNotFoundError):
            service.get_exchange_rate(ORG, "USD", "SRD")

    def test_deleted_row_still_answers_past_dates(self, service, usd_srd):
        service.delete_exchange_rate(ORG, usd_srd["id"])
        assert service.get_exchange_rate(ORG, "USD", "SRD", date(2025, 3, 1)).rate == Decimal("21.5")
        history = service.get_historical_rates(ORG, "USD", "SRD")
        assert [r["id"] for r in history] == [usd_srd["id"]]

    def test_delete_is_idempotent(self, service, usd_srd):
        first = service.delete_exchange_rate(ORG, usd_srd["id"], deleted_by="ops")
        second = service.delete_exchange_rate(ORG, usd_srd["id"], deleted_by="someone-else")
        assert second == first

    def test_future_row_closes_at_its_start(self, service):
        row = service.create_exchange_rate(ORG, "EUR", "SRD", "23", effective_from=date(2025, 7, 1))
        closed = service.delete_exchange_rate(ORG, row["id"])
        assert closed["effective_to"] == date(2025, 7, 1)

    def test_delete_frees_current_slot(self, service, usd_srd):
        service.delete_exchange_rate(ORG, usd_srd["id"])
        row = service.create_exchange_rate(ORG, "USD", "SRD", "23", effective_from=TODAY)
        assert service.get_exchange_rate(ORG, "USD", "SRD").exchange_rate_id == row["id"]

    def test_missing_or_foreign_row(self, service, usd_srd):
        with pytest.raises(RateRecordNotFoundError):
            service.delete_exchange_rate(ORG, 12345)
        with pytest.raises(RateRecordNotFoundError):
            service.delete_exchange_rate(OTHER_ORG, usd_srd["id"])
        assert service.db.get_rate(ORG, usd_srd["id"])["effective_to"] is None


class TestBulkImport:
    ROWS = [
        {"from_currency": "USD", "to_currency": "SRD", "rate": "21.5", "effective_from": "2025-01-01"},
        {"from_currency": "EUR", "to_currency": "EUR", "rate": "1"},
        {"from_currency": "EUR", "to_currency": "SRD", "rate": "23.1", "source": "manual"},
        {"from_currency": "GBP", "to_currency": "SRD", "rate": "-1"},
    ]

    def test_best_effort(self, service):
        result = service.bulk_import_rates(ORG, self.ROWS, created_by="importer")
        created = result["created"]
        assert [(r["from_currency"], r["source"]) for r in created] == [
            ("USD", "imported"),
            ("EUR", "manual"),
        ]
        assert all(r["created_by"] == "importer" for r in created)
        assert [e["index"] for e in result["errors"]] == [1, 3]
        assert "must be different" in result["errors"][0]["error"]

    def test_fail_fast_stops_at_first_error(self, service):
        with pytest.raises(ValidationError):
            service.bulk_import_rates(ORG, self.ROWS, fail_fast=True)
        # rows before the failure are kept; there is no batch atomicity
        active = service.get_active_rates(ORG)
        assert [r["from_currency"] for r in active] == ["USD"]

    def test_conflicts_are_reported_per_row(self, service):
        rows = [
            {"from_currency": "USD", "to_currency": "SRD", "rate": "22", "effective_from": "2025-06-01"},
            {"from_currency": "USD", "to_currency": "SRD", "rate": "21", "effective_from": "2025-05-01"},
        ]
        result = service.bulk_import_rates(ORG, rows)
        assert len(result["created"]) == 1
        assert result["errors"][0]["index"] == 1


class TestListing:
    @pytest.fixture
    def history(self, service):
        rows = []
        for day, rate in [((2025, 1, 1), "20"), ((2025, 3, 1), "21"), ((2025, 5, 1), "21.5")]:
            rows.append(
                service.create_exchange_rate(ORG, "USD", "SRD", rate, effective_from=date(*day))
            )
        return rows

    def test_newest_first(self, service, history):
        listed = service.get_historical_rates(ORG, "usd", "srd")
        assert [r["id"] for r in listed] == [r["id"] for r in reversed(history)]

    def test_date_filters_on_effective_from(self, service, history):
        listed = service.get_historical_rates(
            ORG, "USD", "SRD", start_date=date(2025, 2, 1), end_date=date(2025, 4, 1)
        )
        assert [r["rate"] for r in listed] == [Decimal("21")]

    def test_pagination(self, service, history):
        page = service.get_historical_rates(ORG, "USD", "SRD", limit=2, offset=1)
        assert [r["rate"] for r in page] == [Decimal("21"), Decimal("20")]

    def test_limit_is_capped(self, service, settings, history):
        settings.historical_page_max = 2
        assert len(service.get_historical_rates(ORG, "USD", "SRD", limit=100)) == 2

    def test_inverted_range_rejected(self, service):
        with pytest.raises(ValidationError):
            service.get_historical_rates(
                ORG, "USD", "SRD", start_date=date(2025, 2, 1), end_date=date(2025, 1, 1)
            )

    def test_active_rates(self, service, history):
        service.create_exchange_rate(
            ORG, "EUR", "SRD", "23", effective_from=date(2025, 6, 1), effective_to=date(2025, 7, 1)
        )
        service.create_exchange_rate(
            ORG, "GBP", "SRD", "27", effective_from=date(2025, 1, 1), effective_to=TODAY
        )
        active = service.get_active_rates(ORG)
        assert [(r["from_currency"], r["rate"]) for r in active] == [
            ("EUR", Decimal("23")),
            ("USD", Decimal("21.5")),
        ]
        assert service.get_active_rates(OTHER_ORG) == []
