"""
Tests for DepreciationEngine: monthly posting, idempotency, per-asset
failure isolation, posting modes and reports.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from school_ledger.config import CategoryAccounts, LedgerConfig
from school_ledger.exceptions import AssetNotFoundError, InvalidPeriodError, ValidationError
from school_ledger.models.asset import (
    AssetStatus,
    DepreciationMethod,
    DepreciationRecord,
)
from school_ledger.models.journal import JournalEntry, JournalEntryStatus, ReferenceType
from school_ledger.services.depreciation_engine import DepreciationEngine
from school_ledger.services.ledger_poster import LedgerPoster


@pytest.fixture
def school_bus(create_asset, default_chart):
    return create_asset(
        "FA-BUS-01",
        name="School Bus",
        category="vehicles",
        purchase_price="150000.00",
        residual_value="15000.00",
        useful_life_years=5,
    )


def _records(session, asset):
    return list(
        session.execute(
            select(DepreciationRecord).where(DepreciationRecord.asset_id == asset.id)
        ).scalars()
    )


class TestPostMonthlyDepreciation:
    def test_straight_line_example(self, depreciation_engine, school_bus, session):
        result = depreciation_engine.post_monthly_depreciation(2024, 3, user_id="bursar")

        assert result.total_depreciation == Decimal("2250.00")
        assert result.assets_processed == 1
        assert result.entries_created == 1
        assert result.errors == []
        assert school_bus.accumulated_depreciation == Decimal("2250.00")
        assert school_bus.current_value == Decimal("147750.00")

    def test_journal_entry_posted(self, depreciation_engine, school_bus, session):
        result = depreciation_engine.post_monthly_depreciation(2024, 3, user_id="bursar")

        entry = session.get(JournalEntry, result.journal_entry_ids[0])
        assert entry.status == JournalEntryStatus.POSTED
        assert entry.reference == "DEP-2024-03-FA-BUS-01"
        assert entry.entry_date == date(2024, 3, 1)
        assert entry.reference_type == ReferenceType.DEPRECIATION
        assert entry.reference_id == str(school_bus.id)
        assert entry.posted_by == "bursar"
        lines = {(l.account_code, l.debit_amount, l.credit_amount) for l in entry.lines}
        assert lines == {
            ("5500", Decimal("2250.00"), Decimal("0.00")),
            ("1250", Decimal("0.00"), Decimal("2250.00")),
        }

    def test_record_written(self, depreciation_engine, school_bus, session):
        result = depreciation_engine.post_monthly_depreciation(2024, 3, user_id="bursar")

        (record,) = _records(session, school_bus)
        assert (record.period_year, record.period_month) == (2024, 3)
        assert record.amount == Decimal("2250.00")
        assert record.opening_value == Decimal("150000.00")
        assert record.closing_value == Decimal("147750.00")
        assert record.accumulated_depreciation == Decimal("2250.00")
        assert record.recorded_by == "bursar"
        assert record.journal_entry_id == result.journal_entry_ids[0]

    def test_second_run_is_noop(self, depreciation_engine, school_bus, session):
        depreciation_engine.post_monthly_depreciation(2024, 3)
        second = depreciation_engine.post_monthly_depreciation(2024, 3)

        assert second.total_depreciation == Decimal("0.00")
        assert second.assets_processed == 0
        assert second.entries_created == 0
        assert second.assets_skipped == 1
        assert school_bus.accumulated_depreciation == Decimal("2250.00")
        assert len(_records(session, school_bus)) == 1
        assert session.query(JournalEntry).count() == 1

    def test_consecutive_months_accumulate(self, depreciation_engine, school_bus):
        for month in (1, 2, 3):
            depreciation_engine.post_monthly_depreciation(2024, month)

        assert school_bus.accumulated_depreciation == Decimal("6750.00")
        assert school_bus.current_value == Decimal("143250.00")

    def test_clamped_near_end_of_life(self, depreciation_engine, create_asset, default_chart):
        asset = create_asset(
            "FA-PC-01",
            purchase_price="150000.00",
            residual_value="15000.00",
            useful_life_years=5,
            accumulated_depreciation="134000.00",
        )
        result = depreciation_engine.post_monthly_depreciation(2024, 3)

        assert result.total_depreciation == Decimal("1000.00")
        assert asset.accumulated_depreciation == Decimal("135000.00")
        assert asset.current_value == Decimal("15000.00")

    def test_fully_depreciated_skipped(self, depreciation_engine, create_asset, default_chart):
        create_asset(
            "FA-OLD-01",
            purchase_price="1000.00",
            useful_life_years=1,
            accumulated_depreciation="1000.00",
        )
        result = depreciation_engine.post_monthly_depreciation(2024, 3)

        assert result.assets_processed == 0
        assert result.assets_skipped == 1
        assert result.entries_created == 0

    def test_final_month_absorbs_rounding(self, depreciation_engine, create_asset, default_chart):
        asset = create_asset("FA-DESK-01", purchase_price="1000.00", useful_life_years=1)
        for month in range(1, 13):
            depreciation_engine.post_monthly_depreciation(2024, month)

        assert asset.accumulated_depreciation == Decimal("1000.00")
        assert asset.current_value == Decimal("0.00")

    def test_rate_based_asset(self, depreciation_engine, create_asset, default_chart):
        asset = create_asset(
            "FA-LIB-01",
            category="library_books",
            purchase_price="12000.00",
            useful_life_years=None,
            depreciation_rate="10",
        )
        result = depreciation_engine.post_monthly_depreciation(2024, 3)

        assert result.total_depreciation == Decimal("100.00")
        assert asset.accumulated_depreciation == Decimal("100.00")

    @pytest.mark.parametrize(
        "status",
        [AssetStatus.DISPOSED, AssetStatus.INACTIVE, AssetStatus.LOST, AssetStatus.DAMAGED],
    )
    def test_inactive_assets_ignored(self, depreciation_engine, create_asset, default_chart, status):
        create_asset("FA-X", status=status)
        result = depreciation_engine.post_monthly_depreciation(2024, 3)
        assert result.assets_processed == 0
        assert result.assets_skipped == 0

    def test_non_depreciating_method_ignored(self, depreciation_engine, create_asset, default_chart):
        create_asset("FA-LAND", method=DepreciationMethod.NONE)
        result = depreciation_engine.post_monthly_depreciation(2024, 3)
        assert result.assets_processed == 0

    def test_assets_without_life_or_rate_ignored(self, depreciation_engine, create_asset, default_chart):
        create_asset("FA-ART", useful_life_years=None)
        result = depreciation_engine.post_monthly_depreciation(2024, 3)
        assert result.assets_processed == 0
        assert result.assets_skipped == 0

    @pytest.mark.parametrize("year,month", [(2024, 0), (2024, 13), (0, 1)])
    def test_invalid_period(self, depreciation_engine, year, month):
        with pytest.raises(InvalidPeriodError):
            depreciation_engine.post_monthly_depreciation(year, month)

    def test_as_dict_uses_camel_case(self, depreciation_engine, school_bus):
        result = depreciation_engine.post_monthly_depreciation(2024, 3)
        assert result.as_dict() == {
            "totalDepreciation": Decimal("2250.00"),
            "assetsProcessed": 1,
            "entriesCreated": 1,
            "errors": [],
        }

    def test_run_logged(self, depreciation_engine, school_bus, captured_logs):
        depreciation_engine.post_monthly_depreciation(2024, 3, user_id="bursar")

        logs = captured_logs()
        messages = [r["message"] for r in logs]
        assert "depreciation_run_started" in messages
        assert "depreciation_asset_posted" in messages
        completed = next(r for r in logs if r["message"] == "depreciation_run_completed")
        assert completed["batch_id"] == "DEP-2024-03"
        assert completed["actor_id"] == "bursar"
        assert completed["total_depreciation"] == "2250.00"


class TestFailureIsolation:
    def test_failure_does_not_block_siblings(self, session, poster, default_chart, create_asset):
        config = LedgerConfig(
            category_accounts={
                "furniture": CategoryAccounts(expense_account="5999", accumulated_account="1250"),
            }
        )
        engine = DepreciationEngine(session, poster, config)
        chair = create_asset("FA-CHAIR-01", category="furniture", purchase_price="1200.00")
        bus = create_asset("FA-BUS-01", category="vehicles", purchase_price="12000.00")

        result = engine.post_monthly_depreciation(2024, 3)

        assert result.assets_processed == 1
        assert result.total_depreciation == Decimal("200.00")
        assert [e.asset_code for e in result.errors] == ["FA-CHAIR-01"]
        assert "5999" in result.errors[0].error
        assert result.as_dict()["errors"][0]["assetCode"] == "FA-CHAIR-01"
        assert chair.accumulated_depreciation == Decimal("0.00")
        assert _records(session, chair) == []
        assert bus.accumulated_depreciation == Decimal("200.00")

    def test_failed_asset_retried_next_run(self, session, poster, registry, default_chart, create_asset):
        config = LedgerConfig(
            category_accounts={
                "lab_equipment": CategoryAccounts(expense_account="5450", accumulated_account="1250"),
            }
        )
        engine = DepreciationEngine(session, poster, config)
        microscope = create_asset("FA-LAB-01", category="lab_equipment", purchase_price="600.00")

        first = engine.post_monthly_depreciation(2024, 3)
        assert first.has_errors

        registry.create_account("5450", "Lab Equipment Depreciation", "expense", parent_id="5000")
        second = engine.post_monthly_depreciation(2024, 3)

        assert not second.has_errors
        assert second.assets_processed == 1
        assert microscope.accumulated_depreciation == Decimal("10.00")

    def test_invalid_asset_reported(self, depreciation_engine, create_asset, default_chart):
        create_asset("FA-BAD-01", purchase_price="-100.00", residual_value="-200.00")
        create_asset("FA-PC-01", purchase_price="1200.00")

        result = depreciation_engine.post_monthly_depreciation(2024, 3)

        assert [(e.asset_code, e.error_code) for e in result.errors] == [
            ("FA-BAD-01", "VALIDATION_ERROR")
        ]
        assert result.assets_processed == 1

    def test_failure_logged(self, session, poster, default_chart, create_asset, captured_logs):
        config = LedgerConfig(depreciation_expense_account="5999")
        engine = DepreciationEngine(session, poster, config)
        create_asset("FA-PC-01")

        engine.post_monthly_depreciation(2024, 3)

        failed = [r for r in captured_logs() if r["message"] == "depreciation_asset_failed"]
        assert failed[0]["asset_code"] == "FA-PC-01"
        assert failed[0]["exc_code"] == "INVALID_JOURNAL_LINE"


class TestPerCategoryMode:
    @pytest.fixture
    def engine(self, session, poster):
        return DepreciationEngine(
            session, poster, LedgerConfig(depreciation_posting_mode="per_category")
        )

    def test_one_entry_per_category(self, engine, session, create_asset, default_chart):
        create_asset("FA-CHAIR-01", category="furniture", purchase_price="1200.00")
        create_asset("FA-DESK-01", category="furniture", purchase_price="2400.00")
        create_asset("FA-BUS-01", category="vehicles", purchase_price="12000.00")

        result = engine.post_monthly_depreciation(2024, 3)

        assert result.assets_processed == 3
        assert result.entries_created == 2
        assert result.total_depreciation == Decimal("260.00")
        furniture = session.execute(
            select(JournalEntry).where(JournalEntry.reference == "DEP-2024-03-CAT-furniture")
        ).scalar_one()
        assert furniture.total_debit == Decimal("60.00")

    def test_idempotent(self, engine, create_asset, default_chart):
        create_asset("FA-CHAIR-01", category="furniture", purchase_price="1200.00")

        engine.post_monthly_depreciation(2024, 3)
        second = engine.post_monthly_depreciation(2024, 3)

        assert second.entries_created == 0
        assert second.assets_skipped == 1

    def test_asset_added_after_run_gets_suffixed_entry(self, engine, session, create_asset, default_chart):
        chair = create_asset("FA-CHAIR-01", category="furniture", purchase_price="1200.00")
        first = engine.post_monthly_depreciation(2024, 3)
        desk = create_asset("FA-DESK-01", category="furniture", purchase_price="2400.00")

        second = engine.post_monthly_depreciation(2024, 3)

        assert second.errors == []
        assert second.assets_processed == 1
        assert second.assets_skipped == 1
        assert second.entries_created == 1
        entry = session.get(JournalEntry, second.journal_entry_ids[0])
        assert entry.reference == "DEP-2024-03-CAT-furniture-2"
        assert entry.total_debit == Decimal("40.00")
        assert chair.accumulated_depreciation == Decimal("20.00")
        assert desk.accumulated_depreciation == Decimal("40.00")
        (record,) = _records(session, desk)
        assert record.journal_entry_id == entry.id
        assert first.journal_entry_ids[0] != entry.id

    def test_third_run_takes_next_suffix(self, engine, session, create_asset, default_chart):
        create_asset("FA-CHAIR-01", category="furniture", purchase_price="1200.00")
        engine.post_monthly_depreciation(2024, 3)
        create_asset("FA-DESK-01", category="furniture", purchase_price="2400.00")
        engine.post_monthly_depreciation(2024, 3)
        create_asset("FA-SHELF-01", category="furniture", purchase_price="600.00")

        third = engine.post_monthly_depreciation(2024, 3)

        assert third.errors == []
        assert third.assets_processed == 1
        references = session.execute(
            select(JournalEntry.reference).order_by(JournalEntry.reference)
        ).scalars().all()
        assert references == [
            "DEP-2024-03-CAT-furniture",
            "DEP-2024-03-CAT-furniture-2",
            "DEP-2024-03-CAT-furniture-3",
        ]

    def test_category_failure_reports_every_asset(self, session, poster, create_asset, default_chart):
        config = LedgerConfig(
            depreciation_posting_mode="per_category",
            category_accounts={
                "furniture": CategoryAccounts(expense_account="5999", accumulated_account="1250"),
            },
        )
        engine = DepreciationEngine(session, poster, config)
        chair = create_asset("FA-CHAIR-01", category="furniture", purchase_price="1200.00")
        create_asset("FA-DESK-01", category="furniture", purchase_price="2400.00")
        create_asset("FA-BUS-01", category="vehicles", purchase_price="12000.00")

        result = engine.post_monthly_depreciation(2024, 3)

        assert sorted(e.asset_code for e in result.errors) == ["FA-CHAIR-01", "FA-DESK-01"]
        assert result.assets_processed == 1
        assert _records(session, chair) == []


class TestConcurrentClaims:
    """
    Another run claims the period between the record lookup and the insert.
    Disabling the lookup sends the second run straight to the unique
    constraint on (asset, year, month).
    """

    @staticmethod
    def _hide_existing_records(engine, monkeypatch):
        monkeypatch.setattr(engine, "_record_for", lambda asset_id, year, month: None)

    def test_per_asset_collision_is_skip(self, depreciation_engine, school_bus, session, monkeypatch):
        depreciation_engine.post_monthly_depreciation(2024, 3)
        self._hide_existing_records(depreciation_engine, monkeypatch)

        second = depreciation_engine.post_monthly_depreciation(2024, 3)

        assert second.errors == []
        assert second.assets_skipped == 1
        assert second.assets_processed == 0
        assert second.entries_created == 0
        assert school_bus.accumulated_depreciation == Decimal("2250.00")
        assert len(_records(session, school_bus)) == 1
        assert session.query(JournalEntry).count() == 1

    def test_collision_does_not_block_siblings(self, depreciation_engine, school_bus, create_asset, session, monkeypatch):
        depreciation_engine.post_monthly_depreciation(2024, 3)
        laptop = create_asset("FA-PC-01", category="computers", purchase_price="1200.00")
        self._hide_existing_records(depreciation_engine, monkeypatch)

        second = depreciation_engine.post_monthly_depreciation(2024, 3)

        assert second.errors == []
        assert second.assets_skipped == 1
        assert second.assets_processed == 1
        assert laptop.accumulated_depreciation == Decimal("20.00")
        assert school_bus.accumulated_depreciation == Decimal("2250.00")

    def test_collision_logged_as_already_recorded(self, depreciation_engine, school_bus, captured_logs, monkeypatch):
        depreciation_engine.post_monthly_depreciation(2024, 3)
        self._hide_existing_records(depreciation_engine, monkeypatch)

        depreciation_engine.post_monthly_depreciation(2024, 3)

        skipped = [r for r in captured_logs() if r["message"] == "depreciation_asset_skipped"]
        assert [(r["asset_code"], r["reason"]) for r in skipped] == [("FA-BUS-01", "already_recorded")]

    def test_per_category_collision_is_skip(self, session, poster, create_asset, default_chart, monkeypatch):
        engine = DepreciationEngine(
            session, poster, LedgerConfig(depreciation_posting_mode="per_category")
        )
        chair = create_asset("FA-CHAIR-01", category="furniture", purchase_price="1200.00")
        engine.post_monthly_depreciation(2024, 3)
        self._hide_existing_records(engine, monkeypatch)

        second = engine.post_monthly_depreciation(2024, 3)

        assert second.errors == []
        assert second.assets_skipped == 1
        assert second.entries_created == 0
        assert chair.accumulated_depreciation == Decimal("20.00")
        assert len(_records(session, chair)) == 1
        assert session.query(JournalEntry).count() == 1


class TestReports:
    def test_calculate_monthly(self, depreciation_engine, school_bus):
        assert depreciation_engine.calculate_monthly_depreciation(school_bus) == Decimal("2250.00")

    def test_calculate_monthly_method_none(self, depreciation_engine, create_asset, default_chart):
        land = create_asset("FA-LAND", method=DepreciationMethod.NONE)
        assert depreciation_engine.calculate_monthly_depreciation(land) == Decimal("0.00")

    def test_annual_report(self, depreciation_engine, school_bus, create_asset):
        create_asset("FA-PC-01", purchase_price="1200.00", useful_life_years=2)

        report = depreciation_engine.calculate_annual_depreciation(2024)

        assert [line.asset_code for line in report.assets] == ["FA-BUS-01", "FA-PC-01"]
        assert report.assets[0].annual_depreciation == Decimal("27000.00")
        assert report.assets[1].annual_depreciation == Decimal("600.00")
        assert report.total_annual_depreciation == Decimal("27600.00")

    def test_summary(self, depreciation_engine, school_bus, create_asset):
        create_asset("FA-PC-01", purchase_price="1200.00", useful_life_years=2)
        for month in (1, 2, 3):
            depreciation_engine.post_monthly_depreciation(2024, month)

        summary = depreciation_engine.get_depreciation_summary(date(2024, 2, 1), date(2024, 3, 31))

        assert summary.total_depreciation == Decimal("4600.00")
        assert summary.entries_count == 4
        assert summary.affected_assets == 2

    def test_summary_bad_range(self, depreciation_engine):
        with pytest.raises(ValidationError):
            depreciation_engine.get_depreciation_summary(date(2024, 3, 1), date(2024, 2, 1))

    def test_get_asset(self, depreciation_engine, school_bus):
        assert depreciation_engine.get_asset(str(school_bus.id)) is school_bus
        with pytest.raises(AssetNotFoundError):
            depreciation_engine.get_asset("missing")
