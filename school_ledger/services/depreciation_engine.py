"""
DepreciationEngine -- monthly straight-line depreciation posting.

Responsibility:
    Computes each active asset's charge for a (year, month), posts the
    journal entry through LedgerPoster, rolls the charge into the asset's
    accumulated depreciation and current value, and records the period so
    a rerun is a no-op.

Architecture position:
    Ledger > Services.  Consumes LedgerPoster for postings and reads
    FixedAsset rows directly (the asset register itself is maintained
    elsewhere).  Math lives in school_ledger.domain.depreciation.

Invariants enforced:
    - One DepreciationRecord per (asset, year, month).  The record is
      inserted before the journal entry, inside the asset's savepoint; a
      unique-constraint violation means another run already claimed the
      period and the asset is skipped, not failed.
    - accumulated_depreciation never exceeds purchase_price - residual_value,
      and the last month of the useful life absorbs the rounding remainder.
    - current_value == purchase_price - accumulated_depreciation after
      every charge.

Failure modes:
    - Any LedgerError for one asset (missing account mapping, posting
      validation) rolls back that asset's savepoint, is collected in
      ``errors`` keyed by asset code, and the run continues.  Assets posted
      earlier in the run stay posted.
    - InvalidPeriodError for a bad (year, month) aborts the run before any
      asset is touched.
    - Database errors other than the period-claim collision propagate.
"""

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from itertools import groupby
from uuid import UUID

from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from school_ledger.config import LedgerConfig
from school_ledger.domain import depreciation as calc
from school_ledger.domain.dtos import (
    AnnualDepreciationLine,
    AnnualDepreciationReport,
    DepreciationError,
    DepreciationRunResult,
    DepreciationSummary,
    LineSpec,
)
from school_ledger.domain.money import ZERO, round_money
from school_ledger.exceptions import (
    AssetNotFoundError,
    LedgerError,
    ValidationError,
)
from school_ledger.logging_config import LogContext, get_logger
from school_ledger.models.asset import (
    AssetStatus,
    DepreciationMethod,
    DepreciationRecord,
    FixedAsset,
)
from school_ledger.models.journal import JournalEntry, ReferenceType
from school_ledger.services.base import BaseService
from school_ledger.services.ledger_poster import LedgerPoster

logger = get_logger("services.depreciation")


class _PeriodAlreadyClaimed(Exception):
    """Internal signal: the (asset, period) record already exists."""


class DepreciationEngine(BaseService[DepreciationRecord]):
    """
    Batch depreciation service.

    Contract:
        Accepts a caller-owned Session; flushes, never commits.  Each asset
        (or each category, in per_category mode) is processed inside its
        own savepoint so one failure cannot undo its siblings.

    Non-goals:
        - Declining-balance and other methods.  Assets whose method is
          ``none`` are ignored.
    """

    def __init__(
        self,
        session: Session,
        poster: LedgerPoster,
        config: LedgerConfig | None = None,
    ):
        super().__init__(session)
        self._poster = poster
        self._config = config or LedgerConfig()

    # =========================================================================
    # Asset access
    # =========================================================================

    def get_asset(self, asset_id: UUID | str) -> FixedAsset:
        """
        Raises:
            AssetNotFoundError: If no asset has this id.
        """
        asset_uuid = asset_id
        if not isinstance(asset_id, UUID):
            try:
                asset_uuid = UUID(str(asset_id))
            except ValueError as exc:
                raise AssetNotFoundError(str(asset_id)) from exc
        asset = self.session.get(FixedAsset, asset_uuid)
        if asset is None:
            raise AssetNotFoundError(str(asset_id))
        return asset

    def depreciable_assets(self) -> list[FixedAsset]:
        """Active straight-line assets with a useful life or an annual rate."""
        stmt = (
            select(FixedAsset)
            .where(
                FixedAsset.status == AssetStatus.ACTIVE.value,
                FixedAsset.depreciation_method == DepreciationMethod.STRAIGHT_LINE.value,
                or_(
                    FixedAsset.useful_life_years > 0,
                    FixedAsset.depreciation_rate > 0,
                ),
            )
            .order_by(FixedAsset.category, FixedAsset.code)
        )
        return list(self.session.execute(stmt).scalars())

    def _record_for(self, asset_id: UUID, year: int, month: int) -> DepreciationRecord | None:
        return self.session.execute(
            select(DepreciationRecord).where(
                DepreciationRecord.asset_id == asset_id,
                DepreciationRecord.period_year == year,
                DepreciationRecord.period_month == month,
            )
        ).scalar_one_or_none()

    def _periods_recorded(self, asset_id: UUID) -> int:
        return self.session.execute(
            select(func.count(DepreciationRecord.id)).where(
                DepreciationRecord.asset_id == asset_id
            )
        ).scalar_one()

    # =========================================================================
    # Calculation
    # =========================================================================

    def calculate_monthly_depreciation(self, asset: FixedAsset) -> Decimal:
        """
        Nominal straight-line charge for one month.

        Uses (price - residual) / useful life / 12; an asset without a
        useful life falls back to its annual depreciation_rate percentage.
        Zero for assets whose method is ``none``.
        """
        if asset.depreciation_method != DepreciationMethod.STRAIGHT_LINE:
            return ZERO
        return calc.monthly_depreciation(
            asset.purchase_price,
            asset.residual_value,
            asset.useful_life_years,
            asset.depreciation_rate,
        )

    def _next_charge(self, asset: FixedAsset) -> Decimal:
        if asset.purchase_price < 0 or asset.residual_value < 0:
            raise ValidationError(f"Asset {asset.code}: negative purchase price or residual value")
        if asset.residual_value > asset.purchase_price:
            raise ValidationError(f"Asset {asset.code}: residual value exceeds purchase price")
        return calc.period_charge(
            purchase_price=asset.purchase_price,
            residual_value=asset.residual_value,
            accumulated_depreciation=asset.accumulated_depreciation,
            monthly_amount=self.calculate_monthly_depreciation(asset),
            periods_elapsed=self._periods_recorded(asset.id),
            useful_life_years=asset.useful_life_years,
        )

    def calculate_annual_depreciation(self, year: int) -> AnnualDepreciationReport:
        """Projected depreciation for every depreciable asset over ``year``."""
        calc.validate_period(year, 1)
        lines = []
        for asset in sorted(self.depreciable_assets(), key=lambda a: a.code):
            monthly = self.calculate_monthly_depreciation(asset)
            annual = calc.annual_projection(
                purchase_price=asset.purchase_price,
                residual_value=asset.residual_value,
                accumulated_depreciation=asset.accumulated_depreciation,
                monthly_amount=monthly,
            )
            lines.append(
                AnnualDepreciationLine(
                    asset_id=asset.id,
                    asset_code=asset.code,
                    asset_name=asset.name,
                    monthly_depreciation=monthly,
                    annual_depreciation=annual,
                )
            )
        return AnnualDepreciationReport(
            year=year,
            assets=tuple(lines),
            total_annual_depreciation=round_money(
                sum((line.annual_depreciation for line in lines), ZERO)
            ),
        )

    def get_depreciation_summary(self, start: date, end: date) -> DepreciationSummary:
        """Totals of recorded depreciation for the months from ``start`` to ``end``."""
        if end < start:
            raise ValidationError(f"Summary range ends ({end}) before it starts ({start})")
        period_index = DepreciationRecord.period_year * 100 + DepreciationRecord.period_month
        row = self.session.execute(
            select(
                func.coalesce(func.sum(DepreciationRecord.amount), 0),
                func.count(DepreciationRecord.id),
                func.count(func.distinct(DepreciationRecord.asset_id)),
            ).where(
                and_(
                    period_index >= start.year * 100 + start.month,
                    period_index <= end.year * 100 + end.month,
                )
            )
        ).one()
        return DepreciationSummary(
            start=start,
            end=end,
            total_depreciation=round_money(Decimal(str(row[0]))),
            entries_count=row[1],
            affected_assets=row[2],
        )

    # =========================================================================
    # Posting
    # =========================================================================

    def _claim_period(
        self,
        asset: FixedAsset,
        year: int,
        month: int,
        amount: Decimal,
        user_id: str,
    ) -> DepreciationRecord:
        """Insert the (asset, period) record; collisions mean already claimed."""
        accumulated = asset.accumulated_depreciation + amount
        record = DepreciationRecord(
            asset_id=asset.id,
            asset_code=asset.code,
            period_year=year,
            period_month=month,
            amount=amount,
            opening_value=calc.book_value(asset.purchase_price, asset.accumulated_depreciation),
            closing_value=calc.book_value(asset.purchase_price, accumulated),
            accumulated_depreciation=round_money(accumulated),
            recorded_by=user_id,
            created_by=user_id,
        )
        claim = self.session.begin_nested()
        try:
            self.session.add(record)
            self.session.flush()
            claim.commit()
        except IntegrityError as exc:
            claim.rollback()
            raise _PeriodAlreadyClaimed() from exc
        return record

    def _apply_charge(self, asset: FixedAsset, amount: Decimal, user_id: str) -> None:
        asset.accumulated_depreciation = round_money(asset.accumulated_depreciation + amount)
        asset.current_value = calc.book_value(asset.purchase_price, asset.accumulated_depreciation)
        asset.updated_by = user_id

    def _lines(self, category: str | None, amount: Decimal, memo: str) -> list[LineSpec]:
        accounts = self._config.accounts_for_category(category)
        return [
            LineSpec.debit_line(accounts.expense_account, amount, memo),
            LineSpec.credit_line(accounts.accumulated_account, amount, memo),
        ]

    def _skip(self, result: DepreciationRunResult, asset: FixedAsset, reason: str) -> None:
        result.assets_skipped += 1
        logger.info(
            "depreciation_asset_skipped",
            extra={"asset_id": str(asset.id), "asset_code": asset.code, "reason": reason},
        )

    def _fail(self, result: DepreciationRunResult, asset: FixedAsset, exc: LedgerError) -> None:
        result.errors.append(
            DepreciationError(asset_code=asset.code, error=str(exc), error_code=exc.code)
        )
        logger.warning(
            "depreciation_asset_failed",
            extra={"asset_id": str(asset.id), "asset_code": asset.code, "error": str(exc)},
            exc_info=exc,
        )

    def _prepare(
        self,
        result: DepreciationRunResult,
        asset: FixedAsset,
        year: int,
        month: int,
    ) -> Decimal | None:
        """The charge to post, or None when the asset is skipped or failed."""
        if self._record_for(asset.id, year, month) is not None:
            self._skip(result, asset, "already_recorded")
            return None
        try:
            amount = self._next_charge(asset)
        except LedgerError as exc:
            self._fail(result, asset, exc)
            return None
        if amount <= 0:
            self._skip(result, asset, "fully_depreciated")
            return None
        return amount

    def _post_asset(
        self,
        result: DepreciationRunResult,
        asset: FixedAsset,
        year: int,
        month: int,
        user_id: str,
    ) -> None:
        amount = self._prepare(result, asset, year, month)
        if amount is None:
            return

        period = calc.period_key(year, month)
        savepoint = self.session.begin_nested()
        try:
            record = self._claim_period(asset, year, month, amount, user_id)
            entry = self._poster.create_and_post(
                calc.period_start(year, month),
                f"Monthly depreciation - {asset.name} ({asset.code}) {period}",
                self._lines(asset.category, amount, f"Depreciation {asset.code} {period}"),
                posted_by=user_id,
                reference_type=ReferenceType.DEPRECIATION,
                reference_id=str(asset.id),
                reference=f"DEP-{period}-{asset.code}",
            )
            self._apply_charge(asset, amount, user_id)
            record.journal_entry_id = entry.id
            self.session.flush()
            savepoint.commit()
        except _PeriodAlreadyClaimed:
            savepoint.rollback()
            self._skip(result, asset, "already_recorded")
            return
        except LedgerError as exc:
            savepoint.rollback()
            self._fail(result, asset, exc)
            return

        result.total_depreciation += amount
        result.assets_processed += 1
        result.entries_created += 1
        result.journal_entry_ids.append(entry.id)
        logger.info(
            "depreciation_asset_posted",
            extra={
                "asset_id": str(asset.id),
                "asset_code": asset.code,
                "amount": amount,
                "accumulated_depreciation": asset.accumulated_depreciation,
                "current_value": asset.current_value,
                "journal_entry_id": str(entry.id),
            },
        )

    def _category_reference(self, period: str, category: str) -> str:
        """
        ``DEP-<period>-CAT-<category>``, suffixed ``-2``, ``-3``, ... when a
        later run for the same period posts assets added since the first.
        """
        base = f"DEP-{period}-CAT-{category}"
        reference, n = base, 1
        while self.session.execute(
            select(exists().where(JournalEntry.reference == reference))
        ).scalar():
            n += 1
            reference = f"{base}-{n}"
        return reference

    def _post_category(
        self,
        result: DepreciationRunResult,
        category: str,
        assets: Iterable[FixedAsset],
        year: int,
        month: int,
        user_id: str,
    ) -> None:
        charges = []
        for asset in assets:
            amount = self._prepare(result, asset, year, month)
            if amount is not None:
                charges.append((asset, amount))
        if not charges:
            return

        period = calc.period_key(year, month)
        claimed: list[tuple[FixedAsset, Decimal, DepreciationRecord]] = []
        savepoint = self.session.begin_nested()
        try:
            for asset, amount in charges:
                try:
                    record = self._claim_period(asset, year, month, amount, user_id)
                except _PeriodAlreadyClaimed:
                    self._skip(result, asset, "already_recorded")
                    continue
                claimed.append((asset, amount, record))

            if not claimed:
                savepoint.commit()
                return

            total = sum((amount for _, amount, _ in claimed), ZERO)
            entry = self._poster.create_and_post(
                calc.period_start(year, month),
                f"Monthly depreciation - {category} {period} ({len(claimed)} assets)",
                self._lines(category, total, f"Depreciation {category} {period}"),
                posted_by=user_id,
                reference_type=ReferenceType.DEPRECIATION,
                reference_id=category,
                reference=self._category_reference(period, category),
            )
            for asset, amount, record in claimed:
                self._apply_charge(asset, amount, user_id)
                record.journal_entry_id = entry.id
            self.session.flush()
            savepoint.commit()
        except LedgerError as exc:
            savepoint.rollback()
            for asset, _, _ in claimed:
                self._fail(result, asset, exc)
            return

        result.total_depreciation += total
        result.assets_processed += len(claimed)
        result.entries_created += 1
        result.journal_entry_ids.append(entry.id)

    def post_monthly_depreciation(
        self,
        year: int,
        month: int,
        user_id: str = "system",
    ) -> DepreciationRunResult:
        """
        Post one month of depreciation for every depreciable asset.

        Safe to call repeatedly for the same period: assets that already
        have a record for (year, month) are skipped.

        Args:
            year: Calendar year of the period.
            month: 1-12.
            user_id: Caller-provided user id recorded as poster/recorder.

        Returns:
            DepreciationRunResult with totals, counts and per-asset errors.

        Raises:
            InvalidPeriodError: If (year, month) is not a valid period.
        """
        calc.validate_period(year, month)
        result = DepreciationRunResult(year=year, month=month)
        mode = self._config.depreciation_posting_mode
        batch_id = f"DEP-{calc.period_key(year, month)}"

        with LogContext.bind(batch_id=batch_id, actor_id=user_id):
            assets = self.depreciable_assets()
            logger.info(
                "depreciation_run_started",
                extra={"year": year, "month": month, "asset_count": len(assets), "mode": mode},
            )

            if mode == "per_category":
                for category, group in groupby(assets, key=lambda a: a.category):
                    self._post_category(result, category, list(group), year, month, user_id)
            else:
                for asset in assets:
                    with LogContext.bind(asset_id=str(asset.id)):
                        self._post_asset(result, asset, year, month, user_id)

            result.total_depreciation = round_money(result.total_depreciation)
            logger.info(
                "depreciation_run_completed",
                extra={
                    "total_depreciation": result.total_depreciation,
                    "assets_processed": result.assets_processed,
                    "entries_created": result.entries_created,
                    "assets_skipped": result.assets_skipped,
                    "error_count": len(result.errors),
                },
            )
        return result
