"""
Module: school_ledger.models.asset
Responsibility: ORM persistence for the fixed-asset fields depreciation needs,
    and for the per-period depreciation records that make monthly runs
    idempotent.
Architecture position: Ledger > Models.  May import from db/ only.

Invariants enforced:
    - accumulated_depreciation <= purchase_price - residual_value and
      current_value == purchase_price - accumulated_depreciation (maintained
      by DepreciationEngine; ck_asset_accumulated_within_base is the
      database backstop).
    - At most one DepreciationRecord per (asset_id, period_year,
      period_month) (uq_depreciation_asset_period).  This is the idempotency
      key for monthly runs.

Failure modes:
    - IntegrityError on a second record for the same asset and period; the
      engine treats it as "already depreciated" and skips the asset.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from school_ledger.db.base import TrackedBase, UUIDString


class AssetStatus(str, Enum):
    ACTIVE = "active"
    UNDER_MAINTENANCE = "under_maintenance"
    DISPOSED = "disposed"
    INACTIVE = "inactive"
    LOST = "lost"
    DAMAGED = "damaged"


class DepreciationMethod(str, Enum):
    """Only straight-line is computed; NONE opts an asset out."""

    STRAIGHT_LINE = "straight_line"
    NONE = "none"


class AssetCategory(str, Enum):
    """Asset categories used by schools; free text is also accepted."""

    COMPUTER_EQUIPMENT = "computer_equipment"
    FURNITURE = "furniture"
    VEHICLES = "vehicles"
    BUILDINGS = "buildings"
    LAB_EQUIPMENT = "lab_equipment"
    SPORTS_EQUIPMENT = "sports_equipment"
    LIBRARY_BOOKS = "library_books"
    AUDIO_VISUAL = "audio_visual"
    KITCHEN_EQUIPMENT = "kitchen_equipment"
    OFFICE_EQUIPMENT = "office_equipment"
    OTHER = "other"


class FixedAsset(TrackedBase):
    """
    Fixed asset subset relevant to depreciation.

    Asset CRUD (locations, custodians, maintenance) lives outside the ledger;
    this row is what the depreciation run reads and updates.
    """

    __tablename__ = "fixed_assets"

    __table_args__ = (
        UniqueConstraint("code", name="uq_asset_code"),
        Index("idx_asset_status", "status"),
        Index("idx_asset_category", "category"),
        CheckConstraint(
            "accumulated_depreciation >= 0 "
            "AND accumulated_depreciation <= purchase_price - residual_value",
            name="ck_asset_accumulated_within_base",
        ),
    )

    code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    category: Mapped[str] = mapped_column(
        String(50),
        default=AssetCategory.OTHER.value,
        nullable=False,
    )

    purchase_date: Mapped[date | None] = mapped_column(
        Date,
        nullable=True,
    )

    purchase_price: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    residual_value: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    useful_life_years: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    # Annual percentage of purchase price; used when no useful life is set
    depreciation_rate: Mapped[Decimal | None] = mapped_column(
        Numeric(9, 4),
        nullable=True,
    )

    depreciation_method: Mapped[DepreciationMethod] = mapped_column(
        String(20),
        default=DepreciationMethod.STRAIGHT_LINE,
        nullable=False,
    )

    accumulated_depreciation: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    current_value: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    status: Mapped[AssetStatus] = mapped_column(
        String(20),
        default=AssetStatus.ACTIVE,
        nullable=False,
    )

    records: Mapped[list["DepreciationRecord"]] = relationship(
        back_populates="asset",
        order_by=lambda: [
            DepreciationRecord.period_year,
            DepreciationRecord.period_month,
        ],
        lazy="select",
    )

    def __repr__(self) -> str:
        return f"<FixedAsset {self.code}: {self.name}>"

    @property
    def depreciable_base(self) -> Decimal:
        return self.purchase_price - self.residual_value

    @property
    def remaining_depreciable(self) -> Decimal:
        return self.depreciable_base - self.accumulated_depreciation

    @property
    def is_fully_depreciated(self) -> bool:
        return self.remaining_depreciable <= 0


class DepreciationRecord(TrackedBase):
    """
    One asset's depreciation for one calendar month.

    opening_value/closing_value are the asset's book value before and after
    the charge.  journal_entry_id is the posted entry carrying the charge
    (shared by all assets of a category in per-category mode).
    """

    __tablename__ = "depreciation_records"

    __table_args__ = (
        UniqueConstraint(
            "asset_id", "period_year", "period_month",
            name="uq_depreciation_asset_period",
        ),
        Index("idx_depreciation_period", "period_year", "period_month"),
        CheckConstraint(
            "period_month >= 1 AND period_month <= 12",
            name="ck_depreciation_month",
        ),
    )

    asset_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fixed_assets.id"),
        nullable=False,
    )

    asset_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    period_year: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    period_month: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    opening_value: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    closing_value: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    accumulated_depreciation: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    journal_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    recorded_by: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    asset: Mapped["FixedAsset"] = relationship(
        back_populates="records",
    )

    def __repr__(self) -> str:
        return (
            f"<DepreciationRecord {self.asset_code} "
            f"{self.period_year}-{self.period_month:02d} {self.amount}>"
        )
