# booking_engine/models/bookable_asset.py
"""
Read-only catalog of bookable assets.

Content management lives elsewhere; the engine only reads price, capacity and
confirmation policy from these rows.
"""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String, func

from ..core.ulid_helper import generate_ulid
from ..database import Base


class BookableAsset(Base):
    """
    Catalog entry for something a customer can book.

    Attributes:
        unit_price: Price per billable unit in minor currency units
        capacity_per_slot: Units available per slot; None means unlimited
        requires_partner_confirmation: Overrides the per-type confirmation
            policy when not None
    """

    __tablename__ = "bookable_assets"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    asset_type = Column(String(20), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    partner_id = Column(String(26), nullable=True, index=True)
    unit_price = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="BRL")
    capacity_per_slot = Column(Integer, nullable=True)
    requires_partner_confirmation = Column(Boolean, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint("unit_price >= 0", name="ck_bookable_assets_unit_price"),
        CheckConstraint(
            "capacity_per_slot IS NULL OR capacity_per_slot > 0",
            name="ck_bookable_assets_capacity",
        ),
    )

    def __repr__(self) -> str:
        return f"<BookableAsset {self.id} {self.asset_type} {self.name!r}>"
