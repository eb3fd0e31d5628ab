from sqlalchemy import (
    String, ForeignKey, Boolean, Numeric, Enum, Text, DateTime, Date, JSON, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column
from enum import Enum as PyEnum
from datetime import datetime, date
from decimal import Decimal
from swms.db import Base
from swms.models.common import IdMixin, CreatedMixin, utcnow


def _enum(cls: type[PyEnum]) -> Enum:
    # persisted as plain VARCHAR holding the enum *value* (status strings are part of the data contract)
    return Enum(cls, native_enum=False, length=30, values_callable=lambda e: [m.value for m in e])


# ── Enums ───────────────────────────────────────────────────────────────────
class MaterialCategory(PyEnum):
    SCRAP = "SCRAP"
    WASTE = "WASTE"

class WarehouseType(PyEnum):
    INDOOR = "INDOOR"
    YARD = "YARD"
    OUTDOOR = "OUTDOOR"

class VendorType(PyEnum):
    BUYER = "BUYER"
    DISPOSER = "DISPOSER"

class TxStatus(PyEnum):
    CONFIRMED = "CONFIRMED"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    SETTLED = "SETTLED"

class Stage(PyEnum):
    INBOUND = "INBOUND"
    SORT = "SORT"
    STORAGE = "STORAGE"
    OUTBOUND = "OUTBOUND"
    SETTLEMENT_CONFIRMED = "SETTLEMENT_CONFIRMED"
    SETTLEMENT_PENDING = "SETTLEMENT_PENDING"

class SettlementStatus(PyEnum):
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"

class Direction(PyEnum):
    IN = "IN"
    OUT = "OUT"

class AnomalyType(PyEnum):
    WEIGHING_DEVIATION = "WEIGHING_DEVIATION"
    NEGATIVE_INVENTORY = "NEGATIVE_INVENTORY"
    DOC_MISSING = "DOC_MISSING"

class Severity(PyEnum):
    WARN = "warn"
    CRITICAL = "critical"

class AnomalyStatus(PyEnum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


# ── Reference registry (read-only to the ledger) ────────────────────────────
class Site(Base, IdMixin, CreatedMixin):
    __tablename__ = "swms_sites"
    code: Mapped[str] = mapped_column(String(50))
    name: Mapped[str] = mapped_column(String(100))

class Warehouse(Base, IdMixin, CreatedMixin):
    __tablename__ = "swms_warehouses"
    site_id: Mapped[str] = mapped_column(String(100), index=True)
    code: Mapped[str | None] = mapped_column(String(50))
    name: Mapped[str] = mapped_column(String(100))
    type: Mapped[WarehouseType] = mapped_column(_enum(WarehouseType), default=WarehouseType.INDOOR)
    capacity: Mapped[Decimal | None] = mapped_column(Numeric(15, 2))
    unit: Mapped[str] = mapped_column(String(20), default="톤")

class MaterialType(Base, IdMixin, CreatedMixin):
    __tablename__ = "swms_material_types"
    code: Mapped[str | None] = mapped_column(String(50))
    name: Mapped[str] = mapped_column(String(100))
    category: Mapped[str | None] = mapped_column(String(50))   # SCRAP | WASTE (legacy rows: 스크랩 / 폐기물)
    unit: Mapped[str] = mapped_column(String(20), default="톤")
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(15, 2))
    is_scrap: Mapped[bool | None] = mapped_column(Boolean)

class Vendor(Base, IdMixin, CreatedMixin):
    __tablename__ = "swms_vendors"
    code: Mapped[str | None] = mapped_column(String(50))
    name: Mapped[str] = mapped_column(String(255))
    type: Mapped[VendorType | None] = mapped_column(_enum(VendorType))


# ── Flow correlation ────────────────────────────────────────────────────────
class Flow(Base, IdMixin, CreatedMixin):
    __tablename__ = "swms_flows"
    site_id: Mapped[str] = mapped_column(String(100), index=True)
    material_type_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("swms_material_types.id"))


# ── Transactions ────────────────────────────────────────────────────────────
class TransactionColumns(IdMixin, CreatedMixin):
    site_id: Mapped[str] = mapped_column(String(100), index=True)
    project_id: Mapped[str | None] = mapped_column(String(100))
    warehouse_id: Mapped[str] = mapped_column(String(36), ForeignKey("swms_warehouses.id"))
    material_type_id: Mapped[str] = mapped_column(String(36), ForeignKey("swms_material_types.id"))
    grade: Mapped[str | None] = mapped_column(String(10))
    quantity: Mapped[Decimal] = mapped_column(Numeric(15, 3))
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(15, 2))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0)
    vendor_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("swms_vendors.id"))
    flow_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("swms_flows.id"), index=True)
    status: Mapped[TxStatus] = mapped_column(_enum(TxStatus))
    idempotency_key: Mapped[str | None] = mapped_column(String(80), unique=True)
    created_by: Mapped[str | None] = mapped_column(String(50))

class InboundTransaction(Base, TransactionColumns):
    __tablename__ = "swms_inbounds"

class OutboundTransaction(Base, TransactionColumns):
    __tablename__ = "swms_outbounds"


# ── Inventory ───────────────────────────────────────────────────────────────
class InventorySnapshot(Base, IdMixin):
    __tablename__ = "swms_inventory"
    site_id: Mapped[str] = mapped_column(String(100), index=True)
    warehouse_id: Mapped[str] = mapped_column(String(36))
    material_type_id: Mapped[str] = mapped_column(String(36))
    grade: Mapped[str] = mapped_column(String(10), default="")   # "" = ungraded, keeps the key unique
    quantity: Mapped[Decimal] = mapped_column(Numeric(15, 3), default=0)
    last_updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    __table_args__ = (
        UniqueConstraint("site_id", "warehouse_id", "material_type_id", "grade", name="uq_swms_inventory_key"),
    )

class InventoryAdjustment(Base, IdMixin, CreatedMixin):
    __tablename__ = "swms_inventory_adjustments"
    site_id: Mapped[str] = mapped_column(String(100), index=True)
    warehouse_id: Mapped[str] = mapped_column(String(36))
    material_type_id: Mapped[str] = mapped_column(String(36))
    grade: Mapped[str | None] = mapped_column(String(10))
    quantity: Mapped[Decimal] = mapped_column(Numeric(15, 3))   # signed delta
    reason: Mapped[str | None] = mapped_column(Text)
    adjustment_type: Mapped[str | None] = mapped_column(String(50))
    adjustment_date: Mapped[date | None] = mapped_column(Date)
    idempotency_key: Mapped[str | None] = mapped_column(String(80), unique=True)
    created_by: Mapped[str | None] = mapped_column(String(50))


# ── Process timeline ────────────────────────────────────────────────────────
class ProcessEvent(Base, IdMixin, CreatedMixin):
    __tablename__ = "swms_process_events"
    site_id: Mapped[str] = mapped_column(String(100), index=True)
    warehouse_id: Mapped[str | None] = mapped_column(String(36))
    material_type_id: Mapped[str | None] = mapped_column(String(36))
    grade: Mapped[str | None] = mapped_column(String(10))
    flow_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("swms_flows.id"), index=True)
    from_stage: Mapped[Stage] = mapped_column(_enum(Stage))
    to_stage: Mapped[Stage] = mapped_column(_enum(Stage))
    quantity: Mapped[Decimal] = mapped_column(Numeric(15, 3), default=0)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    meta: Mapped[dict | None] = mapped_column(JSON)


# ── Settlements ─────────────────────────────────────────────────────────────
class Settlement(Base, IdMixin, CreatedMixin):
    __tablename__ = "swms_settlements"
    site_id: Mapped[str] = mapped_column(String(100), index=True)
    vendor_id: Mapped[str] = mapped_column(String(36), ForeignKey("swms_vendors.id"))
    start_date: Mapped[date | None] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)
    total_supply_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0)
    total_vat: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0)
    status: Mapped[SettlementStatus] = mapped_column(_enum(SettlementStatus), default=SettlementStatus.DRAFT)
    tax_invoice_no: Mapped[str | None] = mapped_column(String(50))

class SettlementItem(Base, IdMixin):
    __tablename__ = "swms_settlement_items"
    settlement_id: Mapped[str] = mapped_column(String(36), ForeignKey("swms_settlements.id", ondelete="CASCADE"), index=True)
    outbound_id: Mapped[str] = mapped_column(String(36), ForeignKey("swms_outbounds.id"), unique=True)

class SettlementDocument(Base, IdMixin, CreatedMixin):
    __tablename__ = "swms_settlement_documents"
    settlement_id: Mapped[str] = mapped_column(String(36), ForeignKey("swms_settlements.id", ondelete="CASCADE"), index=True)
    doc_type: Mapped[str] = mapped_column(String(50))       # TAX_INVOICE, WEIGHING_SLIP, ...
    reference: Mapped[str] = mapped_column(String(400))     # key in the external document store


# ── Weighbridge log ─────────────────────────────────────────────────────────
class Weighing(Base, IdMixin, CreatedMixin):
    __tablename__ = "swms_weighings"
    site_id: Mapped[str] = mapped_column(String(100), index=True)
    vehicle_number: Mapped[str] = mapped_column(String(50), index=True)
    material_type_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("swms_material_types.id"))
    vendor_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("swms_vendors.id"))
    direction: Mapped[Direction] = mapped_column(_enum(Direction))
    gross_weight: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=0)
    tare_weight: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=0)
    net_weight: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=0)
    weighed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# ── Generation log ──────────────────────────────────────────────────────────
class Generation(Base, IdMixin, CreatedMixin):
    # waste arising at a process; informational, no inventory effect
    __tablename__ = "swms_generations"
    site_id: Mapped[str] = mapped_column(String(100), index=True)
    project_id: Mapped[str | None] = mapped_column(String(100))
    generation_date: Mapped[date] = mapped_column(Date, index=True)
    material_type_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("swms_material_types.id"))
    process_name: Mapped[str | None] = mapped_column(String(100))
    quantity: Mapped[Decimal] = mapped_column(Numeric(15, 3), default=0)
    unit: Mapped[str] = mapped_column(String(20), default="톤")
    location: Mapped[str | None] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(50))


# ── Anomalies ───────────────────────────────────────────────────────────────
class Anomaly(Base, IdMixin):
    __tablename__ = "swms_anomalies"
    site_id: Mapped[str] = mapped_column(String(100), index=True)
    anomaly_type: Mapped[AnomalyType] = mapped_column(_enum(AnomalyType))
    severity: Mapped[Severity] = mapped_column(_enum(Severity))
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text)
    entity_type: Mapped[str | None] = mapped_column(String(30))   # WEIGHING | INVENTORY | SETTLEMENT
    entity_id: Mapped[str | None] = mapped_column(String(36))
    status: Mapped[AnomalyStatus] = mapped_column(_enum(AnomalyStatus), default=AnomalyStatus.OPEN)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
