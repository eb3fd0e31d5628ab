"""
Dashboard read models.

Everything here is read-only and safe to call repeatedly. Aggregations that
bucket by calendar day or hour load the rows of the window and group them in
Python so the buckets follow the configured ``TZ`` on every database backend.
Empty buckets are always present with zero values.
"""

import math
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from swms.config import settings
from swms.logging_config import get_logger
from swms.models.core import (
    Anomaly, AnomalyStatus, InboundTransaction, InventorySnapshot, OutboundTransaction, Settlement,
    SettlementStatus, Severity, TxStatus,
)
from swms.services import registry, timeline
from swms.services.inventory import to_decimal
from swms.util.timeutil import as_local, day_bounds, month_bounds, today

logger = get_logger("kpi")

QUEUE_LIMIT = 50
ZONE_AGE_WINDOW_DAYS = 180

FUNNEL_STAGES = ("입고", "보관(재고)", "출고", "정산(완료)")


def clamp_int(value, lo: int, hi: int, fallback: int) -> int:
    try:
        n = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(n):
        return fallback
    return max(lo, min(hi, math.floor(n)))


def pct_change(today_value, yesterday_value) -> float | None:
    t, y = to_decimal(today_value), to_decimal(yesterday_value)
    if y == 0:
        return None
    return float((t - y) / y * Decimal("100"))


def _site(stmt, model, site_id: str | None):
    return stmt.where(model.site_id == site_id) if site_id else stmt


def _sum_qty(db: Session, model, site_id: str | None, start=None, end=None, statuses=None,
             column=None) -> Decimal:
    col = model.quantity if column is None else column
    stmt = _site(select(func.coalesce(func.sum(col), 0)), model, site_id)
    if start is not None:
        stmt = stmt.where(model.created_at >= start)
    if end is not None:
        stmt = stmt.where(model.created_at < end)
    if statuses:
        stmt = stmt.where(model.status.in_(statuses))
    return to_decimal(db.scalar(stmt))


def _window_start(day: date, period_days: int):
    return day_bounds(day - timedelta(days=period_days))[0]


# ── KPI ─────────────────────────────────────────────────────────────────────
def kpi(db: Session, site_id: str | None, day: date) -> dict:
    d0, d1 = day_bounds(day)
    y0 = day_bounds(day - timedelta(days=1))[0]
    m0, m1 = month_bounds(day)

    in_today = _sum_qty(db, InboundTransaction, site_id, d0, d1)
    out_today = _sum_qty(db, OutboundTransaction, site_id, d0, d1)
    in_yesterday = _sum_qty(db, InboundTransaction, site_id, y0, d0)
    out_yesterday = _sum_qty(db, OutboundTransaction, site_id, y0, d0)

    inv_stmt = _site(select(func.coalesce(func.sum(InventorySnapshot.quantity), 0),
                            func.count(InventorySnapshot.id).filter(InventorySnapshot.quantity > 0)),
                     InventorySnapshot, site_id)
    inv_total, inv_items = db.execute(inv_stmt).one()

    amount = OutboundTransaction.total_amount
    expected = _sum_qty(db, OutboundTransaction, site_id, m0, m1, [TxStatus.APPROVED, TxStatus.PENDING], amount)
    confirmed = _sum_qty(db, OutboundTransaction, site_id, m0, m1, [TxStatus.SETTLED], amount)

    backlog_count, backlog_amount = db.execute(
        _site(select(func.count(OutboundTransaction.id), func.coalesce(func.sum(amount), 0)),
              OutboundTransaction, site_id)
        .where(OutboundTransaction.status == TxStatus.APPROVED)
    ).one()

    since = d0 - timedelta(days=settings.ANOMALY_WINDOW_DAYS)
    open_total, open_critical = db.execute(
        _site(select(func.count(Anomaly.id), func.count(Anomaly.id).filter(Anomaly.severity == Severity.CRITICAL)),
              Anomaly, site_id)
        .where(Anomaly.status == AnomalyStatus.OPEN, Anomaly.detected_at >= since)
    ).one()

    return {
        "date": day.isoformat(),
        "siteId": site_id,
        "flow": {
            "inboundQty": float(in_today),
            "outboundQty": float(out_today),
            "inboundDeltaPct": pct_change(in_today, in_yesterday),
            "outboundDeltaPct": pct_change(out_today, out_yesterday),
        },
        "inventory": {"totalQty": float(to_decimal(inv_total)), "itemCount": int(inv_items or 0)},
        "sales": {"expected": float(expected), "confirmed": float(confirmed)},
        "settlement": {"pendingCount": int(backlog_count or 0), "pendingAmount": float(to_decimal(backlog_amount))},
        "anomalies": {"openTotal": int(open_total or 0), "openCritical": int(open_critical or 0)},
    }


# ── Charts ──────────────────────────────────────────────────────────────────
def outbound_by_hour(db: Session, site_id: str | None, day: date) -> list[dict]:
    d0, d1 = day_bounds(day)
    hours = [Decimal("0")] * 24
    stmt = _site(select(OutboundTransaction.created_at, OutboundTransaction.quantity), OutboundTransaction, site_id)
    for created_at, qty in db.execute(stmt.where(OutboundTransaction.created_at >= d0,
                                                 OutboundTransaction.created_at < d1)):
        hours[as_local(created_at).hour] += to_decimal(qty)
    return [{"hour": f"{h:02d}", "quantity": float(q)} for h, q in enumerate(hours)]


def portfolio(db: Session, site_id: str | None, period_days: int, day: date | None = None) -> list[dict]:
    day = day or today()
    materials = registry.materials_by_id(db)
    totals = {"SCRAP": Decimal("0"), "WASTE": Decimal("0")}
    stmt = _site(select(OutboundTransaction.material_type_id, func.sum(OutboundTransaction.quantity)),
                 OutboundTransaction, site_id)
    stmt = (stmt.where(OutboundTransaction.created_at >= _window_start(day, period_days))
            .group_by(OutboundTransaction.material_type_id))
    for material_id, qty in db.execute(stmt):
        kind = "SCRAP" if registry.material_is_scrap(materials.get(material_id)) else "WASTE"
        totals[kind] += to_decimal(qty)
    return [{"type": k, "quantity": float(v)} for k, v in totals.items()]


def price_margin(db: Session, site_id: str | None, period_days: int, day: date | None = None) -> list[dict]:
    """One entry per day from ``day - period_days`` through ``day``."""
    day = day or today()
    first = day - timedelta(days=period_days)
    materials = registry.materials_by_id(db)
    prices: dict[date, list[Decimal]] = {}
    margins: dict[date, list[Decimal]] = {}
    stmt = _site(select(OutboundTransaction), OutboundTransaction, site_id)
    stmt = stmt.where(OutboundTransaction.created_at >= day_bounds(first)[0],
                      OutboundTransaction.created_at < day_bounds(day)[1])
    for o in db.scalars(stmt):
        if o.unit_price is None:
            continue
        d = as_local(o.created_at).date()
        m = materials.get(o.material_type_id)
        ref = to_decimal(m.unit_price if m else None)
        prices.setdefault(d, []).append(to_decimal(o.unit_price))
        margins.setdefault(d, []).append(to_decimal(o.unit_price) - ref)

    def avg(xs):
        return float(sum(xs) / len(xs)) if xs else 0.0

    out = []
    for i in range(period_days + 1):
        d = first + timedelta(days=i)
        out.append({"date": d.isoformat(), "avgPrice": avg(prices.get(d)), "avgMargin": avg(margins.get(d))})
    return out


def flow_funnel(db: Session, site_id: str | None, period_days: int, day: date | None = None) -> list[dict]:
    day = day or today()
    since = _window_start(day, period_days)
    inbound = _sum_qty(db, InboundTransaction, site_id, since)
    inventory = to_decimal(db.scalar(_site(select(func.coalesce(func.sum(InventorySnapshot.quantity), 0)),
                                           InventorySnapshot, site_id)))
    outbound = _sum_qty(db, OutboundTransaction, site_id, since)
    settled = _sum_qty(db, OutboundTransaction, site_id, since, statuses=[TxStatus.SETTLED])
    return [{"stage": s, "quantity": float(q)} for s, q in zip(FUNNEL_STAGES, (inbound, inventory, outbound, settled))]


def sankey(db: Session, site_id: str | None, period_days: int, max_zones: int = 9,
           threshold_hours: float | None = None, mode: str = "status") -> dict:
    mode = mode if mode in timeline.SANKEY_MODES else "status"
    graph = timeline.flow_links(db, site_id, period_days, max_zones, mode)
    dwell = timeline.sort_dwell_stats(db, site_id, period_days, threshold_hours)
    return {"siteId": site_id, "periodDays": period_days, "mode": mode, "maxZones": max_zones, **graph,
            "signals": {"sortBottleneck": dwell}}


def inventory_heatmap(db: Session, site_id: str | None, limit: int) -> list[dict]:
    materials = registry.materials_by_id(db)
    cells: dict[tuple[str, str], Decimal] = {}
    stmt = _site(select(InventorySnapshot.material_type_id, InventorySnapshot.grade, InventorySnapshot.quantity),
                 InventorySnapshot, site_id)
    for material_id, grade, qty in db.execute(stmt):
        m = materials.get(material_id)
        key = (m.name if m else "Unknown", grade or "A")
        cells[key] = cells.get(key, Decimal("0")) + to_decimal(qty)
    ranked = sorted(cells.items(), key=lambda kv: (-kv[1], kv[0][0]))
    return [{"material": name, "grade": grade, "quantity": float(q)} for (name, grade), q in ranked[:limit]]


def zone_heatmap(db: Session, site_id: str | None, day: date | None = None) -> dict:
    day = day or today()
    on_hand: dict[str, Decimal] = {}
    for wid, qty in db.execute(_site(select(InventorySnapshot.warehouse_id, InventorySnapshot.quantity),
                                     InventorySnapshot, site_id)):
        on_hand[wid] = on_hand.get(wid, Decimal("0")) + to_decimal(qty)

    oldest: dict[str, date] = {}
    stmt = _site(select(InboundTransaction.warehouse_id, func.min(InboundTransaction.created_at)),
                 InboundTransaction, site_id)
    stmt = (stmt.where(InboundTransaction.created_at >= _window_start(day, ZONE_AGE_WINDOW_DAYS))
            .group_by(InboundTransaction.warehouse_id))
    for wid, first_at in db.execute(stmt):
        oldest[wid] = as_local(first_at).date()

    zones = []
    for w in registry.warehouses_for_site(db, site_id):
        qty = on_hand.get(w.id, Decimal("0"))
        cap = to_decimal(w.capacity) if w.capacity is not None else None
        zones.append({
            "warehouseId": w.id,
            "warehouseName": w.name or "Zone",
            "type": w.type.value if w.type else None,
            "unit": w.unit or "톤",
            "capacity": float(cap) if cap is not None else None,
            "quantity": float(qty),
            "fillRatePct": float(qty / cap * 100) if cap else None,
            "maxAgeDays": (day - oldest[w.id]).days if w.id in oldest else None,
        })
    return {"siteId": site_id, "zones": zones}


def aging_labels(buckets: list[int]) -> list[str]:
    labels, lo = [], 0
    for edge in buckets:
        labels.append(f"{lo}-{edge}")
        lo = edge + 1
    labels.append(f"{buckets[-1]}+" if buckets else "0+")
    return labels


def inventory_aging(db: Session, site_id: str | None, day: date | None = None,
                    buckets: list[int] | None = None) -> list[dict]:
    """Inbound quantity by age in days; every bucket is present."""
    day = day or today()
    edges = sorted(settings.AGING_BUCKETS_DAYS if buckets is None else buckets)
    labels = aging_labels(edges)
    totals = [Decimal("0")] * len(labels)
    stmt = _site(select(InboundTransaction.created_at, InboundTransaction.quantity), InboundTransaction, site_id)
    for created_at, qty in db.execute(stmt.where(InboundTransaction.created_at < day_bounds(day)[1])):
        age = (day - as_local(created_at).date()).days
        idx = next((i for i, edge in enumerate(edges) if age <= edge), len(edges))
        totals[idx] += to_decimal(qty)
    return [{"bucket": label, "quantity": float(q)} for label, q in zip(labels, totals)]


# ── Queues ──────────────────────────────────────────────────────────────────
def _tx_row(t, vendors: dict[str, str], materials: dict) -> dict:
    m = materials.get(t.material_type_id)
    return {
        "id": t.id,
        "created_at": t.created_at,
        "quantity": float(t.quantity),
        "status": t.status.value,
        "unit_price": float(t.unit_price) if t.unit_price is not None else None,
        "total_amount": float(t.total_amount or 0),
        "vendor_id": t.vendor_id,
        "vendor_name": vendors.get(t.vendor_id),
        "material_name": m.name if m else None,
    }


def work_queue(db: Session, site_id: str | None, day: date) -> dict:
    d0, d1 = day_bounds(day)
    vendors = registry.vendor_names(db)
    materials = registry.materials_by_id(db)

    def pending(model):
        stmt = _site(select(model), model, site_id).where(
            model.status == TxStatus.PENDING, model.created_at >= d0, model.created_at < d1)
        return [_tx_row(t, vendors, materials)
                for t in db.scalars(stmt.order_by(model.created_at.desc()).limit(QUEUE_LIMIT))]

    drafts = db.scalars(_site(select(Settlement), Settlement, site_id)
                        .where(Settlement.status == SettlementStatus.DRAFT)
                        .order_by(Settlement.created_at.desc()).limit(QUEUE_LIMIT))
    return {
        "date": day.isoformat(),
        "siteId": site_id,
        "outboundPlanned": pending(OutboundTransaction),
        "inspectionWaiting": pending(InboundTransaction),
        "settlementWaiting": [{
            "id": s.id,
            "start_date": s.start_date,
            "end_date": s.end_date,
            "status": s.status.value,
            "total_amount": float(s.total_amount or 0),
            "tax_invoice_no": s.tax_invoice_no,
            "vendor_id": s.vendor_id,
            "vendor_name": vendors.get(s.vendor_id),
        } for s in drafts],
    }


def risk(db: Session, site_id: str | None, period_days: int, day: date | None = None) -> dict:
    day = day or today()
    since = _window_start(day, period_days)
    total, critical, warn = db.execute(
        _site(select(func.count(Anomaly.id),
                     func.count(Anomaly.id).filter(Anomaly.severity == Severity.CRITICAL),
                     func.count(Anomaly.id).filter(Anomaly.severity == Severity.WARN)),
              Anomaly, site_id)
        .where(Anomaly.detected_at >= since)
    ).one()
    negative = db.scalar(_site(select(func.count(InventorySnapshot.id)), InventorySnapshot, site_id)
                         .where(InventorySnapshot.quantity < 0))
    return {
        "siteId": site_id,
        "periodDays": period_days,
        "anomalies": {"total": int(total or 0), "critical": int(critical or 0), "warn": int(warn or 0)},
        "negativeInventoryCount": int(negative or 0),
    }
