"""
Process event timeline.

Events are append-only stage transitions on the fixed pipeline

    INBOUND -> SORT -> STORAGE -> OUTBOUND -> SETTLEMENT_CONFIRMED | SETTLEMENT_PENDING

and are correlated through an explicit ``Flow`` row; dwell times are a join on
``flow_id``.
"""

import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from swms.config import settings
from swms.db import unit_of_work
from swms.errors import NotFoundError, ValidationError
from swms.logging_config import get_logger
from swms.models.common import utcnow
from swms.models.core import Flow, ProcessEvent, Stage, Warehouse
from swms.schemas.events import ProcessEventIn
from swms.services import registry
from swms.services.inventory import to_decimal
from swms.util.timeutil import as_utc

logger = get_logger("timeline")

SUCCESSORS: dict[Stage, tuple[Stage, ...]] = {
    Stage.INBOUND: (Stage.SORT,),
    Stage.SORT: (Stage.STORAGE,),
    Stage.STORAGE: (Stage.OUTBOUND,),
    Stage.OUTBOUND: (Stage.SETTLEMENT_CONFIRMED, Stage.SETTLEMENT_PENDING),
    Stage.SETTLEMENT_CONFIRMED: (),
    Stage.SETTLEMENT_PENDING: (),
}

SORT_IN = (Stage.INBOUND, Stage.SORT)
SORT_OUT = (Stage.SORT, Stage.STORAGE)

STAGE_LABELS = {
    Stage.INBOUND: "입고",
    Stage.SORT: "선별",
    Stage.OUTBOUND: "출고",
    Stage.SETTLEMENT_CONFIRMED: "정산(확정)",
    Stage.SETTLEMENT_PENDING: "정산(대기)",
}


def open_flow(db: Session, site_id: str, material_type_id: str | None = None) -> Flow:
    """Add a Flow in the caller's transaction (flushed, not committed)."""
    flow = Flow(site_id=site_id, material_type_id=material_type_id)
    db.add(flow)
    db.flush()
    return flow


def create_flow(db: Session, site_id: str, material_type_id: str | None = None) -> Flow:
    with unit_of_work(db, "flow"):
        flow = open_flow(db, site_id, material_type_id)
    logger.info("flow_opened", extra={"flow_id": flow.id, "site_id": site_id})
    return flow


def append_event(db: Session, data: ProcessEventIn) -> ProcessEvent:
    src, dst = Stage(data.from_stage), Stage(data.to_stage)
    if dst not in SUCCESSORS[src]:
        raise ValidationError("invalid stage transition", from_stage=src.value, to_stage=dst.value)
    if data.quantity < 0:
        raise ValidationError("quantity must not be negative", quantity=str(data.quantity))

    with unit_of_work(db, "process_event"):
        if data.flow_id and db.get(Flow, data.flow_id) is None:
            raise NotFoundError(Flow.__tablename__, data.flow_id)
        ev = ProcessEvent(
            site_id=data.site_id,
            warehouse_id=data.warehouse_id,
            material_type_id=data.material_type_id,
            grade=data.grade,
            flow_id=data.flow_id,
            from_stage=src,
            to_stage=dst,
            quantity=data.quantity,
            occurred_at=as_utc(data.occurred_at) if data.occurred_at else utcnow(),
            meta=data.meta,
        )
        db.add(ev)
    logger.info("process_event_appended", extra={"event_id": ev.id, "flow_id": ev.flow_id,
                                                 "from_stage": src.value, "to_stage": dst.value})
    return ev


def list_events(db: Session, flow_id: str | None = None, site_id: str | None = None) -> list[ProcessEvent]:
    stmt = select(ProcessEvent)
    if flow_id:
        stmt = stmt.where(ProcessEvent.flow_id == flow_id)
    if site_id:
        stmt = stmt.where(ProcessEvent.site_id == site_id)
    return list(db.scalars(stmt.order_by(ProcessEvent.occurred_at.asc(), ProcessEvent.id.asc())))


# ── Dwell time ──────────────────────────────────────────────────────────────
def _first_at(db: Session, flow_id: str, transition: tuple[Stage, Stage]) -> datetime | None:
    src, dst = transition
    stmt = (
        select(ProcessEvent.occurred_at)
        .where(ProcessEvent.flow_id == flow_id, ProcessEvent.from_stage == src, ProcessEvent.to_stage == dst)
        .order_by(ProcessEvent.occurred_at.asc())
        .limit(1)
    )
    at = db.scalar(stmt)
    return as_utc(at) if at is not None else None


def dwell_hours(db: Session, flow_id: str, start: tuple[Stage, Stage] = SORT_IN,
                end: tuple[Stage, Stage] = SORT_OUT) -> float | None:
    """Hours between the first ``start`` and first ``end`` transition of one flow."""
    t0 = _first_at(db, flow_id, start)
    t1 = _first_at(db, flow_id, end)
    if t0 is None or t1 is None:
        return None
    return (t1 - t0).total_seconds() / 3600.0


def percentile_disc(values: list[float], fraction: float) -> float | None:
    """Smallest value whose cumulative share reaches ``fraction``."""
    if not values:
        return None
    ordered = sorted(values)
    idx = max(math.ceil(fraction * len(ordered)) - 1, 0)
    return ordered[idx]


def _window_events(db: Session, site_id: str | None, period_days: int):
    since = datetime.now(timezone.utc) - timedelta(days=period_days)
    stmt = select(ProcessEvent).where(ProcessEvent.occurred_at >= since)
    if site_id:
        stmt = stmt.where(ProcessEvent.site_id == site_id)
    return db.scalars(stmt.order_by(ProcessEvent.occurred_at.asc(), ProcessEvent.created_at.asc()))


def sort_dwell_stats(db: Session, site_id: str | None, period_days: int,
                     threshold_hours: float | None = None) -> dict:
    threshold = settings.DWELL_ALERT_HOURS if threshold_hours is None else threshold_hours
    entered: dict[str, datetime] = {}
    left: dict[str, datetime] = {}
    for ev in _window_events(db, site_id, period_days):
        if not ev.flow_id:
            continue
        at = as_utc(ev.occurred_at)
        pair = (ev.from_stage, ev.to_stage)
        if pair == SORT_IN:
            entered[ev.flow_id] = min(at, entered.get(ev.flow_id, at))
        elif pair == SORT_OUT:
            left[ev.flow_id] = min(at, left.get(ev.flow_id, at))

    hours = []
    for flow_id, t_in in entered.items():
        t_out = left.get(flow_id)
        if t_out is not None and t_out >= t_in:
            hours.append((t_out - t_in).total_seconds() / 3600.0)

    avg = sum(hours) / len(hours) if hours else None
    stats = {
        "avgHours": avg,
        "p90Hours": percentile_disc(hours, 0.9),
        "samples": len(hours),
        "thresholdHours": threshold,
        "isBottleneck": avg is not None and avg >= threshold,
    }
    if stats["isBottleneck"]:
        logger.warning("sort_bottleneck", extra={"site_id": site_id, "avg_hours": avg, "samples": len(hours)})
    return stats


# ── Sankey ──────────────────────────────────────────────────────────────────
SANKEY_MODES = ("status", "category", "material")


def _label(stage: Stage, ev: ProcessEvent, zones: dict[str, str]) -> str:
    if stage == Stage.STORAGE:
        return f"보관:{zones.get(ev.warehouse_id) or ev.warehouse_id or 'Zone'}"
    return STAGE_LABELS[stage]


def _suffix(mode: str, ev: ProcessEvent, materials: dict) -> str:
    if mode == "status":
        return ""
    grade = ev.grade or "A"
    m = materials.get(ev.material_type_id)
    if mode == "category":
        return f"({(m.category if m else None) or '미분류'}/{grade})"
    return f"({m.name if m else 'Unknown'}/{grade})"


def flow_links(db: Session, site_id: str | None, period_days: int, max_zones: int = 9,
               mode: str = "status") -> dict:
    """Stage-to-stage quantity links over the window, shaped for a sankey chart.

    ``category`` and ``material`` modes split every node by
    ``(category/grade)`` or ``(material/grade)``; ungraded events count as A.
    """
    zones = {w.id: w.name for w in db.scalars(select(Warehouse))}
    materials = registry.materials_by_id(db) if mode != "status" else {}
    totals: dict[tuple[str, str], Decimal] = {}
    for ev in _window_events(db, site_id, period_days):
        suffix = _suffix(mode, ev, materials)
        key = (_label(ev.from_stage, ev, zones) + suffix, _label(ev.to_stage, ev, zones) + suffix)
        totals[key] = totals.get(key, Decimal("0")) + to_decimal(ev.quantity)
    totals = {k: v for k, v in totals.items() if v > 0}

    # past max_zones, the smallest storage zones fold into one node
    zone_totals: dict[str, Decimal] = {}
    for (src, dst), v in totals.items():
        for name in (src, dst):
            if name.startswith("보관:"):
                zone_totals[name] = zone_totals.get(name, Decimal("0")) + v
    ranked = sorted(zone_totals, key=lambda n: zone_totals[n], reverse=True)
    keep = set(ranked[:max_zones])

    def fold(name: str) -> str:
        if name.startswith("보관:") and name not in keep:
            return "보관:기타"
        return name

    merged: dict[tuple[str, str], Decimal] = {}
    for (src, dst), v in totals.items():
        k = (fold(src), fold(dst))
        merged[k] = merged.get(k, Decimal("0")) + v

    nodes: list[dict] = []
    index: dict[str, int] = {}

    def node(name: str) -> int:
        if name not in index:
            index[name] = len(nodes)
            nodes.append({"name": name})
        return index[name]

    links = [{"source": node(src), "target": node(dst), "value": float(v)} for (src, dst), v in merged.items()]
    return {"nodes": nodes, "links": links}
