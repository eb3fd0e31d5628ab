from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from swms.db import get_db
from swms.deps import require_auth
from swms.services import kpi
from swms.services.kpi import clamp_int
from swms.util.timeutil import parse_day

router = APIRouter(prefix="/swms/dashboard", tags=["dashboard"])

# numeric params arrive as raw strings: out-of-range values clamp, junk falls back to the default
SiteId = Annotated[str | None, Query(alias="siteId")]
Day = Annotated[str | None, Query(alias="date")]
PeriodDays = Annotated[str | None, Query(alias="periodDays")]


def _period(value: str | None) -> int:
    return clamp_int(value, 1, 365, 30)


@router.get("/kpi")
def get_kpi(site_id: SiteId = None, day: Day = None,
            db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return kpi.kpi(db, site_id, parse_day(day))


@router.get("/charts/outbound-by-hour")
def outbound_by_hour(site_id: SiteId = None, day: Day = None,
                     db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return kpi.outbound_by_hour(db, site_id, parse_day(day))


@router.get("/charts/portfolio")
def portfolio(site_id: SiteId = None, period_days: PeriodDays = None,
              db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return kpi.portfolio(db, site_id, _period(period_days))


@router.get("/charts/price-margin")
def price_margin(site_id: SiteId = None, period_days: PeriodDays = None,
                 db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return kpi.price_margin(db, site_id, _period(period_days))


@router.get("/charts/flow")
def flow(site_id: SiteId = None, period_days: PeriodDays = None,
         db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return kpi.flow_funnel(db, site_id, _period(period_days))


@router.get("/charts/sankey")
def sankey(site_id: SiteId = None, period_days: PeriodDays = None,
           max_zones: Annotated[str | None, Query(alias="maxZones")] = None,
           threshold: Annotated[str | None, Query(alias="sortThresholdHours")] = None,
           mode: str | None = None,
           db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    threshold_hours = clamp_int(threshold, 1, 240, 0) or None
    return kpi.sankey(db, site_id, _period(period_days), clamp_int(max_zones, 1, 50, 9), threshold_hours,
                      mode or "status")


@router.get("/charts/inventory-heatmap")
def inventory_heatmap(site_id: SiteId = None, limit: str | None = None,
                      db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return kpi.inventory_heatmap(db, site_id, clamp_int(limit, 1, 200, 50))


@router.get("/charts/inventory-zone-heatmap")
def inventory_zone_heatmap(site_id: SiteId = None, db: Session = Depends(get_db),
                           sub: str = Depends(require_auth)):
    return kpi.zone_heatmap(db, site_id)


@router.get("/charts/inventory-aging")
def inventory_aging(site_id: SiteId = None, day: Day = None,
                    db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return kpi.inventory_aging(db, site_id, parse_day(day))


@router.get("/work-queue")
def work_queue(site_id: SiteId = None, day: Day = None,
               db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return kpi.work_queue(db, site_id, parse_day(day))


@router.get("/risk")
def risk(site_id: SiteId = None, period_days: PeriodDays = None,
         db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return kpi.risk(db, site_id, _period(period_days))
