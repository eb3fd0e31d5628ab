from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from swms.middleware import RequestIdMiddleware
from swms.db import Base, engine
from swms.config import settings
from swms.errors import LedgerError
from swms.logging_config import configure_logging, get_logger
import swms.models  # noqa: F401  registers tables for create_all()

from swms.routers import transactions, events, settlements, weighings, generations, anomalies, dashboard

logger = get_logger("api")

app = FastAPI(title="SWMS Ledger API", version="0.1.0")

@app.on_event("startup")
def init_db():
    configure_logging(settings.LOG_LEVEL)
    Base.metadata.create_all(bind=engine)
    logger.info("startup", extra={"app_env": settings.APP_ENV})

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("unhandled_error", extra={"path": request.url.path}, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": {"code": "INTERNAL_ERROR", "message": "internal error"}})


app.include_router(transactions.router)
app.include_router(events.router)
app.include_router(settlements.router)
app.include_router(weighings.router)
app.include_router(generations.router)
app.include_router(anomalies.router)
app.include_router(dashboard.router)

@app.get("/healthz")
def healthz():
    return {"ok": True}
