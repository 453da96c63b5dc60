# Entry point for the affiliate ledger API. Wires the routers,
# error handling and observability middleware together.

import os

from fastapi import APIRouter, FastAPI
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from affiliate_ledger.api.admin_affiliates import router as admin_router
from affiliate_ledger.api.affiliates import router as affiliates_router
from affiliate_ledger.api.tracking import router as tracking_router
from affiliate_ledger.core.db import Base, engine
from affiliate_ledger.core.errors import LedgerError
from affiliate_ledger.core.logging import APILoggingMiddleware
from affiliate_ledger.core.request_context import RequestContextMiddleware
import affiliate_ledger.models  # noqa: F401  registers every table on Base.metadata

API_PREFIX = "/api"

# Create tables on import for local runs; deployments use alembic.
if os.getenv("SKIP_MIGRATIONS") != "1":
    Base.metadata.create_all(bind=engine)

app = FastAPI(title="Affiliate Ledger")


@app.exception_handler(LedgerError)
def handle_ledger_error(_request, exc: LedgerError):
    response = JSONResponse(status_code=exc.status_code, content=exc.to_payload())
    response.headers["X-Error-Code"] = exc.code
    return response


app.add_middleware(APILoggingMiddleware)

api_router = APIRouter(prefix=API_PREFIX)
api_router.include_router(tracking_router)
api_router.include_router(affiliates_router)
api_router.include_router(admin_router)
app.include_router(api_router)

# Attach request context (request_id, client_ip) before logging runs.
app.add_middleware(RequestContextMiddleware)


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/ping")
def ping():
    return {"message": "pong"}
