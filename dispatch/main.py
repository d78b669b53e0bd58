# dispatch/main.py
from fastapi import FastAPI, Request
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse

from dispatch.api.assignments import router as assignments_router
from dispatch.api.bid_windows import router as bid_windows_router
from dispatch.api.bids import router as bids_router
from dispatch.api.cron import router as cron_router
from dispatch.api.drivers import router as drivers_router
from dispatch.api.health import router as health_router
from dispatch.api.shifts import router as shifts_router
from dispatch.core.config import settings
from dispatch.core.logging import configure_logging

configure_logging(settings.log_level)

app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    description=settings.api_description,
)

OPEN_PATHS = {"/docs", "/openapi.json", "/redoc", "/favicon.ico", "/health"}
# batch triggers authenticate with the cron secret instead of actor headers
OPEN_PREFIXES = ("/cron/",)


@app.middleware("http")
async def require_x_role(request: Request, call_next):
    path = request.url.path
    if path in OPEN_PATHS or path.startswith(OPEN_PREFIXES):
        return await call_next(request)

    x_role = request.headers.get("X-Role")
    if not x_role or not x_role.strip():
        return JSONResponse(
            status_code=401,
            content={"detail": "Missing X-Role header"},
        )

    return await call_next(request)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )

    schema.setdefault("components", {}).setdefault("securitySchemes", {})
    schemes = schema["components"]["securitySchemes"]

    schemes["XRole"] = {
        "type": "apiKey",
        "in": "header",
        "name": "X-Role",
        "description": "Actor role: driver, manager, admin.",
    }
    schemes["XOrgId"] = {
        "type": "apiKey",
        "in": "header",
        "name": "X-Org-Id",
        "description": "Organization context (UUID). Required for protected endpoints.",
    }
    schemes["XActorUserId"] = {
        "type": "apiKey",
        "in": "header",
        "name": "X-Actor-User-Id",
        "description": "Actor user id (UUID). Required for protected endpoints.",
    }
    schemes["CronBearer"] = {
        "type": "http",
        "scheme": "bearer",
        "description": "CRON_SECRET for /cron/* batch triggers.",
    }

    # all three headers are required for protected endpoints (AND)
    schema["security"] = [{"XRole": [], "XOrgId": [], "XActorUserId": []}]

    for path, ops in schema.get("paths", {}).items():
        for _method, op in ops.items():
            if not isinstance(op, dict):
                continue
            if path == "/health":
                op["security"] = []
            elif path.startswith(OPEN_PREFIXES):
                op["security"] = [{"CronBearer": []}]

    app.openapi_schema = schema
    return app.openapi_schema


app.openapi = custom_openapi

app.include_router(health_router, tags=["health"])
app.include_router(assignments_router)
app.include_router(shifts_router)
app.include_router(bids_router)
app.include_router(bid_windows_router)
app.include_router(drivers_router)
app.include_router(cron_router)
