from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fastidp.core.settings import S
from fastidp.errors import FastIdpError
from fastidp.metrics import METRICS_ENABLED, metrics_endpoint, metrics_middleware, set_app_info
from fastidp.routers.applications import router as applications_router
from fastidp.routers.coupons import router as coupons_router
from fastidp.routers.payments import router as payments_router
from fastidp.routers.shipping import router as shipping_router

logger = logging.getLogger(__name__)


async def fastidp_error_handler(request: Request, exc: FastIdpError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    else:
        logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    logging.basicConfig(
        level=S.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(title="Fast IDP API", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in S.cors_allow_origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Stripe-Signature"],
    )
    if METRICS_ENABLED:
        app.middleware("http")(metrics_middleware)
        set_app_info(app.title, app.version)
        app.get("/metrics")(metrics_endpoint)

    app.add_exception_handler(FastIdpError, fastidp_error_handler)

    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    app.include_router(applications_router)
    app.include_router(payments_router)
    app.include_router(coupons_router)
    app.include_router(shipping_router)

    if S.enable_test_endpoints:
        from fastidp.routers.testing import router as testing_router

        logger.warning("test endpoints enabled; payment status can be set without payment")
        app.include_router(testing_router)

    return app


app = create_app()
