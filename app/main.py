from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.fee_policies.router import router as fee_policies_router
from app.api.v1.fees.router import router as fees_router
from app.api.v1.suspense.router import router as suspense_router
from app.api.v1.vouchers.router import router as vouchers_router
from app.core.config import settings
from app.core.logging import setup_logging
from app.core.middleware import RequestIDMiddleware, RequestTimingMiddleware


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Added last runs first: the request id is set before timing logs it
    app.add_middleware(RequestTimingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Routers
    app.include_router(fees_router)
    app.include_router(fee_policies_router)
    app.include_router(vouchers_router)
    app.include_router(suspense_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
