import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.api import auth, cart, categories, orders, products, reviews, search, users, wishlist
from storefront.api.deps import GUEST_HEADER
from storefront.db import database
from storefront.utils import config
from storefront.utils.errors import ErrorKind, InsufficientStockError, StorefrontError
from storefront.utils.logger import get_logger, route_server_logs

_logger = get_logger(__name__)

API_PREFIX = "/api"


def create_app() -> FastAPI:
    app = FastAPI(title="Storefront API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[GUEST_HEADER],
    )

    @app.middleware("http")
    async def echo_guest_session(request: Request, call_next):
        response = await call_next(request)
        guest_id = getattr(request.state, "guest_session_id", None)
        if guest_id:
            response.headers[GUEST_HEADER] = guest_id
        return response

    @app.exception_handler(StorefrontError)
    async def storefront_error_handler(request: Request, exc: StorefrontError):
        body = {"error": exc.message, "kind": exc.kind.value}
        if isinstance(exc, InsufficientStockError) and exc.available is not None:
            body["available"] = exc.available
        if exc.status_code >= 500:
            _logger.error(f"{request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "error": "Validation failed",
                "kind": ErrorKind.VALIDATION.value,
                "details": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        _logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "kind": ErrorKind.INTERNAL.value},
        )

    for module in (products, reviews, categories, search, cart, orders, auth, users, wishlist):
        app.include_router(module.router, prefix=API_PREFIX)

    @app.get(f"{API_PREFIX}/health")
    async def health():
        return {"status": "ok", "database": "ok" if await database.ping() else "unavailable"}

    return app


app = create_app()


def run():
    route_server_logs()
    _logger.info(f"Serving storefront API on {config.HOST}:{config.PORT}")
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_config=None)


if __name__ == "__main__":
    run()
