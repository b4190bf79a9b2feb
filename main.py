from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging

import config
import routes
from database import close_db, create_engine_for, create_session_maker, init_db
from errors import (
    ConflictError,
    ExternalServiceError,
    InvariantViolation,
    NotFoundError,
    PermissionDeniedError,
    RentalError,
    ValidationError,
)
from paypal_client import PayPalClient

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format=config.LOG_FORMAT,
    datefmt=config.LOG_DATE_FORMAT,
)
logger = logging.getLogger(__name__)

# Most specific class first; lookup walks the exception's MRO
ERROR_STATUS_CODES: dict[type, int] = {
    NotFoundError: 404,
    ValidationError: 400,
    ConflictError: 409,
    PermissionDeniedError: 403,
    ExternalServiceError: 502,
    InvariantViolation: 500,
}


def status_code_for(exc: RentalError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


async def rental_error_handler(request: Request, exc: RentalError) -> JSONResponse:
    """Map RentalError subclasses to appropriate HTTP responses."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")
    content = {"success": False, "detail": str(exc), "error_type": type(exc).__name__}
    order_id = getattr(exc, "order_id", None)
    if order_id is not None:
        content["order_id"] = order_id
    return JSONResponse(status_code=status_code, content=content)


def create_app(database_url: str = config.DATABASE_URL, payment_gateway: Optional[PayPalClient] = None) -> FastAPI:
    """
    Build the API.

    The lifespan owns the engine, the session maker and the payment gateway
    and keeps them on ``app.state``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = create_engine_for(database_url)
        await init_db(engine)
        app.state.engine = engine
        app.state.session_maker = create_session_maker(engine)
        app.state.payment_gateway = payment_gateway or PayPalClient()
        if app.state.payment_gateway.is_mock:
            logger.warning("⚠️  PayPal credentials not configured - payment gateway running in mock mode")
        logger.info("✅ Vehicle rental order API started")
        try:
            yield
        finally:
            await close_db(engine)

    app = FastAPI(
        title="Vehicle Rental Order API",
        description="Orders, reservations, payments and treasury for vehicle rentals",
        lifespan=lifespan,
    )
    app.add_exception_handler(RentalError, rental_error_handler)

    app.add_api_route("/", root, methods=["GET"])
    app.add_api_route("/api/health", routes.health_route, methods=["GET"])

    # Static paths are registered before the /{order_id} ones
    app.add_api_route("/api/customer/orders", routes.create_order_route, methods=["POST"], status_code=201)
    app.add_api_route("/api/customer/orders", routes.list_customer_orders_route, methods=["GET"])
    app.add_api_route("/api/customer/orders/city-fees", routes.city_fees_route, methods=["GET"])
    app.add_api_route(
        "/api/customer/orders/reserved-dates/{sub_category_id}", routes.reserved_dates_route, methods=["GET"]
    )
    app.add_api_route("/api/customer/orders/{order_id}", routes.get_order_route, methods=["GET"])
    app.add_api_route("/api/customer/orders/{order_id}/cancel", routes.cancel_order_route, methods=["POST"])
    app.add_api_route(
        "/api/customer/orders/{order_id}/paypal/complete", routes.complete_paypal_payment_route, methods=["POST"]
    )

    app.add_api_route("/api/admin/orders", routes.list_orders_route, methods=["GET"])
    app.add_api_route("/api/admin/orders/treasury", routes.treasury_route, methods=["GET"])
    app.add_api_route("/api/admin/orders/{order_id}", routes.admin_get_order_route, methods=["GET"])
    app.add_api_route("/api/admin/orders/{order_id}/confirm", routes.confirm_order_route, methods=["POST"])
    app.add_api_route("/api/admin/orders/{order_id}/state", routes.update_order_state_route, methods=["PUT"])
    app.add_api_route("/api/admin/orders/{order_id}/cancel", routes.admin_cancel_order_route, methods=["POST"])
    app.add_api_route("/api/admin/orders/{order_id}/refund", routes.process_refund_route, methods=["POST"])
    app.add_api_route(
        "/api/admin/orders/{order_id}/payment-state", routes.update_payment_state_route, methods=["PUT"]
    )
    return app


async def root():
    return {"message": "Vehicle Rental Order API"}


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
