"""
EV Dealer Hub - API Backend
Dealer payouts, lead assignment, order fulfilment, test-ride availability.

Start with:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware
import logging

from config import CORS_ORIGINS, LOG_LEVEL, create_db
from email_service import EmailService
from services.availability import AvailabilityService
from services.errors import ServiceError
from services.event_bus import EventBus
from services.leads import LeadService
from services.notifications import NotificationService
from services.order_state_machine import OrderService
from services.payouts import PayoutService
from services.test_rides import TestRideService

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("ev_dealer_hub")

HTTP_ERROR_CODES = {
    400: "invalid_input",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}


async def create_indexes(db):
    await db.sessions.create_index("token")
    await db.users.create_index("id", unique=True)
    await db.dealers.create_index("id", unique=True)
    await db.dealers.create_index("user_id")
    await db.orders.create_index("id", unique=True)
    await db.orders.create_index([("dealer_id", 1), ("commission_paid", 1), ("created_at", 1)])
    await db.orders.create_index("payout_id")
    await db.dealer_payouts.create_index("id", unique=True)
    await db.dealer_payouts.create_index([("dealer_id", 1), ("created_at", -1)])
    await db.leads.create_index("id", unique=True)
    await db.leads.create_index([("assigned_to", 1), ("status", 1)])
    await db.notifications.create_index([("user_id", 1), ("read", 1), ("created_at", -1)])
    await db.settings.create_index("key", unique=True)
    await db.test_rides.create_index([("dealer_id", 1), ("preferred_date", 1)])
    await db.test_ride_slots.create_index([("dealer_id", 1), ("date", 1), ("time", 1)], unique=True)
    await db.event_log.create_index("created_at")


def create_app(db=None, mailer=None, events=None) -> FastAPI:
    """
    Builds the app with its services. Tests pass a mongomock database and a
    recording mailer; production uses MONGO_URL and SendGrid.
    """
    owns_db = db is None
    if owns_db:
        db = create_db()
    if mailer is None:
        mailer = EmailService()
    if events is None:
        events = EventBus()

    app = FastAPI(
        title="EV Dealer Hub",
        description="Dealer network: payouts, leads, orders, test rides",
        version="1.0.0"
    )

    notifier = NotificationService(db, mailer=mailer, events=events)
    availability = AvailabilityService(db)
    app.state.db = db
    app.state.events = events
    app.state.notifier = notifier
    app.state.availability = availability
    app.state.payouts = PayoutService(db, notifier, events, client=db.client if owns_db else None)
    app.state.orders = OrderService(db, notifier, events)
    app.state.leads = LeadService(db, notifier, events)
    app.state.test_rides = TestRideService(db, notifier, events, availability=availability)

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = []
        for err in exc.errors():
            field = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
            problems.append(f"{field}: {err.get('msg')}" if field else err.get("msg", "invalid value"))
        return JSONResponse(status_code=400, content={"error": "invalid_input", "detail": "; ".join(problems)})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        code = HTTP_ERROR_CODES.get(exc.status_code, "http_error")
        return JSONResponse(status_code=exc.status_code, content={"error": code, "detail": exc.detail},
                            headers=getattr(exc, "headers", None))

    # ==================== ROUTES ====================

    from routes import auth, payouts, orders, leads, availability as availability_routes
    from routes import notifications, dealers, events as events_routes

    app.include_router(auth.router, prefix="/api")
    app.include_router(payouts.router, prefix="/api")
    app.include_router(orders.router, prefix="/api")
    app.include_router(leads.router, prefix="/api")
    app.include_router(availability_routes.router, prefix="/api")
    app.include_router(notifications.router, prefix="/api")
    app.include_router(dealers.router, prefix="/api")
    app.include_router(events_routes.router, prefix="/api")

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/")
    async def root():
        return {"name": "EV Dealer Hub API", "version": "1.0.0", "status": "running"}

    @app.on_event("startup")
    async def startup():
        if owns_db:
            await create_indexes(db)
            logger.info("MongoDB indexes ready")
        logger.info("EV Dealer Hub API started")

    @app.on_event("shutdown")
    async def shutdown_db_client():
        if owns_db:
            db.client.close()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
