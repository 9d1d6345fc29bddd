from fastapi import APIRouter, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from sqlmodel import literal, select

from orderflow.api.routes import coupons, orders, payments, tracking
from orderflow.core.logging import get_logger
from orderflow.deps import RedisDep, SessionDep
from orderflow.errors import OrderflowError

logger = get_logger(__name__)

api_router = APIRouter()

api_router.include_router(orders.router)
api_router.include_router(payments.router)
api_router.include_router(coupons.router)
api_router.include_router(tracking.router)


@api_router.get("/health/live")
async def liveness():
    return {"status": "alive"}


@api_router.get("/health/ready")
async def readiness(response: Response, session: SessionDep, redis: RedisDep):
    health_status = {"status": "ready", "checks": {}}
    all_healthy = True

    try:
        session.exec(select(literal(1)))
        health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["checks"]["database"] = f"error: {str(e)}"
        all_healthy = False

    if await redis.ping():
        health_status["checks"]["redis"] = "connected"
    else:
        health_status["checks"]["redis"] = "disconnected"
        all_healthy = False

    if not all_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        health_status["status"] = "not ready"

    return health_status


async def orderflow_error_handler(request: Request, exc: OrderflowError) -> JSONResponse:
    level = "error" if exc.status_code >= 500 else "info"
    getattr(logger, level)(
        "request_rejected",
        error_type=type(exc).__name__,
        error_message=exc.message,
        **{"http.response.status_code": exc.status_code},
        **{"url.path": request.url.path},
    )
    content: dict = {"detail": exc.message}
    if exc.details:
        content["errors"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OrderflowError, orderflow_error_handler)  # type: ignore[arg-type]
