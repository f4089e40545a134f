"""
Master-data governance rule service.

Features:
- Business rule storage and evaluation (conditions, actions, decision
  tables, check tables, regex patterns)
- Structured logging with correlation IDs
- Prometheus metrics
- Health checks (liveness and readiness)
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from .config import get_settings
from .logging import setup_logging, get_logger
from .api.rules_router import router as rules_router, set_metrics
from .middleware.correlation import CorrelationMiddleware
from .middleware.error_handler import ErrorHandlerMiddleware
from .middleware.metrics import MetricsMiddleware
from .middleware.validation import ValidationMiddleware
from .metrics import Metrics
from .health import HealthChecker
from .rules.persistence import rule_repository, load_seed_file

VERSION = "0.1.0"

settings = get_settings()

setup_logging(json_output=settings.LOG_JSON, service_name="mdg-rules")
logger = get_logger()

metrics = Metrics(service_name="mdg-rules", version=VERSION)
health_checker = HealthChecker(rule_repository, service_name="mdg-rules", version=VERSION)
set_metrics(metrics)


async def seed_rules(path: str) -> int:
    """Load rules from a JSON seed file, skipping IDs that already exist."""
    loaded = 0
    for rule in load_seed_file(path):
        if await rule_repository.get(rule.id):
            logger.info("seed.rule_exists", rule_id=rule.id)
            continue
        await rule_repository.save(rule)
        loaded += 1
    logger.info("seed.loaded", path=path, rules=loaded)
    return loaded


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("service_starting", version=VERSION, env=settings.ENV)
    if settings.SEED_RULES_PATH:
        await seed_rules(settings.SEED_RULES_PATH)
    metrics.set_rules_stored(await rule_repository.count())
    yield
    logger.info("service_stopping")
    metrics.app_up.labels(service="mdg-rules", version=VERSION).set(0)


app = FastAPI(
    title="MDG Business Rules",
    version=VERSION,
    description="Business rule evaluation for master-data governance",
    lifespan=lifespan,
)

# Last added runs first: correlation ID, metrics, error mapping, validation
app.add_middleware(ValidationMiddleware)
app.add_middleware(ErrorHandlerMiddleware)
app.add_middleware(MetricsMiddleware, metrics=metrics)
app.add_middleware(CorrelationMiddleware)

app.include_router(rules_router)

metrics_app = make_asgi_app(registry=metrics.registry)
app.mount("/metrics", metrics_app)


@app.get("/health")
async def health():
    """
    Liveness probe - basic health check.

    Returns 200 if service is running.
    """
    logger.debug("health_check_liveness")
    return health_checker.liveness()


@app.get("/health/ready")
async def health_ready():
    """
    Readiness probe - comprehensive health check.

    Returns:
        200: Service is ready to handle traffic
        503: Service is not ready
    """
    logger.debug("health_check_readiness")
    result = await health_checker.readiness()
    status_code = 200 if result["status"] == "ready" else 503
    return JSONResponse(content=result, status_code=status_code)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mdg_rules.main:app",
        host="0.0.0.0",
        port=settings.SERVICE_PORT,
        reload=True,
    )
