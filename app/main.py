from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.artifacts import router as artifacts_router
from app.api.branches import router as branches_router
from app.api.elements import router as elements_router
from app.api.organizations import router as organizations_router
from app.api.projects import router as projects_router
from app.api.users import router as users_router
from app.api.webhooks import router as webhooks_router
from app.db import SessionLocal
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.observability import ObservabilityMiddleware
from app.services.organization import organizations
from app.services.user import users


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = SessionLocal()
    try:
        organizations.ensure_default_org(db)
        users.ensure_admin(db)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    yield


app = FastAPI(title="MBEE API", lifespan=lifespan)

configure_logging()
app.add_middleware(ObservabilityMiddleware)
register_error_handlers(app)


def _include_api_router(router, dependencies=None):
    app.include_router(router, dependencies=dependencies)
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


_include_api_router(users_router)
_include_api_router(organizations_router)
_include_api_router(projects_router)
_include_api_router(branches_router)
_include_api_router(elements_router)
_include_api_router(artifacts_router)
_include_api_router(webhooks_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
