import logging

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.routes import api_router
from app.core.config import get_settings
from app.core.exceptions import register_exception_handlers
from app.core.logging import setup_logging
from app.core.security import hash_password
from app.db.models import Notification, User, UserRole
from app.db.session import SessionLocal, init_db
from app.middleware.request_context import RequestContextMiddleware
from app.services.maintenance_service import run_startup_repairs
from app.socket.server import sio

settings = get_settings()
setup_logging(logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)

fastapi_app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG)
fastapi_app.include_router(api_router, prefix=settings.API_V1_PREFIX)
fastapi_app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False), name="uploads")
fastapi_app.add_middleware(RequestContextMiddleware)
fastapi_app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(fastapi_app)


def _seed_dev_data(db: Session):
    if db.query(User).count() > 0:
        return

    host = User(
        full_name="Demo Host",
        email="host@example.com",
        password_hash=hash_password("Password123!"),
        role=UserRole.host,
        department="Reception",
        contact_number="+10000000001",
    )
    visitor = User(
        full_name="Demo Visitor",
        email="visitor@example.com",
        password_hash=hash_password("Password123!"),
        role=UserRole.visitor,
        contact_number="+10000000002",
    )

    try:
        db.add_all([host, visitor])
        db.flush()
        db.add(
            Notification(
                user_id=host.id,
                kind="system",
                payload='{"message":"Welcome. Visit requests addressed to you will show up here."}',
            )
        )
        db.commit()
    except IntegrityError:
        # Another worker already inserted the seed rows.
        db.rollback()


@fastapi_app.on_event("startup")
async def on_startup():
    init_db()
    db = SessionLocal()
    try:
        run_startup_repairs(db)
        if settings.ENVIRONMENT.lower() == "development":
            _seed_dev_data(db)
    finally:
        db.close()
    logger.info("%s started environment=%s", settings.APP_NAME, settings.ENVIRONMENT)


app = socketio.ASGIApp(
    sio,
    other_asgi_app=fastapi_app,
    socketio_path=settings.SOCKET_PATH.lstrip("/"),
)
