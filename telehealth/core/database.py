from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator
import logging
import redis

from .config import settings

logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    # PostgreSQL connection pool settings
    return {
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_recycle": 1800,  # Recycle connections after 30 minutes
    }


engine = create_engine(settings.get_database_url, **_engine_kwargs(settings.get_database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Connects lazily on first command
redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)


# Database dependency
def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Redis dependency
def get_redis():
    """Get Redis client."""
    return redis_client


# Database initialization
def init_db():
    """Create tables and seed the administrator account if configured."""
    # Register models on Base.metadata
    from ..models import doctor, patient, user  # noqa: F401

    Base.metadata.create_all(bind=engine)

    if settings.ADMIN_EMAIL and settings.ADMIN_PASSWORD:
        db = SessionLocal()
        try:
            seed_admin(db, settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
        finally:
            db.close()


def seed_admin(db: Session, email: str, password: str):
    """Create the administrator identity unless it already exists."""
    from ..core.security import UserRole, get_password_hash
    from ..models.user import User

    existing = db.query(User).filter(User.email == email.lower()).first()
    if existing:
        return existing

    admin = User(
        email=email.lower(),
        password_hash=get_password_hash(password),
        role=UserRole.ADMIN,
        first_name="System",
        last_name="Administrator",
        is_active=True,
        is_email_verified=True,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    logger.info(f"Seeded administrator account {admin.email}")
    return admin
