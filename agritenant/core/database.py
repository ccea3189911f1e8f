"""
Database configuration and session management

The schema is managed by Alembic migrations (see alembic/).
"""

from sqlmodel import Session, create_engine

from agritenant.core.config import get_settings

settings = get_settings()

connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    echo=False,
    future=True,
    connect_args=connect_args,
)


def get_session():
    """Dependency to get database session"""
    with Session(engine) as session:
        yield session
