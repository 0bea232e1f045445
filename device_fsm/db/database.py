"""
Database Connection
===================
Async connection using SQLAlchemy (PostgreSQL in production)
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from device_fsm.config import settings


# Create engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.sql_echo,
    future=True,
)

# Session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session():
    """Get a database session"""
    async with async_session_factory() as session:
        yield session


async def init_db(bind: AsyncEngine = engine):
    """Create all tables (for development only - use Alembic in production)"""
    from device_fsm.db.models import Base
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
