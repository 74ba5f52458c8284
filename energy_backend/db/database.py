from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from energy_backend.core.config import settings

DATABASE_URL = settings.sqlalchemy_database_uri


engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=10,
    connect_args={"timeout": settings.db_timeout},
)

async_session = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db():
    async with async_session() as session:
        yield session


# Alias used by routers for dependency injection
get_session = get_db
