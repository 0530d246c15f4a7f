from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from kbrag.core.config import settings

# API and worker processes each own one engine; pool sizes are per process
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,
)

# Documents are returned to callers after their session closes
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)
