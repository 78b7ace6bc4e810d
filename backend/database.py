# database.py - Async database handle shared by the whole process
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker


class Database:
    """Engine plus session factory, built once in create_app()."""

    def __init__(self, url: str, echo: bool = False):
        engine_options = {"echo": echo, "future": True, "pool_pre_ping": True}
        # SQLite (tests, local dev) does not take server pool sizing
        if not url.startswith("sqlite"):
            engine_options.update(pool_size=20, max_overflow=0, pool_recycle=3600)

        self.url = url
        self.engine = create_async_engine(url, **engine_options)
        self.session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def create_all(self):
        """Create any missing tables"""
        from models import Base

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self):
        """Close the connection pool"""
        await self.engine.dispose()


async def get_db_session(request: Request):
    """Dependency for getting database session (FastAPI Depends)"""
    db: Database = request.app.state.db
    async with db.session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
