"""FastAPI dependencies."""

from sqlalchemy.ext.asyncio import AsyncSession

from forpris.db.session import get_db
from forpris.worker.tasks import ScanRunner, scan_runner


async def get_database() -> AsyncSession:
    """Dependency for database session."""
    async for session in get_db():
        yield session
        break  # Only yield once, as FastAPI handles the session lifecycle


def get_scan_runner() -> ScanRunner:
    """Dependency for the scan runner (overridable in tests)."""
    return scan_runner
