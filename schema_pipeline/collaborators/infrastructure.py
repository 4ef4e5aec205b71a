"""
Shared infrastructure client.

One InfrastructureClient is created by the composition root, handed to
every live collaborator, and closed at shutdown. It owns the SQLAlchemy
engine and the HTTP client used for health probes.
"""

import asyncio
import logging
from typing import Any, Callable, Optional, Tuple, TypeVar

import httpx
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from schema_pipeline.core.exceptions import ConfigurationError
from schema_pipeline.models.config import PipelineConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InfrastructureClient:
    """Database engine and HTTP client shared by live collaborators."""
    
    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        http_timeout: float = 5.0
    ):
        if engine is None and database_url:
            engine = create_engine(database_url, pool_pre_ping=True)
        self._engine = engine
        self.http = http_client or httpx.AsyncClient(timeout=http_timeout)
        self._closed = False
    
    @classmethod
    def from_config(cls, config: PipelineConfig) -> "InfrastructureClient":
        return cls(database_url=config.database_url)
    
    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise ConfigurationError("No database_url configured")
        return self._engine
    
    @property
    def has_database(self) -> bool:
        return self._engine is not None
    
    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name
    
    async def run(self, func: Callable[..., T], *args: Any) -> T:
        """Run blocking database work in a worker thread."""
        return await asyncio.to_thread(func, *args)
    
    async def ping_database(self) -> Tuple[bool, Optional[str]]:
        """Check database reachability with ``SELECT 1``."""
        if not self.has_database:
            return False, "No database configured"
        
        def _ping():
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        
        try:
            await self.run(_ping)
            return True, None
        except SQLAlchemyError as e:
            logger.warning(f"Database ping failed: {e}")
            return False, str(e)
    
    async def probe(self, url: str) -> Tuple[bool, Optional[str]]:
        """Issue an HTTP health probe. Any status below 400 counts as healthy."""
        try:
            response = await self.http.get(url)
        except httpx.HTTPError as e:
            logger.warning(f"Health probe failed for {url}: {e}")
            return False, str(e)
        
        if response.status_code >= 400:
            return False, f"HTTP {response.status_code}"
        return True, None
    
    async def aclose(self):
        """Close the HTTP client and dispose of the engine pool."""
        if self._closed:
            return
        self._closed = True
        await self.http.aclose()
        if self._engine is not None:
            await self.run(self._engine.dispose)
    
    async def __aenter__(self) -> "InfrastructureClient":
        return self
    
    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
