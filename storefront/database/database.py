# storefront/database/database.py
import json
import asyncpg
import logging
from pathlib import Path
from typing import Optional
from ..config import Config

class Database:
    """Connection pool and schema migrations"""

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn or Config.DATABASE_URL
        self.pool: Optional[asyncpg.Pool] = None
        self.logger = logging.getLogger(__name__)

    async def connect(self):
        """Open the pool and apply pending migrations"""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                init=self._init_connection
            )

            await self._run_migrations()

            self.logger.info("Database connection established")
        except Exception as e:
            self.logger.error(f"Database connection failed: {e}")
            raise

    async def close(self):
        """Close the pool"""
        if self.pool:
            await self.pool.close()
            self.logger.info("Database connection closed")

    @staticmethod
    async def _init_connection(conn: asyncpg.Connection):
        # JSONB columns round-trip as Python dicts/lists
        await conn.set_type_codec(
            'jsonb',
            encoder=json.dumps,
            decoder=json.loads,
            schema='pg_catalog'
        )

    async def _run_migrations(self):
        """Apply migrations that have not been recorded yet"""
        try:
            migrations_path = Path(__file__).parent / "migrations"

            async with self.pool.acquire() as conn:
                await conn.execute("""
                    CREATE TABLE IF NOT EXISTS migrations (
                        id SERIAL PRIMARY KEY,
                        name VARCHAR(255) NOT NULL,
                        applied_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                for migration_file in sorted(migrations_path.glob("*.sql")):
                    migration_name = migration_file.name

                    is_applied = await conn.fetchval(
                        "SELECT COUNT(*) FROM migrations WHERE name = $1",
                        migration_name
                    )

                    if not is_applied:
                        async with conn.transaction():
                            with open(migration_file) as f:
                                await conn.execute(f.read())

                            await conn.execute(
                                "INSERT INTO migrations (name) VALUES ($1)",
                                migration_name
                            )

                        self.logger.info(f"Migration {migration_name} applied")

        except Exception as e:
            self.logger.error(f"Migration failed: {e}")
            raise
