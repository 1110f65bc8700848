"""
Database schema initialization and migration management.

Handles creation of tables, indexes, triggers, and schema version tracking.
Timestamps are REAL unix seconds; list-valued columns hold JSON arrays.
"""

import aiosqlite

from timecord.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 1


class SchemaManager:
    """Creates the lifecycle tables, indexes and triggers.

    Every statement is idempotent (``IF NOT EXISTS``), so running it on each
    startup is safe.
    """

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        """
        Create or update all database tables, indexes, and triggers.

        Args:
            db: Open database connection
        """
        await SchemaManager._create_tables(db)
        await SchemaManager._create_indexes(db)
        await SchemaManager._create_triggers(db)
        await SchemaManager._update_schema_version(db)
        await db.commit()
        logger.info("[SCHEMA] Database schema initialized")

    @staticmethod
    async def _create_tables(db: aiosqlite.Connection) -> None:
        """Create all required database tables."""
        await db.execute("""
            CREATE TABLE IF NOT EXISTS guild_settings (
                guild_id INTEGER PRIMARY KEY,
                quarantine_role_id INTEGER,
                log_channel_id INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS quarantine_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                guild_id INTEGER NOT NULL,
                target_id INTEGER NOT NULL,
                moderator_id INTEGER NOT NULL,
                reason TEXT NOT NULL DEFAULT '',
                previous_roles TEXT NOT NULL DEFAULT '[]',
                active INTEGER NOT NULL DEFAULT 1,
                deadline REAL,
                channel_id INTEGER,
                message_id INTEGER,
                ended_by INTEGER,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS polls (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                guild_id INTEGER NOT NULL,
                channel_id INTEGER NOT NULL,
                message_id INTEGER,
                creator_id INTEGER NOT NULL,
                question TEXT NOT NULL,
                allow_multiple INTEGER NOT NULL DEFAULT 0,
                anonymous INTEGER NOT NULL DEFAULT 0,
                active INTEGER NOT NULL DEFAULT 1,
                deadline REAL,
                ended_by INTEGER,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS poll_options (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                poll_id INTEGER NOT NULL,
                text TEXT NOT NULL,
                emoji TEXT NOT NULL,
                order_index INTEGER NOT NULL,
                FOREIGN KEY (poll_id) REFERENCES polls(id) ON DELETE CASCADE
            )
        """)

        # slot = 0 for single-choice polls, slot = option_id for multi-choice,
        # so one constraint covers both uniqueness rules.
        await db.execute("""
            CREATE TABLE IF NOT EXISTS poll_votes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                poll_id INTEGER NOT NULL,
                option_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                slot INTEGER NOT NULL,
                created_at REAL NOT NULL,
                UNIQUE (poll_id, user_id, slot),
                FOREIGN KEY (poll_id) REFERENCES polls(id) ON DELETE CASCADE,
                FOREIGN KEY (option_id) REFERENCES poll_options(id) ON DELETE CASCADE
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS giveaways (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                guild_id INTEGER NOT NULL,
                channel_id INTEGER NOT NULL,
                message_id INTEGER,
                host_id INTEGER NOT NULL,
                prize TEXT NOT NULL,
                description TEXT,
                winners_requested INTEGER NOT NULL DEFAULT 1 CHECK (winners_requested >= 1),
                required_role_id INTEGER,
                required_level INTEGER,
                winner_user_ids TEXT NOT NULL DEFAULT '[]',
                active INTEGER NOT NULL DEFAULT 1,
                deadline REAL,
                ended_by INTEGER,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS giveaway_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                giveaway_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                created_at REAL NOT NULL,
                UNIQUE (giveaway_id, user_id),
                FOREIGN KEY (giveaway_id) REFERENCES giveaways(id) ON DELETE CASCADE
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                guild_id INTEGER NOT NULL,
                action TEXT NOT NULL,
                kind TEXT NOT NULL,
                entity_id INTEGER NOT NULL,
                actor_id INTEGER,
                target_id INTEGER,
                details TEXT NOT NULL DEFAULT '{}',
                created_at REAL NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS member_levels (
                guild_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                level INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (guild_id, user_id)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    @staticmethod
    async def _create_indexes(db: aiosqlite.Connection) -> None:
        """Create indexes for the recovery, sweep and retention queries."""
        for table in ("quarantine_entries", "polls", "giveaways"):
            await db.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{table}_active_deadline ON {table}(active, deadline)"
            )
            await db.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{table}_guild_active ON {table}(guild_id, active)"
            )

        # One active quarantine per member
        await db.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_quarantine_one_active
            ON quarantine_entries(guild_id, target_id) WHERE active = 1
        """)

        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_poll_options_poll ON poll_options(poll_id, order_index)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_poll_votes_poll_option ON poll_votes(poll_id, option_id)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_log_entity ON audit_log(kind, entity_id)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_log_guild_time ON audit_log(guild_id, created_at)"
        )

    @staticmethod
    async def _create_triggers(db: aiosqlite.Connection) -> None:
        """Create triggers for automatic timestamp updates."""
        await db.execute("""
            CREATE TRIGGER IF NOT EXISTS update_guild_settings_timestamp
            AFTER UPDATE ON guild_settings
            BEGIN
                UPDATE guild_settings SET updated_at = CURRENT_TIMESTAMP
                WHERE guild_id = NEW.guild_id;
            END
        """)

    @staticmethod
    async def _update_schema_version(db: aiosqlite.Connection) -> None:
        """Record the current schema version."""
        await db.execute(
            "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
