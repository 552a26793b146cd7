"""SQLite schema definitions for the donor data store.

Database: data/donor_metrics.db (WAL mode)
Tables: organizations, transactions, spend_records, campaigns, creatives,
attribution_mappings

Money columns are stored as decimal text so sums stay exact.
"""
import logging
import sqlite3
from pathlib import Path


logger = logging.getLogger(__name__)


SCHEMA_VERSION = 1


# Deterministic mappings are only ever replaced by another deterministic one.
UPSERT_MAPPING_SQL = """
    INSERT INTO attribution_mappings (
        organization_id, refcode, campaign_id, creative_id, platform,
        match_type, confidence, attribution_type, destination_url,
        match_reason, attributed_revenue, attributed_transactions,
        is_auto_matched
    )
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(organization_id, refcode)
    DO UPDATE SET
        campaign_id=excluded.campaign_id,
        creative_id=excluded.creative_id,
        platform=excluded.platform,
        match_type=excluded.match_type,
        confidence=excluded.confidence,
        attribution_type=excluded.attribution_type,
        destination_url=excluded.destination_url,
        match_reason=excluded.match_reason,
        attributed_revenue=excluded.attributed_revenue,
        attributed_transactions=excluded.attributed_transactions,
        is_auto_matched=excluded.is_auto_matched,
        updated_at=CURRENT_TIMESTAMP
    WHERE attribution_mappings.match_type != 'url_exact'
        OR excluded.match_type = 'url_exact'
"""


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Open a WAL connection returning sqlite3.Row rows."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_database(db_path: str | Path) -> None:
    """Initialize donor database with schema.

    Creates tables if they don't exist.
    Enables WAL mode for concurrent reads.

    Args:
        db_path: Path to SQLite database file
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)

    try:
        conn.execute("PRAGMA journal_mode=WAL")

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        current_version = cursor.fetchone()[0] or 0

        if current_version < SCHEMA_VERSION:
            _apply_schema(conn)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info("Database schema initialized (version %s)", SCHEMA_VERSION)
        else:
            logger.debug("Database schema up to date (version %s)", current_version)

    finally:
        conn.close()


def _apply_schema(conn: sqlite3.Connection) -> None:
    """Apply database schema.

    Args:
        conn: SQLite connection (in transaction)
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS organizations (
            organization_id TEXT PRIMARY KEY,
            name TEXT,
            timezone TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS transactions (
            id TEXT PRIMARY KEY,
            organization_id TEXT,
            type TEXT NOT NULL,
            amount TEXT NOT NULL,
            fee TEXT NOT NULL DEFAULT '0',
            net_amount TEXT,
            occurred_at TEXT,
            donor_id TEXT,
            refcode TEXT,
            source_campaign TEXT,
            is_recurring INTEGER NOT NULL DEFAULT 0,
            recurring_upsell_shown INTEGER NOT NULL DEFAULT 0,
            recurring_upsell_succeeded INTEGER NOT NULL DEFAULT 0,
            campaign_id TEXT,
            creative_id TEXT
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_transactions_org
        ON transactions(organization_id, occurred_at)
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_transactions_refcode
        ON transactions(organization_id, refcode)
        WHERE refcode IS NOT NULL
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS spend_records (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            organization_id TEXT,
            platform TEXT NOT NULL,
            campaign_id TEXT,
            creative_id TEXT,
            date TEXT NOT NULL,
            spend TEXT NOT NULL DEFAULT '0',
            conversions INTEGER NOT NULL DEFAULT 0,
            impressions INTEGER NOT NULL DEFAULT 0,
            clicks INTEGER NOT NULL DEFAULT 0,
            messages_sent INTEGER NOT NULL DEFAULT 0
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_spend_org_date
        ON spend_records(organization_id, date)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS campaigns (
            campaign_id TEXT PRIMARY KEY,
            organization_id TEXT,
            campaign_name TEXT NOT NULL DEFAULT '',
            platform TEXT NOT NULL DEFAULT 'meta'
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS creatives (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            creative_id TEXT,
            campaign_id TEXT NOT NULL,
            campaign_name TEXT NOT NULL DEFAULT '',
            organization_id TEXT,
            destination_url TEXT,
            extracted_refcode TEXT
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_creatives_org
        ON creatives(organization_id)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS attribution_mappings (
            organization_id TEXT NOT NULL,
            refcode TEXT NOT NULL,
            campaign_id TEXT,
            creative_id TEXT,
            platform TEXT NOT NULL DEFAULT 'meta',
            match_type TEXT NOT NULL,
            confidence REAL NOT NULL,
            attribution_type TEXT NOT NULL,
            destination_url TEXT,
            match_reason TEXT,
            attributed_revenue TEXT NOT NULL DEFAULT '0',
            attributed_transactions INTEGER NOT NULL DEFAULT 0,
            is_auto_matched INTEGER NOT NULL DEFAULT 1,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (organization_id, refcode)
        )
        """
    )
