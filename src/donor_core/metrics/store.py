"""SQLite persistence for transactions, spend, catalog and attribution mappings."""
import logging
import sqlite3
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Optional

from ..schemas.records import (
    AttributionMapping,
    Campaign,
    Creative,
    SpendRecord,
    Transaction,
)
from .schema import UPSERT_MAPPING_SQL, connect, init_database


logger = logging.getLogger(__name__)


def _text(value: object) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class DonorDataStore:
    """Read/write access to the donor database.

    Each call opens and closes its own connection.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        init_database(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        return connect(self.db_path)

    # Organizations

    def upsert_organization(
        self,
        organization_id: str,
        name: Optional[str] = None,
        timezone: Optional[str] = None,
    ) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO organizations (organization_id, name, timezone)
                VALUES (?, ?, ?)
                ON CONFLICT(organization_id)
                DO UPDATE SET
                    name=COALESCE(excluded.name, organizations.name),
                    timezone=COALESCE(excluded.timezone, organizations.timezone)
                """,
                (organization_id, name, timezone),
            )
            conn.commit()
        finally:
            conn.close()

    def get_org_timezone(self, organization_id: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT timezone FROM organizations WHERE organization_id=?",
                (organization_id,),
            ).fetchone()
        finally:
            conn.close()
        return row["timezone"] if row else None

    # Transactions

    def insert_transactions(self, transactions: Iterable[Transaction]) -> int:
        """Insert or replace transactions by id. Returns rows written."""
        rows = [
            (
                txn.id,
                txn.organization_id,
                txn.type.value,
                str(txn.amount),
                str(txn.fee),
                _text(txn.net_amount),
                _text(txn.occurred_at),
                txn.donor_id,
                txn.refcode,
                txn.source_campaign,
                int(txn.is_recurring),
                int(txn.recurring_upsell_shown),
                int(txn.recurring_upsell_succeeded),
                txn.campaign_id,
                txn.creative_id,
            )
            for txn in transactions
        ]

        conn = self._connect()
        try:
            conn.executemany(
                """
                INSERT INTO transactions (
                    id, organization_id, type, amount, fee, net_amount,
                    occurred_at, donor_id, refcode, source_campaign, is_recurring,
                    recurring_upsell_shown, recurring_upsell_succeeded,
                    campaign_id, creative_id
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id)
                DO UPDATE SET
                    organization_id=excluded.organization_id,
                    type=excluded.type,
                    amount=excluded.amount,
                    fee=excluded.fee,
                    net_amount=excluded.net_amount,
                    occurred_at=excluded.occurred_at,
                    donor_id=excluded.donor_id,
                    refcode=excluded.refcode,
                    source_campaign=excluded.source_campaign,
                    is_recurring=excluded.is_recurring,
                    recurring_upsell_shown=excluded.recurring_upsell_shown,
                    recurring_upsell_succeeded=excluded.recurring_upsell_succeeded,
                    campaign_id=excluded.campaign_id,
                    creative_id=excluded.creative_id
                """,
                rows,
            )
            conn.commit()
        finally:
            conn.close()

        logger.debug("Stored %s transactions", len(rows))
        return len(rows)

    def list_transactions(self, organization_id: Optional[str] = None) -> list[Transaction]:
        """Transactions for one organization (all when None).

        Date-range restriction happens after org-local bucketing, not here.
        """
        query = "SELECT * FROM transactions"
        params: tuple = ()
        if organization_id is not None:
            query += " WHERE organization_id=?"
            params = (organization_id,)
        query += " ORDER BY occurred_at, id"

        conn = self._connect()
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [Transaction(**dict(row)) for row in rows]

    # Spend

    def insert_spend_records(
        self,
        records: Iterable[SpendRecord],
        organization_id: Optional[str] = None,
    ) -> int:
        rows = [
            (
                organization_id,
                record.platform.value,
                record.campaign_id,
                record.creative_id,
                record.date.isoformat(),
                str(record.spend),
                record.conversions,
                record.impressions,
                record.clicks,
                record.messages_sent,
            )
            for record in records
        ]

        conn = self._connect()
        try:
            conn.executemany(
                """
                INSERT INTO spend_records (
                    organization_id, platform, campaign_id, creative_id, date,
                    spend, conversions, impressions, clicks, messages_sent
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.commit()
        finally:
            conn.close()
        return len(rows)

    def list_spend_records(
        self,
        organization_id: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[SpendRecord]:
        clauses: list[str] = []
        params: list[object] = []
        if organization_id is not None:
            clauses.append("organization_id=?")
            params.append(organization_id)
        if start is not None:
            clauses.append("date>=?")
            params.append(start.isoformat())
        if end is not None:
            clauses.append("date<=?")
            params.append(end.isoformat())

        query = (
            "SELECT platform, campaign_id, creative_id, date, spend, conversions, "
            "impressions, clicks, messages_sent FROM spend_records"
        )
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY date, id"

        conn = self._connect()
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [SpendRecord(**dict(row)) for row in rows]

    # Catalog

    def upsert_campaigns(self, campaigns: Iterable[Campaign]) -> int:
        rows = [
            (c.campaign_id, c.organization_id, c.campaign_name, c.platform)
            for c in campaigns
        ]
        conn = self._connect()
        try:
            conn.executemany(
                """
                INSERT INTO campaigns (campaign_id, organization_id, campaign_name, platform)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(campaign_id)
                DO UPDATE SET
                    organization_id=excluded.organization_id,
                    campaign_name=excluded.campaign_name,
                    platform=excluded.platform
                """,
                rows,
            )
            conn.commit()
        finally:
            conn.close()
        return len(rows)

    def list_campaigns(self, organization_id: Optional[str] = None) -> list[Campaign]:
        query = "SELECT campaign_id, organization_id, campaign_name, platform FROM campaigns"
        params: tuple = ()
        if organization_id is not None:
            query += " WHERE organization_id=?"
            params = (organization_id,)

        conn = self._connect()
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [Campaign(**dict(row)) for row in rows]

    def insert_creatives(self, creatives: Iterable[Creative]) -> int:
        rows = [
            (
                c.creative_id,
                c.campaign_id,
                c.campaign_name,
                c.organization_id,
                c.destination_url,
                c.extracted_refcode,
            )
            for c in creatives
        ]
        conn = self._connect()
        try:
            conn.executemany(
                """
                INSERT INTO creatives (
                    creative_id, campaign_id, campaign_name, organization_id,
                    destination_url, extracted_refcode
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.commit()
        finally:
            conn.close()
        return len(rows)

    def list_creatives(self, organization_id: Optional[str] = None) -> list[Creative]:
        query = (
            "SELECT creative_id, campaign_id, campaign_name, organization_id, "
            "destination_url, extracted_refcode FROM creatives"
        )
        params: tuple = ()
        if organization_id is not None:
            query += " WHERE organization_id=?"
            params = (organization_id,)

        conn = self._connect()
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [Creative(**dict(row)) for row in rows]

    # Attribution mappings

    def list_mappings(self, organization_id: Optional[str] = None) -> list[AttributionMapping]:
        query = (
            "SELECT organization_id, refcode, campaign_id, creative_id, platform, "
            "match_type, confidence, attribution_type, destination_url, match_reason, "
            "attributed_revenue, attributed_transactions, is_auto_matched "
            "FROM attribution_mappings"
        )
        params: tuple = ()
        if organization_id is not None:
            query += " WHERE organization_id=?"
            params = (organization_id,)
        query += " ORDER BY organization_id, refcode"

        conn = self._connect()
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [AttributionMapping(**dict(row)) for row in rows]

    def get_mapping(self, organization_id: str, refcode: str) -> Optional[AttributionMapping]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT organization_id, refcode, campaign_id, creative_id, platform, "
                "match_type, confidence, attribution_type, destination_url, match_reason, "
                "attributed_revenue, attributed_transactions, is_auto_matched "
                "FROM attribution_mappings WHERE organization_id=? AND refcode=?",
                (organization_id, refcode),
            ).fetchone()
        finally:
            conn.close()
        return AttributionMapping(**dict(row)) if row else None

    def upsert_mapping(self, mapping: AttributionMapping) -> bool:
        """Write a mapping unless it would replace a deterministic one with a heuristic.

        Returns:
            True if a row was inserted or updated
        """
        conn = self._connect()
        try:
            cursor = conn.execute(
                UPSERT_MAPPING_SQL,
                (
                    mapping.organization_id,
                    mapping.refcode,
                    mapping.campaign_id,
                    mapping.creative_id,
                    mapping.platform,
                    mapping.match_type.value,
                    mapping.confidence,
                    mapping.attribution_type,
                    mapping.destination_url,
                    mapping.match_reason,
                    str(mapping.attributed_revenue),
                    mapping.attributed_transactions,
                    int(mapping.is_auto_matched),
                ),
            )
            conn.commit()
            written = cursor.rowcount > 0
        finally:
            conn.close()

        if not written:
            logger.info(
                "Store kept deterministic mapping for %s/%s",
                mapping.organization_id,
                mapping.refcode,
            )
        return written
