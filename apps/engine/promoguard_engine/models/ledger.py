"""Audit ledger model."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String

from promoguard_engine.db.base import Base


class LedgerEntryRecord(Base):
    """Append-only audit ledger. The autoincrement id is the global sequence."""

    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entry_id = Column(String(64), nullable=False, unique=True, index=True)
    entry_type = Column(String(50), nullable=False, index=True)  # analysis, alert, delivery, ...
    reference_id = Column(String(64), nullable=True, index=True)  # alert_id or analysis_id
    promoter_id = Column(String(255), nullable=False)
    campaign_id = Column(String(255), nullable=False)
    payload_json = Column(JSON, nullable=False)
    recorded_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("ix_ledger_entries_key_recorded", "promoter_id", "campaign_id", "recorded_at"),
    )
