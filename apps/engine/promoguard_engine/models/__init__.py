"""Database models - import all models here for metadata discovery."""

from promoguard_engine.models.ledger import LedgerEntryRecord
from promoguard_engine.models.sample import EngagementSampleRecord

__all__ = [
    "LedgerEntryRecord",
    "EngagementSampleRecord",
]
