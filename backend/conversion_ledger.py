# backend/conversion_ledger.py

"""
Conversion Ledger - append-only store of gauge conversions

Records are inserted once and never updated. volume_l is denormalized at
creation time so later calibration changes never rewrite history.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Union

from pydantic import BaseModel, ConfigDict, Field
from pymongo.errors import PyMongoError

from gauge_errors import StorageError

logger = logging.getLogger(__name__)


class ConversionRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    value_cm: Union[int, float]
    volume_l: Union[int, float]
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ConversionLedger:
    """Write path over the conversions collection"""

    def __init__(self, db):
        self.db = db

    @property
    def collection(self):
        return self.db.conversions

    async def record(self, user_id: str, value_cm, volume_l) -> ConversionRecord:
        """
        Append one conversion.

        Raises:
            StorageError: If the insert fails (not retried here)
        """
        record = ConversionRecord(user_id=user_id, value_cm=value_cm, volume_l=volume_l)
        try:
            # insert_one mutates its argument with _id; keep the record clean
            await self.collection.insert_one(record.model_dump())
        except PyMongoError as e:
            logger.error(f"Failed to record conversion for user {user_id} ({value_cm} cm): {e}")
            raise StorageError("conversion insert") from e

        logger.info(f"Recorded conversion {record.id}: {value_cm} cm -> {volume_l} L by user {user_id}")
        return record
