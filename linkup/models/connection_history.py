from __future__ import annotations
from collections import deque
from datetime import datetime
from typing import Deque, List, Optional
import logging

from .connection_record import ConnectionRecord

logger = logging.getLogger(__name__)


class ConnectionHistory:
    """Keeps a bounded history of link transitions."""

    def __init__(self, limit: Optional[int] = 500) -> None:
        if limit is not None and limit <= 0:
            raise ValueError("history limit must be positive when provided")
        self.history: Deque[ConnectionRecord] = deque(maxlen=limit)

    def log_connection(self, address: str, timestamp: datetime) -> ConnectionRecord:
        record = ConnectionRecord(address, timestamp, "connected")
        self.history.append(record)
        logger.debug("log_connection: %s", record)
        return record

    def log_disconnection(self, address: str, timestamp: datetime) -> ConnectionRecord:
        record = ConnectionRecord(address, timestamp, "disconnected")
        self.history.append(record)
        logger.debug("log_disconnection: %s", record)
        return record

    def for_address(self, address: str) -> List[ConnectionRecord]:
        return [record for record in self.history if record.address == address]

    def __len__(self) -> int:
        return len(self.history)
