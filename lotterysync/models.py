from __future__ import annotations

import json
from typing import Any

from sqlalchemy import Column, Float, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class CacheRecord(Base):
    __tablename__ = "cache_entries"

    key = Column(String(255), primary_key=True)
    payload = Column(Text, nullable=False)
    stored_at = Column(Float, nullable=False)
    expires_at = Column(Float, nullable=False, index=True)

    def set_payload(self, value: Any) -> None:
        self.payload = json.dumps(value)

    def get_payload(self) -> Any:
        return json.loads(self.payload)
