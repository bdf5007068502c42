from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer

from tagstash.common.time import utcnow


class IntegerPrimaryKeyMixin:
    id = Column(Integer, primary_key=True, autoincrement=True)


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
