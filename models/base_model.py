#!/usr/bin/env python3
"""
Shared SQLAlchemy base for the Streamflix API.

- UUID primary key (String(36)) with a Python-side default
- created_at / updated_at timestamps stored as naive UTC
- save() that goes through the DBStorage singleton in models/__init__.py

All timestamps in this project are naive UTC datetimes. SQLite drops tzinfo on
the way back anyway, and comparing aware with naive values raises, so every
value read from the database passes through as_naive_utc() before comparison.
"""

from __future__ import annotations

from datetime import datetime, timezone
import uuid

import models

from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


def _uuid_str() -> str:
    """Return a canonical UUIDv4 string (36 chars, with hyphens)."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class BaseModel:
    """
    Base mixin for all persistent models: id, created_at, updated_at.

    created_at has a Python default as well as a server default so rows
    inserted in the same second still order deterministically.
    """

    id = Column(String(36), primary_key=True, default=_uuid_str, nullable=False)
    created_at = Column(DateTime, default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    def __init__(self, *args, **kwargs):
        for key, value in kwargs.items():
            if key != "__class__":
                setattr(self, key, value)
        if getattr(self, "id", None) is None:
            self.id = _uuid_str()

    def save(self):
        """Stamp updated_at and commit through DBStorage."""
        self.updated_at = utcnow()
        models.storage.new(self)
        models.storage.save()
