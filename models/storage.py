from __future__ import annotations
from typing import Any, Optional
from datetime import datetime
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON


class KeyValueEntry(SQLModel, table=True):
    __tablename__ = "key_value_entry"

    namespace: str = Field(primary_key=True, max_length=64)
    key: str = Field(primary_key=True, max_length=255)
    value: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    updated_at: datetime = Field(default_factory=datetime.utcnow, index=True)
