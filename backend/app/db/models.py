# app/db/models.py

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class LedgerDocument(Base):
    """
    One JSON document per row, always replaced wholesale.
    The usage ledger lives under key "usage".
    """

    __tablename__ = "ledger_documents"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)

    # { userId: { "YYYY-MM": { used, limit } } }
    document: Mapped[Any] = mapped_column(JSON, nullable=False, default=dict)

    updated_at: Mapped[Any] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
