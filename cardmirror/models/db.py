"""
SQLAlchemy ORM models for persistent storage.

Tables mirror the external catalog: sets, edition-expanded cards,
one price row per edition card, and a per-mode sync status row.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class CardSetDB(Base):
    """
    A catalog set with its two resumable sync cursors.

    Cursor columns are owned by the sync engine and never touched by
    set upserts. Each cursor has its own version counter, bumped on every
    write of that cursor, so concurrent writers of the same cursor can
    detect a lost update while price and metadata passes stay independent.
    """

    __tablename__ = "sets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    series: Mapped[str | None] = mapped_column(String(255), nullable=True)
    release_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    total_cards: Mapped[int] = mapped_column(Integer, default=0)
    logo: Mapped[str | None] = mapped_column(Text, nullable=True)
    symbol: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Assigned once on first insert; fairness tie-breaker
    insertion_seq: Mapped[int] = mapped_column(Integer, default=0, index=True)

    price_sync_progress: Mapped[int] = mapped_column(Integer, default=0)
    last_price_sync: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    price_sync_version: Mapped[int] = mapped_column(Integer, default=0)
    metadata_sync_progress: Mapped[int] = mapped_column(Integer, default=0)
    last_metadata_sync: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    metadata_sync_version: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<CardSetDB(id={self.id}, name={self.name})>"


class CardDB(Base):
    """
    One edition of a catalog card.

    Many rows share a ``base_card_id``; the primary key is derived from
    the base id and the edition label.
    """

    __tablename__ = "cards"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    base_card_id: Mapped[str] = mapped_column(String(64), index=True)
    set_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("sets.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255), index=True)
    number: Mapped[str] = mapped_column(String(32), default="N/A")
    rarity: Mapped[str] = mapped_column(String(64), default="Common")
    types: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    supertype: Mapped[str | None] = mapped_column(String(64), nullable=True)
    image_small: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_large: Mapped[str | None] = mapped_column(Text, nullable=True)
    tcgplayer_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    edition: Mapped[str] = mapped_column(String(32), default="Unlimited")

    def __repr__(self) -> str:
        return f"<CardDB(id={self.id}, edition={self.edition})>"


class PriceDB(Base):
    """Latest TCGplayer prices for one edition card. No history is kept."""

    __tablename__ = "prices"

    card_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("cards.id", ondelete="CASCADE"), primary_key=True
    )
    tcgplayer_market: Mapped[float] = mapped_column(Float, default=0.0)
    tcgplayer_low: Mapped[float] = mapped_column(Float, default=0.0)
    tcgplayer_high: Mapped[float] = mapped_column(Float, default=0.0)
    last_updated: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<PriceDB(card_id={self.card_id}, market={self.tcgplayer_market})>"


class SyncMetadataDB(Base):
    """Last-run status for one sync mode, for operators."""

    __tablename__ = "sync_metadata"

    entity_type: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(32))
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_sync: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<SyncMetadataDB(entity_type={self.entity_type}, status={self.status})>"
