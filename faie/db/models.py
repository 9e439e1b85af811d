from __future__ import annotations

from sqlalchemy import (
    String, Integer, BigInteger, Float, Text, JSON, UniqueConstraint, ForeignKey, Index
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import LargeBinary



class Base(DeclarativeBase):
    pass


class Feedback(Base):
    __tablename__ = "feedback"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    source: Mapped[str] = mapped_column(String(20), nullable=False)  # github / slack / support
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[str | None] = mapped_column(String(255), nullable=True)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # epoch millis
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    received_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    metadata_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # verbatim webhook body, kept for audit/replay
    raw_json: Mapped[str] = mapped_column(Text, nullable=False)

    content_hash: Mapped[str] = mapped_column(String(16), nullable=False)
    # source-independent digest used for alert suppression
    content_key: Mapped[str] = mapped_column(String(16), nullable=False, index=True)

    processed_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    processing_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    sentiment: Mapped[str | None] = mapped_column(String(10), nullable=True)
    sentiment_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    urgency: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tags: Mapped[list | None] = mapped_column(JSON(none_as_null=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("content_hash", name="uq_feedback_content_hash"),
        Index("ix_feedback_pending", "processed_at", "processing_error", "retry_count"),
        Index("ix_feedback_urgency", "urgency"),
        Index("ix_feedback_timestamp", "timestamp"),
    )


class Theme(Base):
    __tablename__ = "themes"

    theme_name: Mapped[str] = mapped_column(String(100), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False)
    avg_sentiment: Mapped[float] = mapped_column(Float, nullable=False)
    avg_urgency: Mapped[float] = mapped_column(Float, nullable=False)
    first_seen: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_seen: Mapped[int] = mapped_column(BigInteger, nullable=False)


class Embedding(Base):
    __tablename__ = "embeddings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    feedback_id: Mapped[int] = mapped_column(
        ForeignKey("feedback.id"),
        nullable=False,
        unique=True,
        index=True,
    )

    dim: Mapped[int] = mapped_column(Integer, nullable=False)
    vector: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    # urgency / sentiment / tags summary stored alongside the vector
    metadata_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)


class AlertClaim(Base):
    __tablename__ = "alert_claims"

    # one row per content; rewritten when a new alert window opens
    content_key: Mapped[str] = mapped_column(String(16), primary_key=True)
    feedback_id: Mapped[int] = mapped_column(ForeignKey("feedback.id"), nullable=False)
    alerted_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
