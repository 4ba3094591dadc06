"""Datenbankmodelle für die persistente Speicherung von Chat-Verläufen (SQL-Backend des Session Stores)."""
import datetime
from typing import List

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String, Text, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool


# Basis-Klasse für SQLAlchemy Modelle
class Base(DeclarativeBase):
    pass


class ChatSession(Base):
    """Repräsentiert eine Chat-Sitzung."""
    __tablename__ = "chat_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True)  # Serverseitig erzeugte oder vom Client übernommene session_id
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime, default=lambda: datetime.datetime.now(datetime.timezone.utc)
    )

    messages: Mapped[List["ChatMessageRecord"]] = relationship(
        back_populates="session", cascade="all, delete-orphan", order_by="ChatMessageRecord.timestamp"
    )

    def __repr__(self) -> str:
        return f"<ChatSession(id='{self.id}', created_at='{self.created_at}')>"


class ChatMessageRecord(Base):
    """Repräsentiert eine einzelne Nachricht innerhalb einer Session."""
    __tablename__ = "chat_messages"
    __table_args__ = (Index("ix_chat_messages_session_ts", "session_id", "timestamp"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    session_id: Mapped[str] = mapped_column(ForeignKey("chat_sessions.id"))

    role: Mapped[str] = mapped_column(String(50))  # 'user', 'assistant', 'system'
    content: Mapped[str] = mapped_column(Text)
    timestamp: Mapped[int] = mapped_column(BigInteger)  # epoch ms

    session: Mapped["ChatSession"] = relationship(back_populates="messages")

    def __repr__(self) -> str:
        return f"<ChatMessageRecord(role='{self.role}', session_id='{self.session_id}')>"


def make_engine(url: str):
    if url.startswith("sqlite"):
        # In-Memory-SQLite muss eine einzige Verbindung über alle Threads teilen.
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


def make_session_factory(url: str) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=make_engine(url))


def init_db(session_factory: sessionmaker):
    """Erstellt die Tabellen, falls sie noch nicht existieren."""
    Base.metadata.create_all(bind=session_factory.kw["bind"])
