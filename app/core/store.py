"""Session Store des Moderated Chat Gateways: speichert Nachrichten pro
Session und liefert den Verlauf aufsteigend nach Zeitstempel.

Schreibfehler sind fatal für den Turn und werden weitergereicht.
Lesefehler werden geloggt und ergeben einen leeren Verlauf.

Backends: SQL (SQLAlchemy), Redis (Sorted Set pro Session) und DynamoDB
(Partition Key `id` = Session-ID, Sort Key `timestamp`).
"""
import asyncio
import json
import logging
from typing import List

from boto3.dynamodb.conditions import Key
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from app.core.db_sqla import ChatMessageRecord, ChatSession
from app.core.models import ChatMessage
from app.core.telemetry import TelemetryContext

logger = logging.getLogger(__name__)

REDIS_KEY_PREFIX = "chat:session:"


class SessionStore:
    """Gemeinsame Schnittstelle; Unterklassen implementieren `_append` und
    `_fetch` als blockierende Aufrufe, die im ThreadPool laufen."""

    backend = "base"

    async def append(self, message: ChatMessage, session_id: str, telemetry: TelemetryContext) -> None:
        with telemetry.stage("store.append", {"store.backend": self.backend, "llm.session_id": session_id}):
            try:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, self._append, message, session_id)
            except Exception as e:
                logger.error(f"Failed to store {message.role} message for session {session_id}: {e}")
                raise

    async def fetch_history(self, session_id: str, telemetry: TelemetryContext) -> List[ChatMessage]:
        with telemetry.stage("store.history", {"store.backend": self.backend, "llm.session_id": session_id}) as span:
            try:
                loop = asyncio.get_running_loop()
                messages = await loop.run_in_executor(None, self._fetch, session_id)
            except Exception as e:
                # Lesefehler brechen den Turn nicht ab
                logger.error(f"Failed to load history for session {session_id}: {e}")
                span.set_attribute("store.error", str(e))
                return []
            span.set_attribute("store.messages_count", len(messages))
            return messages

    def _append(self, message: ChatMessage, session_id: str) -> None:
        raise NotImplementedError

    def _fetch(self, session_id: str) -> List[ChatMessage]:
        raise NotImplementedError


class SqlSessionStore(SessionStore):
    backend = "sql"

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _ensure_session(self, db, session_id: str) -> None:
        """Legt die Session-Zeile idempotent an; parallele Turns auf derselben
        neuen Session dürfen beide schreiben."""
        if db.get(ChatSession, session_id) is not None:
            return
        db.add(ChatSession(id=session_id))
        try:
            db.commit()
        except IntegrityError:
            # Zeile wurde zwischenzeitlich von einem anderen Turn angelegt
            db.rollback()
            logger.debug(f"Session {session_id} already created concurrently")

    def _append(self, message: ChatMessage, session_id: str) -> None:
        db = self.session_factory()
        try:
            self._ensure_session(db, session_id)
            db.add(
                ChatMessageRecord(
                    id=message.id,
                    session_id=session_id,
                    role=message.role,
                    content=message.content,
                    timestamp=message.timestamp,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _fetch(self, session_id: str) -> List[ChatMessage]:
        db = self.session_factory()
        try:
            rows = db.scalars(
                select(ChatMessageRecord)
                .where(ChatMessageRecord.session_id == session_id)
                .order_by(ChatMessageRecord.timestamp.asc())
            ).all()
            return [
                ChatMessage(id=row.id, role=row.role, content=row.content, timestamp=row.timestamp, session_id=session_id)
                for row in rows
            ]
        finally:
            db.close()


class RedisSessionStore(SessionStore):
    """Ein Sorted Set pro Session; Score = Zeitstempel, Member = JSON der Nachricht."""

    backend = "redis"

    def __init__(self, redis_conn, ttl_seconds: int = 0):
        self.redis = redis_conn
        self.ttl_seconds = ttl_seconds

    def _key(self, session_id: str) -> str:
        return f"{REDIS_KEY_PREFIX}{session_id}"

    def _append(self, message: ChatMessage, session_id: str) -> None:
        key = self._key(session_id)
        payload = message.model_copy(update={"session_id": session_id}).model_dump_json(by_alias=True)
        pipe = self.redis.pipeline()
        pipe.zadd(key, {payload: message.timestamp})
        if self.ttl_seconds:
            pipe.expire(key, self.ttl_seconds)
        pipe.execute()

    def _fetch(self, session_id: str) -> List[ChatMessage]:
        members = self.redis.zrange(self._key(session_id), 0, -1)
        return [ChatMessage.model_validate(json.loads(member)) for member in members]


class DynamoSessionStore(SessionStore):
    """Tabelle mit Partition Key `id` (Session-ID) und Sort Key `timestamp`."""

    backend = "dynamodb"

    def __init__(self, table):
        self.table = table

    def _append(self, message: ChatMessage, session_id: str) -> None:
        self.table.put_item(
            Item={
                "id": session_id,
                "timestamp": message.timestamp,
                "messageId": message.id,
                "role": message.role,
                "content": message.content,
                "sessionId": session_id,
            }
        )

    def _fetch(self, session_id: str) -> List[ChatMessage]:
        query = {"KeyConditionExpression": Key("id").eq(session_id), "ScanIndexForward": True}
        items = []
        while True:
            response = self.table.query(**query)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                break
            query["ExclusiveStartKey"] = last_key

        return [
            ChatMessage(
                id=item.get("messageId") or f"{session_id}-{int(item['timestamp'])}",
                role=item["role"],
                content=item["content"],
                timestamp=int(item["timestamp"]),  # DynamoDB liefert Decimal
                session_id=session_id,
            )
            for item in items
        ]
