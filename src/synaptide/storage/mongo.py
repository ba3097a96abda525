"""MongoDB backend built on motor.

Collections:
- users: one document per identity, unique on name
- messages: one document per turn (flat layout)
- exchanges: one document per user/assistant pair (collapsed layout)
- profiles: one document per user, unique on user_id

Ids are client-generated ObjectId strings. They grow monotonically
within a process, which gives turns stored at the same millisecond a
deterministic order.
"""

import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

from bson import ObjectId
from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import ConnectionFailure, DuplicateKeyError, PyMongoError

from ..config import StorageConfig
from ..errors import (
    ConcurrentUpdateError,
    PartialFailure,
    StorageError,
    StorageUnavailable,
)
from .adapter import (
    assistant_timestamp,
    document_to_message,
    document_to_profile,
    document_to_user,
    exchange_to_messages,
    message_to_document,
    profile_to_document,
)
from .base import MessageLog, ProfileStore, Storage, UserDirectory
from .merge import merge_profile, seed_profile
from .models import (
    Message,
    Profile,
    ProfilePatch,
    Role,
    User,
    clean_name,
    truncate_ms,
    utc_now,
)

logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(ObjectId())


def _owned_by(user_id: str) -> dict[str, Any]:
    """Filter matching documents of a user under the current or legacy key."""
    return {"$or": [{"user_id": user_id}, {"userId": user_id}]}


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Re-raise driver errors as storage errors."""
    try:
        yield
    except ConnectionFailure as e:
        raise StorageUnavailable(f"MongoDB unreachable during {operation}: {e}") from e
    except PyMongoError as e:
        raise StorageError(f"MongoDB error during {operation}: {e}") from e


class MongoUserDirectory(UserDirectory):
    def __init__(self, collection: AsyncIOMotorCollection) -> None:
        self._collection = collection

    async def ensure_indexes(self) -> None:
        await self._collection.create_index("name", unique=True)

    async def resolve(self, name: str) -> User | None:
        name = clean_name(name)
        with _translate_errors("resolve user"):
            doc = await self._collection.find_one({"name": name})
        return document_to_user(doc) if doc else None

    async def create_or_get(self, name: str) -> User:
        name = clean_name(name)
        now = utc_now()
        # Single upsert: looks up and creates atomically under the unique index
        with _translate_errors("create user"):
            try:
                doc = await self._collection.find_one_and_update(
                    {"name": name},
                    {
                        "$max": {"last_seen": now},
                        "$setOnInsert": {"_id": new_id(), "created_at": now},
                    },
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError:
                logger.info("Concurrent creation of user %r, reading the winner", name)
                await self.touch_by_name(name)
                doc = await self._collection.find_one({"name": name})
        if doc is None:
            raise StorageError(f"User {name!r} vanished during creation")
        return document_to_user(doc)

    async def touch_by_name(self, name: str) -> None:
        await self._collection.update_one({"name": name}, {"$max": {"last_seen": utc_now()}})

    async def touch(self, user_id: str) -> None:
        with _translate_errors("touch user"):
            await self._collection.update_one(
                {"_id": user_id}, {"$max": {"last_seen": utc_now()}}
            )


class _MongoMessageLog(MessageLog):
    """Shared parts of both message layouts."""

    def __init__(self, collection: AsyncIOMotorCollection, batch_size: int = 500) -> None:
        self._collection = collection
        self.batch_size = batch_size

    async def ensure_indexes(self) -> None:
        await self._collection.create_index([("user_id", ASCENDING), ("timestamp", ASCENDING)])

    async def _find_all(self, user_id: str) -> list[dict[str, Any]]:
        with _translate_errors("list messages"):
            cursor = self._collection.find(_owned_by(user_id))
            return await cursor.to_list(length=None)

    async def clear(self, user_id: str) -> int:
        """Delete a user's documents in concurrent batches.

        Batches that fail are not retried and successful ones are not
        rolled back. Any failure is reported once, as PartialFailure when
        some batches went through.
        """
        with _translate_errors("clear messages"):
            cursor = self._collection.find(_owned_by(user_id), {"_id": 1})
            docs = await cursor.to_list(length=None)

        ids = [doc["_id"] for doc in docs]
        batches = [ids[i : i + self.batch_size] for i in range(0, len(ids), self.batch_size)]
        results = await asyncio.gather(
            *(self._collection.delete_many({"_id": {"$in": batch}}) for batch in batches),
            return_exceptions=True,
        )

        deleted = 0
        failed = 0
        first_error: Exception | None = None
        for batch, result in zip(batches, results):
            if isinstance(result, Exception):
                logger.error("Failed to delete %d messages for %s: %s", len(batch), user_id, result)
                failed += len(batch)
                first_error = first_error or result
            elif isinstance(result, BaseException):
                raise result
            else:
                deleted += result.deleted_count

        if first_error is not None:
            if deleted == 0:
                with _translate_errors("clear messages"):
                    raise first_error
            raise PartialFailure(
                f"Cleared {deleted} messages for {user_id}, {failed} could not be deleted",
                deleted=deleted,
                failed=failed,
            )
        return deleted


class FlatMessageLog(_MongoMessageLog):
    """One document per turn."""

    async def append(
        self,
        user_id: str,
        role: Role,
        content: str,
        timestamp: datetime | None = None,
    ) -> Message:
        message = Message(
            id=new_id(),
            user_id=user_id,
            role=Role(role),
            content=content,
            timestamp=truncate_ms(timestamp) if timestamp else utc_now(),
        )
        with _translate_errors("append message"):
            await self._collection.insert_one(message_to_document(message))
        return message

    async def list_all(self, user_id: str) -> list[Message]:
        docs = await self._find_all(user_id)
        messages = [document_to_message(doc, user_id) for doc in docs]
        return sorted(messages, key=lambda m: (m.timestamp, m.id))


class CollapsedMessageLog(_MongoMessageLog):
    """One document per exchange, holding user_input and ai_response.

    A user turn opens a document. An assistant turn fills the newest open
    document of that user, or opens one holding only the reply. Other
    roles are stored as plain {role, content} documents.
    """

    async def append(
        self,
        user_id: str,
        role: Role,
        content: str,
        timestamp: datetime | None = None,
    ) -> Message:
        role = Role(role)
        ts = truncate_ms(timestamp) if timestamp else utc_now()

        if role is Role.ASSISTANT:
            return await self._append_reply(user_id, content, ts)

        doc: dict[str, Any] = {"_id": new_id(), "user_id": user_id, "timestamp": ts}
        if role is Role.USER:
            doc["user_input"] = content
            doc["ai_only"] = False
        else:
            doc["role"] = role.value
            doc["content"] = content
        with _translate_errors("append message"):
            await self._collection.insert_one(doc)
        return Message(id=doc["_id"], user_id=user_id, role=role, content=content, timestamp=ts)

    async def _append_reply(self, user_id: str, content: str, ts: datetime) -> Message:
        with _translate_errors("append reply"):
            doc = await self._collection.find_one_and_update(
                {
                    "user_id": user_id,
                    "user_input": {"$exists": True},
                    "ai_response": {"$exists": False},
                },
                {"$set": {"ai_response": content, "ai_timestamp": ts}},
                sort=[("timestamp", DESCENDING)],
                return_document=ReturnDocument.AFTER,
            )
            if doc is None:
                doc = {
                    "_id": new_id(),
                    "user_id": user_id,
                    "ai_response": content,
                    "ai_only": True,
                    "timestamp": ts,
                    "ai_timestamp": ts,
                }
                await self._collection.insert_one(doc)

        return Message(
            id=f"{doc['_id']}_ai",
            user_id=user_id,
            role=Role.ASSISTANT,
            content=content,
            timestamp=assistant_timestamp(doc),
        )

    async def list_all(self, user_id: str) -> list[Message]:
        docs = await self._find_all(user_id)
        messages = [m for doc in docs for m in exchange_to_messages(doc, user_id)]
        return sorted(messages, key=lambda m: (m.timestamp, m.id))


class MongoProfileStore(ProfileStore):
    """Profiles written with an optimistic version check."""

    def __init__(self, collection: AsyncIOMotorCollection, max_retries: int = 3) -> None:
        self._collection = collection
        self.max_retries = max_retries

    async def ensure_indexes(self) -> None:
        await self._collection.create_index(
            "user_id",
            unique=True,
            partialFilterExpression={"user_id": {"$type": "string"}},
        )

    async def _find(self, user_id: str) -> dict[str, Any] | None:
        with _translate_errors("read profile"):
            return await self._collection.find_one(_owned_by(user_id))

    async def get(self, user_id: str) -> Profile | None:
        doc = await self._find(user_id)
        return document_to_profile(doc, user_id) if doc else None

    async def merge(self, user_id: str, patch: ProfilePatch) -> Profile:
        for attempt in range(1, self.max_retries + 1):
            doc = await self._find(user_id)
            now = utc_now()

            if doc is None:
                profile = seed_profile(new_id(), user_id, patch, now)
                with _translate_errors("create profile"):
                    try:
                        await self._collection.insert_one(
                            {"_id": profile.id, **profile_to_document(profile)}
                        )
                    except DuplicateKeyError:
                        logger.info("Profile for %s created concurrently, retrying", user_id)
                        continue
                return profile

            merged = merge_profile(document_to_profile(doc, user_id), patch, now)
            precondition: dict[str, Any] = {"_id": doc["_id"]}
            if "version" in doc:
                precondition["version"] = doc["version"]
            else:
                precondition["version"] = {"$exists": False}

            with _translate_errors("update profile"):
                result = await self._collection.update_one(
                    precondition, {"$set": profile_to_document(merged)}
                )
            if result.matched_count == 1:
                return merged

            logger.warning(
                "Profile for %s changed during merge (attempt %d/%d)",
                user_id,
                attempt,
                self.max_retries,
            )

        raise ConcurrentUpdateError(
            f"Profile for {user_id} kept changing, gave up after {self.max_retries} attempts"
        )


class MongoStorage(Storage):
    """Durable backend on MongoDB."""

    backend = "mongo"

    def __init__(
        self,
        client: AsyncIOMotorClient,
        database: str = "synaptide",
        message_layout: str = "flat",
        clear_batch_size: int = 500,
        merge_retries: int = 3,
    ) -> None:
        self._client = client
        self.db: AsyncIOMotorDatabase = client[database]
        self.message_layout = message_layout

        if message_layout == "collapsed":
            messages: _MongoMessageLog = CollapsedMessageLog(self.db["exchanges"], clear_batch_size)
        else:
            messages = FlatMessageLog(self.db["messages"], clear_batch_size)

        super().__init__(
            users=MongoUserDirectory(self.db["users"]),
            messages=messages,
            profiles=MongoProfileStore(self.db["profiles"], merge_retries),
        )

    @classmethod
    def from_config(cls, config: StorageConfig) -> "MongoStorage":
        """Build a client from config. Nothing is contacted yet."""
        try:
            client = AsyncIOMotorClient(
                config.mongo_uri,
                serverSelectionTimeoutMS=config.connect_timeout_ms,
            )
        except PyMongoError as e:
            raise StorageUnavailable(f"Invalid MongoDB configuration: {e}") from e
        return cls(
            client,
            database=config.database,
            message_layout=config.message_layout,
            clear_batch_size=config.clear_batch_size,
            merge_retries=config.merge_retries,
        )

    async def init(self) -> None:
        """Ping the server and create indexes."""
        try:
            await self._client.admin.command("ping")
            await self.users.ensure_indexes()
            await self.messages.ensure_indexes()
            await self.profiles.ensure_indexes()
        except PyMongoError as e:
            raise StorageUnavailable(f"MongoDB unavailable: {e}") from e
        logger.info(
            "Connected to MongoDB database %s (%s messages)",
            self.db.name,
            self.message_layout,
        )

    async def close(self) -> None:
        self._client.close()
