import json
import logging
import os
import tempfile
from pathlib import Path
from typing import List

from pydantic import ValidationError as SchemaError
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from calcchat.config import Settings
from calcchat.errors import StorageError
from calcchat.models import Base, ChatDocumentRow
from calcchat.schemas import ChatDocument, Message
from calcchat.utils import utc_now_iso

logger = logging.getLogger(__name__)


# =============================================================================
# Document Codec
# =============================================================================

def serialize_messages(messages: List[Message]) -> str:
    """
    Serialize a message list to the persisted document format.

    Returns:
        JSON text of {"messages": [...]} with editedAt omitted when unset
    """
    document = ChatDocument(messages=messages)
    return document.model_dump_json(by_alias=True, exclude_none=True, indent=2)


def deserialize_messages(raw: str) -> List[Message]:
    """
    Parse a persisted document back into a message list.

    Accepts both the {"messages": [...]} document and a bare JSON array,
    which is how key-value deployments stored the list.

    Raises:
        StorageError: if the payload is not valid JSON or not a valid document
    """
    try:
        data = json.loads(raw)
        if isinstance(data, list):
            data = {"messages": data}
        return ChatDocument.model_validate(data).messages
    except (json.JSONDecodeError, SchemaError) as e:
        logger.error(f"Stored chat document is corrupt: {e}")
        raise StorageError("Stored chat document is corrupt") from e


# =============================================================================
# Storage Adapters
# =============================================================================

class StorageAdapter:
    """
    Whole-collection storage: load() returns the entire message list and
    store() replaces it. There are no partial updates.
    """

    def init(self) -> None:
        """Prepare the backing medium. Called during application startup."""

    def load(self) -> List[Message]:
        """Return the stored list, or an empty list if nothing was stored yet."""
        raise NotImplementedError

    def store(self, messages: List[Message]) -> None:
        """Replace the stored list. Raises StorageError on failure."""
        raise NotImplementedError

    def ping(self) -> bool:
        """Check that the backing medium is reachable."""
        try:
            self.load()
            return True
        except StorageError:
            return False


class FileStorage(StorageAdapter):
    """Chat document kept as a JSON file on the local filesystem."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def init(self) -> None:
        logger.debug(f"Initializing file storage at {self.path}")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create data directory {self.path.parent}: {e}")
            raise StorageError("Failed to initialize storage") from e

    def load(self) -> List[Message]:
        if not self.path.exists():
            logger.debug(f"No chat file at {self.path}, starting empty")
            return []
        try:
            raw = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Failed to read chat file {self.path}: {e}")
            raise StorageError("Failed to read messages") from e
        messages = deserialize_messages(raw)
        logger.debug(f"Loaded {len(messages)} messages from {self.path}")
        return messages

    def store(self, messages: List[Message]) -> None:
        payload = serialize_messages(messages)
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Write to a sibling temp file and rename so readers never
            # see a half-written document
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
            os.replace(tmp_name, self.path)
        except OSError as e:
            logger.error(f"Failed to write chat file {self.path}: {e}")
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError("Failed to write messages") from e
        logger.debug(f"Stored {len(messages)} messages to {self.path}")


class DatabaseStorage(StorageAdapter):
    """
    Chat document kept as one JSON blob in a SQL table, keyed by name.
    Stands in for a hosted key-value store.
    """

    def __init__(self, url: str, key: str = "chat:messages"):
        self.url = url
        self.key = key
        connect_args = {}
        if url.startswith("sqlite"):
            # check_same_thread=False is required for SQLite to work with FastAPI's threadpool
            connect_args["check_same_thread"] = False
        self.engine = create_engine(url, connect_args=connect_args, echo=False)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def init(self) -> None:
        """Create the chat_documents table (and the SQLite data directory)."""
        logger.debug(f"Initializing database storage with URL: {self.url}")
        try:
            database = make_url(self.url).database
            if self.url.startswith("sqlite") and database and database != ":memory:":
                Path(database).parent.mkdir(parents=True, exist_ok=True)
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database initialized successfully")
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to initialize database: {e}")
            raise StorageError("Failed to initialize storage") from e

    def load(self) -> List[Message]:
        try:
            with self.SessionLocal() as db:
                row = db.get(ChatDocumentRow, self.key)
                payload = row.payload if row is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to read chat document {self.key}: {e}")
            raise StorageError("Failed to read messages") from e

        if payload is None:
            logger.debug(f"No chat document under key {self.key}, starting empty")
            return []
        return deserialize_messages(payload)

    def store(self, messages: List[Message]) -> None:
        payload = serialize_messages(messages)
        with self.SessionLocal() as db:
            try:
                row = db.get(ChatDocumentRow, self.key)
                if row is None:
                    db.add(ChatDocumentRow(key=self.key, payload=payload, updated_at=utc_now_iso()))
                else:
                    row.payload = payload
                    row.updated_at = utc_now_iso()
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to write chat document {self.key}: {e}")
                raise StorageError("Failed to write messages") from e
        logger.debug(f"Stored {len(messages)} messages under key {self.key}")

    def ping(self) -> bool:
        """
        Check if the database is reachable and schema is applied.

        Returns:
            True if DB is healthy and the chat_documents table exists, False otherwise.
        """
        logger.debug("Checking database health...")
        try:
            with self.SessionLocal() as db:
                db.execute(text("SELECT 1"))
            if not inspect(self.engine).has_table(ChatDocumentRow.__tablename__):
                logger.error("Database schema not applied: 'chat_documents' table not found")
                return False
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False
        logger.debug("Database health check passed")
        return True


def build_storage(settings: Settings) -> StorageAdapter:
    """Select the storage adapter named by STORAGE_BACKEND."""
    if settings.STORAGE_BACKEND == "database":
        logger.info(f"Using database storage, key={settings.STORAGE_KEY}")
        return DatabaseStorage(settings.DATABASE_URL, settings.STORAGE_KEY)
    logger.info(f"Using file storage at {settings.CHAT_FILE_PATH}")
    return FileStorage(settings.CHAT_FILE_PATH)
