"""
Message store: mutation semantics over the chat document.

The module has two layers:
- pure transforms (create_message, edit_message, ...) that take the current
  message list and return a new list plus an outcome, never touching storage
  and never mutating their input;
- MessageStore, which runs each transform as one load -> transform -> store
  round trip against a StorageAdapter.

Mutations are serialized per MessageStore with a lock, so a store never
overwrites a change made by a concurrent mutation in the same process.
"""

import logging
import threading
from typing import Callable, List, Optional, Tuple, TypeVar

from calcchat.errors import NotFoundError, StorageError, UnauthorizedError, ValidationError
from calcchat.schemas import Message
from calcchat.storage import StorageAdapter
from calcchat.utils import next_message_id, utc_now_iso

logger = logging.getLogger(__name__)

T = TypeVar("T")

Reactions = dict[str, list[str]]


# =============================================================================
# Validation
# =============================================================================

def _require(detail: str, *values: Optional[str]) -> None:
    """Raise ValidationError if any value is missing or empty."""
    if any(not v for v in values):
        raise ValidationError(detail)


def validate_create(name: Optional[str], message: Optional[str]) -> None:
    _require("Name and message are required", name, message)


def validate_edit(message_id: Optional[str], name: Optional[str], message: Optional[str]) -> None:
    _require("ID, message, and name are required", message_id, message, name)


def validate_delete(message_id: Optional[str], name: Optional[str]) -> None:
    _require("ID and name are required", message_id, name)


def validate_reaction(message_id: Optional[str], reaction: Optional[str], user_name: Optional[str]) -> None:
    _require("Message ID, reaction, and user name are required", message_id, reaction, user_name)


def _find_index(messages: List[Message], message_id: str) -> int:
    for index, msg in enumerate(messages):
        if msg.id == message_id:
            return index
    raise NotFoundError()


def _find_owned(messages: List[Message], message_id: str, name: str) -> int:
    index = _find_index(messages, message_id)
    # Display names are the only identity: exact string match
    if messages[index].name != name:
        raise UnauthorizedError()
    return index


# =============================================================================
# Pure Transforms
# =============================================================================

def create_message(
    messages: List[Message],
    name: Optional[str],
    message: Optional[str],
) -> Tuple[List[Message], Message]:
    """
    Append a new message.

    Returns:
        Tuple of (new message list, created message)
    """
    validate_create(name, message)
    created = Message(
        id=next_message_id(m.id for m in messages),
        name=name,
        message=message,
        timestamp=utc_now_iso(),
        reactions={},
        edited=False,
    )
    return [*messages, created], created


def edit_message(
    messages: List[Message],
    message_id: Optional[str],
    name: Optional[str],
    message: Optional[str],
) -> Tuple[List[Message], Message]:
    """
    Replace the body of a message owned by `name`.

    id, timestamp, reactions and list position are left untouched.

    Raises:
        ValidationError, NotFoundError, UnauthorizedError
    """
    validate_edit(message_id, name, message)
    index = _find_owned(messages, message_id, name)
    updated = messages[index].model_copy(
        update={"message": message, "edited": True, "edited_at": utc_now_iso()}
    )
    new_messages = list(messages)
    new_messages[index] = updated
    return new_messages, updated


def delete_message(
    messages: List[Message],
    message_id: Optional[str],
    name: Optional[str],
) -> List[Message]:
    """Remove a message owned by `name`, keeping the order of the rest."""
    validate_delete(message_id, name)
    index = _find_owned(messages, message_id, name)
    return messages[:index] + messages[index + 1:]


def toggle_reaction(
    messages: List[Message],
    message_id: Optional[str],
    reaction: Optional[str],
    user_name: Optional[str],
) -> Tuple[List[Message], Reactions]:
    """
    Add `user_name` under `reaction`, or remove it if already there.

    Anyone may react to any message. A reaction key whose list becomes
    empty is dropped.

    Returns:
        Tuple of (new message list, the message's full reactions mapping)
    """
    validate_reaction(message_id, reaction, user_name)
    index = _find_index(messages, message_id)

    reactions = {symbol: list(names) for symbol, names in messages[index].reactions.items()}
    names = reactions.setdefault(reaction, [])
    if user_name in names:
        names.remove(user_name)
        if not names:
            del reactions[reaction]
    else:
        names.append(user_name)

    new_messages = list(messages)
    new_messages[index] = messages[index].model_copy(update={"reactions": reactions})
    return new_messages, reactions


def clear_messages() -> List[Message]:
    """
    Empty the whole collection.

    Unlike edit and delete there is no ownership check: anyone who can
    reach the board may wipe it.
    """
    return []


def filter_messages(messages: List[Message], q: Optional[str] = None) -> List[Message]:
    """Case-insensitive substring match on message text or author name."""
    if not q or not q.strip():
        return messages
    needle = q.lower()
    return [m for m in messages if needle in m.message.lower() or needle in m.name.lower()]


# =============================================================================
# Message Store
# =============================================================================

class MessageStore:
    """
    Runs chat operations against a storage adapter.

    The store keeps no list in memory between calls: every operation loads
    the current document, and every mutation stores a full replacement.
    """

    def __init__(self, storage: StorageAdapter):
        self.storage = storage
        self._lock = threading.Lock()

    def list_messages(self, q: Optional[str] = None) -> List[Message]:
        """
        Return the full message list, optionally filtered by `q`.

        A storage read failure is logged and answered with an empty list.
        """
        try:
            messages = self.storage.load()
        except StorageError as e:
            logger.error(f"Failed to load messages, returning empty list: {e.detail}")
            return []
        return filter_messages(messages, q)

    def _mutate(self, operation: str, transform: Callable[[List[Message]], Tuple[List[Message], T]]) -> T:
        with self._lock:
            messages = self.storage.load()
            new_messages, outcome = transform(messages)
            self.storage.store(new_messages)
        logger.debug(f"{operation}: {len(messages)} -> {len(new_messages)} messages")
        return outcome

    def create(self, name: Optional[str], message: Optional[str]) -> Message:
        validate_create(name, message)
        created = self._mutate("create", lambda msgs: create_message(msgs, name, message))
        logger.info(f"Message created: id={created.id}, name={name}")
        return created

    def edit(self, message_id: Optional[str], name: Optional[str], message: Optional[str]) -> Message:
        validate_edit(message_id, name, message)
        updated = self._mutate("edit", lambda msgs: edit_message(msgs, message_id, name, message))
        logger.info(f"Message edited: id={message_id}")
        return updated

    def delete(self, message_id: Optional[str], name: Optional[str]) -> None:
        validate_delete(message_id, name)
        self._mutate("delete", lambda msgs: (delete_message(msgs, message_id, name), None))
        logger.info(f"Message deleted: id={message_id}")

    def toggle_reaction(
        self,
        message_id: Optional[str],
        reaction: Optional[str],
        user_name: Optional[str],
    ) -> Reactions:
        validate_reaction(message_id, reaction, user_name)
        reactions = self._mutate(
            "react", lambda msgs: toggle_reaction(msgs, message_id, reaction, user_name)
        )
        logger.info(f"Reaction toggled: id={message_id}, reaction={reaction}, user={user_name}")
        return reactions

    def clear(self) -> None:
        with self._lock:
            self.storage.store(clear_messages())
        logger.warning("All messages cleared")
