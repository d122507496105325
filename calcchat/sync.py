"""
Polling synchronization for chat clients.

There is no push channel. A client calls GET /api/chat on a fixed interval,
receives the whole message list and diffs it against what it saw last time:

- SyncState tracks the last tail id and the ids of the previous snapshot,
  and turns each snapshot into a PollUpdate (which messages are new).
- should_scroll_to_end / is_near_end encode the auto-scroll policy: a reader
  who has scrolled up is not pulled to the end when new messages arrive.
- ChatClient wraps every HTTP operation with httpx.
- ChatPoller runs the fixed-cadence poll loop.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Set

import httpx

from calcchat.config import settings
from calcchat.schemas import Message, MessagesListResponse

logger = logging.getLogger(__name__)

# Distance from the end (in pixels) still treated as "at the end"
NEAR_END_THRESHOLD = 100


# =============================================================================
# Snapshot Diffing
# =============================================================================

@dataclass
class PollUpdate:
    """Result of applying one poll snapshot."""
    messages: List[Message]
    new_messages: List[Message] = field(default_factory=list)
    has_new: bool = False
    initial: bool = False

    @property
    def tail_id(self) -> Optional[str]:
        return self.messages[-1].id if self.messages else None


class SyncState:
    """
    Client-side memory of the last observed snapshot.

    The first snapshot is the initial load: nothing in it is flagged as
    new. After that, a snapshot has new messages when its tail id
    changed and that tail was not part of the previous snapshot; the new
    messages are all those whose ids the previous snapshot lacked.
    """

    def __init__(self):
        self.last_tail_id: Optional[str] = None
        self.seen_ids: Set[str] = set()
        self.loaded = False

    def apply(self, messages: List[Message]) -> PollUpdate:
        ids = [m.id for m in messages]
        tail_id = ids[-1] if ids else None

        if not self.loaded:
            self.loaded = True
            update = PollUpdate(messages=messages, initial=True)
        else:
            has_new = (
                tail_id is not None
                and tail_id != self.last_tail_id
                and tail_id not in self.seen_ids
            )
            new_messages = [m for m in messages if m.id not in self.seen_ids] if has_new else []
            update = PollUpdate(messages=messages, new_messages=new_messages, has_new=has_new)

        self.last_tail_id = tail_id
        self.seen_ids = set(ids)
        return update


def is_near_end(scroll_height: float, scroll_top: float, client_height: float,
                threshold: float = NEAR_END_THRESHOLD) -> bool:
    """True when the viewport bottom is within `threshold` of the list end."""
    return scroll_height - scroll_top - client_height < threshold


def should_scroll_to_end(update: PollUpdate, at_end: bool, force: bool = False) -> bool:
    """
    Auto-scroll policy for a poll result.

    Scroll on the initial load and when forced (the user just sent or
    edited a message). Otherwise only when new messages arrived and the
    reader is already at the end.
    """
    if force or update.initial:
        return True
    return update.has_new and at_end


# =============================================================================
# HTTP Client
# =============================================================================

class ChatAPIError(Exception):
    """Error response from the chat API."""

    def __init__(self, status_code: int, error: str):
        super().__init__(f"{status_code}: {error}")
        self.status_code = status_code
        self.error = error


class ChatClient:
    """
    Thin client over the chat HTTP contract.

    Accepts any httpx.Client, so a FastAPI TestClient can be passed in.
    """

    def __init__(self, base_url: Optional[str] = None, http: Optional[httpx.Client] = None,
                 timeout: float = 10.0):
        self.http = http or httpx.Client(base_url=base_url or settings.CHAT_API_URL, timeout=timeout)

    def close(self) -> None:
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _json(self, response: httpx.Response) -> dict:
        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = None
            error = body.get("error", response.reason_phrase) if isinstance(body, dict) else response.reason_phrase
            raise ChatAPIError(response.status_code, error)
        return response.json()

    def list_messages(self, q: Optional[str] = None) -> List[Message]:
        params = {"q": q} if q else None
        data = self._json(self.http.get("/api/chat", params=params))
        return MessagesListResponse.model_validate(data).messages

    def send(self, name: str, message: str) -> Message:
        data = self._json(self.http.post("/api/chat", json={"name": name, "message": message}))
        return Message.model_validate(data["message"])

    def edit(self, message_id: str, name: str, message: str) -> Message:
        data = self._json(
            self.http.patch("/api/chat", json={"id": message_id, "name": name, "message": message})
        )
        return Message.model_validate(data["message"])

    def delete(self, message_id: str, name: str) -> None:
        self._json(self.http.delete("/api/chat", params={"id": message_id, "name": name}))

    def react(self, message_id: str, reaction: str, user_name: str) -> dict[str, list[str]]:
        data = self._json(
            self.http.post(
                "/api/chat/reactions",
                json={"messageId": message_id, "reaction": reaction, "userName": user_name},
            )
        )
        return data["reactions"]

    def clear(self) -> None:
        self._json(self.http.put("/api/chat"))


# =============================================================================
# Poll Loop
# =============================================================================

class ChatPoller:
    """
    Fixed-cadence poller.

    Every `interval` seconds fetches the full list, applies it to a
    SyncState and passes the PollUpdate to `on_update`. Failed polls are
    logged and retried on the next tick.
    """

    def __init__(
        self,
        client: ChatClient,
        on_update: Callable[[PollUpdate], None],
        interval: Optional[float] = None,
    ):
        self.client = client
        self.on_update = on_update
        self.interval = settings.POLL_INTERVAL_SECONDS if interval is None else interval
        self.state = SyncState()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll_once(self) -> Optional[PollUpdate]:
        try:
            messages = self.client.list_messages()
        except (httpx.HTTPError, ChatAPIError) as e:
            logger.error(f"Error fetching messages: {e}")
            return None
        except ValueError as e:
            # Non-JSON body or a document that does not match the schema
            logger.error(f"Malformed message list from server: {e}")
            return None

        update = self.state.apply(messages)
        if update.has_new:
            logger.debug(f"{len(update.new_messages)} new messages, tail={update.tail_id}")
        self.on_update(update)
        return update

    def run(self) -> None:
        """Poll until stop() is called. Polls once immediately."""
        logger.info(f"Polling every {self.interval}s")
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("Poll update handler failed")
            self._stop.wait(self.interval)

    def start(self) -> threading.Thread:
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="chat-poller", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
