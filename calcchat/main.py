import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from calcchat.config import settings
from calcchat.errors import (
    ChatError,
    NotFoundError,
    StorageError,
    UnauthorizedError,
    ValidationError,
)
from calcchat.logging_utils import RequestLoggingMiddleware, log_chat_data, setup_logging
from calcchat.metrics import get_metrics, get_metrics_content_type, record_chat_outcome
from calcchat.schemas import (
    CreateMessageRequest,
    EditMessageRequest,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    MessagesListResponse,
    ReactionRequest,
    ReactionsResponse,
    SuccessResponse,
)
from calcchat.storage import build_storage
from calcchat.store import MessageStore


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


_message_store: Optional[MessageStore] = None


def get_message_store() -> MessageStore:
    """
    Dependency returning the process-wide message store.
    One store per process so its lock serializes every mutation.
    """
    global _message_store
    if _message_store is None:
        _message_store = MessageStore(build_storage(settings))
    return _message_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: prepare the storage medium (data directory or table)
    """
    get_message_store().storage.init()
    yield


app = FastAPI(
    title="Calculator Chat API",
    description="Message board behind the calculator: a single shared chat document with polling sync",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Error Handling
# =============================================================================

RESULT_BY_ERROR = {
    ValidationError: "validation_error",
    NotFoundError: "not_found",
    UnauthorizedError: "unauthorized",
    StorageError: "storage_error",
}

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing required fields"},
    500: {"model": ErrorResponse, "description": "Storage failure"},
}

OWNED_ERROR_RESPONSES = {
    **ERROR_RESPONSES,
    403: {"model": ErrorResponse, "description": "Name does not match the message author"},
    404: {"model": ErrorResponse, "description": "Message not found"},
}


def _error_response(
    request: Request,
    operation: str,
    exc: ChatError,
    storage_detail: str,
    message_id: Optional[str] = None,
) -> JSONResponse:
    """
    Convert a ChatError into an {"error": ...} response.
    Storage failures are logged with detail but answered with a generic text.
    """
    result = RESULT_BY_ERROR.get(type(exc), "storage_error")
    record_chat_outcome(operation, result)
    log_chat_data(request, operation=operation, message_id=message_id, result=result)

    if isinstance(exc, StorageError):
        logger.error(f"{operation} failed: {exc.detail}")
        detail = storage_detail
    else:
        logger.info(f"{operation} rejected: {exc.detail}")
        detail = exc.detail

    return JSONResponse(status_code=exc.status_code, content={"error": detail})


def _ok(request: Request, operation: str, message_id: Optional[str] = None) -> None:
    record_chat_outcome(operation, "ok")
    log_chat_data(request, operation=operation, message_id=message_id, result="ok")


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies are user-correctable: answer 400 like a missing field."""
    logger.info(f"Invalid request body on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request body"},
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse, response_model_exclude_none=True)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse, response_model_exclude_none=True)
async def health_ready(
    response: Response,
    store: MessageStore = Depends(get_message_store),
) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the storage adapter is reachable.
    Otherwise returns 503 (Service Unavailable).
    """
    if not store.storage.ping():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Storage not reachable"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Chat Routes
# =============================================================================

@app.get(
    "/api/chat",
    response_model=MessagesListResponse,
    response_model_exclude_none=True,
)
async def list_messages(
    request: Request,
    q: Annotated[str | None, Query(description="Case-insensitive search in message text or name")] = None,
    store: MessageStore = Depends(get_message_store),
) -> MessagesListResponse:
    """
    Return the whole message list in display order.

    Polling clients call this on a fixed interval and diff the result
    against their previous snapshot. A storage read failure yields an
    empty list rather than an error.
    """
    messages = store.list_messages(q)
    logger.debug(f"GET /api/chat: returned {len(messages)} messages (q={q})")
    _ok(request, "list")
    return MessagesListResponse(messages=messages)


@app.post(
    "/api/chat",
    response_model=MessageResponse,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
)
async def create_message(
    request: Request,
    body: CreateMessageRequest,
    store: MessageStore = Depends(get_message_store),
):
    """
    Post a new message.

    Body:
        - name: author display name
        - message: message text
    """
    try:
        created = store.create(body.name, body.message)
    except ChatError as e:
        return _error_response(request, "create", e, "Failed to save message")

    _ok(request, "create", created.id)
    return MessageResponse(message=created)


@app.patch(
    "/api/chat",
    response_model=MessageResponse,
    response_model_exclude_none=True,
    responses=OWNED_ERROR_RESPONSES,
)
async def edit_message(
    request: Request,
    body: EditMessageRequest,
    store: MessageStore = Depends(get_message_store),
):
    """
    Edit the text of a message. Only the author (same name) may edit.

    Body:
        - id: message id
        - message: new text
        - name: author display name
    """
    try:
        updated = store.edit(body.id, body.name, body.message)
    except ChatError as e:
        return _error_response(request, "edit", e, "Failed to update message", body.id)

    _ok(request, "edit", updated.id)
    return MessageResponse(message=updated)


@app.delete(
    "/api/chat",
    response_model=SuccessResponse,
    response_model_exclude_none=True,
    responses=OWNED_ERROR_RESPONSES,
)
async def delete_message(
    request: Request,
    message_id: Annotated[str | None, Query(alias="id", description="Message id")] = None,
    name: Annotated[str | None, Query(description="Author display name")] = None,
    store: MessageStore = Depends(get_message_store),
):
    """
    Delete a message. Only the author (same name) may delete.
    """
    try:
        store.delete(message_id, name)
    except ChatError as e:
        return _error_response(request, "delete", e, "Failed to delete message", message_id)

    _ok(request, "delete", message_id)
    return SuccessResponse()


@app.put(
    "/api/chat",
    response_model=SuccessResponse,
    response_model_exclude_none=True,
    responses={500: ERROR_RESPONSES[500]},
)
async def clear_messages(
    request: Request,
    store: MessageStore = Depends(get_message_store),
):
    """
    Remove every message.

    There is no ownership check here, unlike edit and delete: any caller
    may clear the board.
    """
    try:
        store.clear()
    except ChatError as e:
        return _error_response(request, "clear", e, "Failed to clear messages")

    _ok(request, "clear")
    return SuccessResponse(message="All messages cleared")


@app.post(
    "/api/chat/reactions",
    response_model=ReactionsResponse,
    responses={
        **ERROR_RESPONSES,
        404: OWNED_ERROR_RESPONSES[404],
    },
)
async def toggle_reaction(
    request: Request,
    body: ReactionRequest,
    store: MessageStore = Depends(get_message_store),
):
    """
    Toggle a reaction: adds userName under reaction, or removes it if the
    user already reacted with that symbol. Any user may react to any message.

    Body:
        - messageId: message id
        - reaction: reaction symbol (e.g. an emoji)
        - userName: reacting user's display name
    """
    try:
        reactions = store.toggle_reaction(body.message_id, body.reaction, body.user_name)
    except ChatError as e:
        return _error_response(request, "react", e, "Failed to update reaction", body.message_id)

    _ok(request, "react", body.message_id)
    return ReactionsResponse(reactions=reactions)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.

    Returns metrics in Prometheus text exposition format including:
    - http_requests_total: Total HTTP requests by method, path, status
    - chat_operations_total: Chat outcomes by operation and result
    - request_latency_seconds: Request latency histogram
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
