"""
Tests for calcchat.store.

Tests cover:
- Pure transforms do not mutate their input
- Ownership and existence checks
- Reaction toggle idempotence
- Id generation
- MessageStore read/write failure policy and serialized mutations
"""

import threading

import pytest

from calcchat.errors import NotFoundError, StorageError, UnauthorizedError, ValidationError
from calcchat.schemas import Message
from calcchat.store import (
    MessageStore,
    clear_messages,
    create_message,
    delete_message,
    edit_message,
    filter_messages,
    toggle_reaction,
)
from calcchat.utils import next_message_id


def make_message(message_id: str, name: str = "Al", text: str = "hi", **kwargs) -> Message:
    return Message(
        id=message_id,
        name=name,
        message=text,
        timestamp="2025-01-15T10:00:00.000Z",
        **kwargs,
    )


@pytest.fixture
def board():
    return [
        make_message("100", "Al", "one"),
        make_message("200", "Bo", "two", reactions={"👍": ["Al"]}),
        make_message("300", "Al", "three"),
    ]


class TestCreate:

    def test_appends_new_message(self, board):
        new_board, created = create_message(board, "Cy", "four")

        assert new_board[:3] == board
        assert new_board[-1] == created
        assert created.name == "Cy"
        assert created.reactions == {}
        assert created.edited is False
        assert created.edited_at is None

    def test_id_not_already_in_list(self, board):
        _, created = create_message(board, "Cy", "four")

        assert created.id not in {m.id for m in board}

    def test_input_list_untouched(self, board):
        before = [m.model_copy(deep=True) for m in board]

        create_message(board, "Cy", "four")

        assert board == before

    @pytest.mark.parametrize("name,text", [("", "x"), ("Al", ""), (None, "x"), ("Al", None)])
    def test_requires_name_and_message(self, board, name, text):
        with pytest.raises(ValidationError):
            create_message(board, name, text)


class TestEdit:

    def test_owner_edits_in_place(self, board):
        new_board, updated = edit_message(board, "200", "Bo", "dos")

        assert new_board[1] == updated
        assert updated.message == "dos"
        assert updated.edited is True
        assert updated.edited_at is not None
        assert updated.timestamp == board[1].timestamp
        assert updated.reactions == {"👍": ["Al"]}
        assert [m.id for m in new_board] == ["100", "200", "300"]
        assert board[1].message == "two"

    def test_other_author_unauthorized(self, board):
        with pytest.raises(UnauthorizedError):
            edit_message(board, "200", "Al", "dos")

    def test_unknown_id(self, board):
        with pytest.raises(NotFoundError):
            edit_message(board, "999", "Al", "x")

    def test_missing_fields(self, board):
        with pytest.raises(ValidationError):
            edit_message(board, "", "Al", "x")


class TestDelete:

    def test_owner_deletes(self, board):
        new_board = delete_message(board, "100", "Al")

        assert new_board == board[1:]

    def test_other_author_unauthorized(self, board):
        with pytest.raises(UnauthorizedError):
            delete_message(board, "100", "Bo")

    def test_unknown_id(self, board):
        with pytest.raises(NotFoundError):
            delete_message(board, "999", "Al")


class TestToggleReaction:

    def test_toggle_twice_restores_state(self, board):
        once, _ = toggle_reaction(board, "100", "🎉", "Bo")
        twice, reactions = toggle_reaction(once, "100", "🎉", "Bo")

        assert reactions == {}
        assert twice[0].reactions == board[0].reactions

    def test_toggle_existing_entry_off(self, board):
        new_board, reactions = toggle_reaction(board, "200", "👍", "Al")

        assert reactions == {}
        assert "👍" not in new_board[1].reactions
        assert board[1].reactions == {"👍": ["Al"]}

    def test_appends_in_order(self, board):
        new_board, reactions = toggle_reaction(board, "200", "👍", "Cy")

        assert reactions == {"👍": ["Al", "Cy"]}

    def test_unknown_id(self, board):
        with pytest.raises(NotFoundError):
            toggle_reaction(board, "999", "👍", "Bo")

    def test_missing_fields(self, board):
        with pytest.raises(ValidationError):
            toggle_reaction(board, "100", "", "Bo")


class TestListAndClear:

    def test_clear_is_empty(self):
        assert clear_messages() == []

    def test_filter_without_query(self, board):
        assert filter_messages(board) == board

    def test_filter_by_name(self, board):
        assert [m.id for m in filter_messages(board, "bo")] == ["200"]


class TestNextMessageId:

    def test_uses_clock(self):
        assert next_message_id(["100"], now_ms=5000) == "5000"

    def test_bumps_past_newest(self):
        assert next_message_id(["5000", "5001"], now_ms=5000) == "5002"

    def test_ignores_non_numeric_ids(self):
        assert next_message_id(["legacy-id"], now_ms=10) == "10"

    def test_ignores_non_decimal_digit_ids(self):
        # "²" (superscript two) passes str.isdigit() but not int()
        assert next_message_id(["²", "5"], now_ms=1) == "6"


class TestMessageStore:

    def test_create_then_list(self, store):
        created = store.create("Al", "hi")

        assert store.list_messages() == [created]

    def test_validation_before_storage(self, flaky_storage):
        """Test bad input is reported as ValidationError even if storage is down."""
        store = MessageStore(flaky_storage)
        flaky_storage.fail_load = True

        with pytest.raises(ValidationError):
            store.create("", "hi")

    def test_list_read_failure_returns_empty(self, flaky_storage):
        store = MessageStore(flaky_storage)
        store.create("Al", "hi")
        flaky_storage.fail_load = True

        assert store.list_messages() == []

    def test_mutation_read_failure_raises(self, flaky_storage):
        store = MessageStore(flaky_storage)
        store.create("Al", "hi")
        flaky_storage.fail_load = True

        with pytest.raises(StorageError):
            store.create("Bo", "yo")

    def test_failed_write_has_no_effect(self, flaky_storage):
        store = MessageStore(flaky_storage)
        created = store.create("Al", "hi")
        flaky_storage.fail_store = True

        with pytest.raises(StorageError):
            store.edit(created.id, "Al", "changed")

        flaky_storage.fail_store = False
        assert store.list_messages() == [created]

    def test_unauthorized_leaves_list_unchanged(self, store):
        created = store.create("Al", "hi")

        with pytest.raises(UnauthorizedError):
            store.delete(created.id, "Bo")

        assert store.list_messages() == [created]

    def test_clear_ignores_caller(self, store):
        store.create("Al", "one")
        store.create("Bo", "two")

        store.clear()

        assert store.list_messages() == []

    def test_concurrent_reactions_are_not_lost(self, store):
        """Test parallel toggles on different messages all land."""
        ids = [store.create("Al", f"msg {i}").id for i in range(8)]
        barrier = threading.Barrier(len(ids))

        def worker(message_id):
            barrier.wait()
            store.toggle_reaction(message_id, "👍", "Bo")

        threads = [threading.Thread(target=worker, args=(i,)) for i in ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(m.reactions == {"👍": ["Bo"]} for m in store.list_messages())
