import pytest

from collabpad_server.store import DEFAULT_TITLE, IdentifierGenerationFailure, SessionStore


def test_create_allocates_unique_ids_and_empty_participants():
    store = SessionStore()
    first = store.create("Notes", "hello")
    second = store.create("Notes", "hello")
    assert first.id != second.id
    assert first.participants == set()
    assert (first.title, first.content) == ("Notes", "hello")
    assert store.get(first.id) is first


def test_create_defaults_title_and_content():
    session = SessionStore().create()
    assert session.title == DEFAULT_TITLE
    assert session.content == ""


def test_get_unknown_returns_none():
    assert SessionStore().get("missing") is None


def test_delete_is_idempotent():
    store = SessionStore()
    session = store.create("a", "b")
    store.delete(session.id)
    store.delete(session.id)
    store.delete("never-existed")
    assert session.id not in store
    assert len(store) == 0


def test_create_retries_on_collision():
    ids = iter(["dup", "dup", "fresh"])
    store = SessionStore(id_factory=lambda: next(ids))
    assert store.create().id == "dup"
    assert store.create().id == "fresh"


def test_create_gives_up_after_repeated_collisions():
    store = SessionStore(id_factory=lambda: "same")
    store.create()
    with pytest.raises(IdentifierGenerationFailure):
        store.create()
    assert len(store) == 1


def test_create_wraps_generator_errors():
    def broken():
        raise OSError("no entropy")

    with pytest.raises(IdentifierGenerationFailure):
        SessionStore(id_factory=broken).create()


def test_default_ids_are_share_link_safe():
    store = SessionStore()
    for _ in range(5):
        assert set(store.create().id) <= set("0123456789abcdef-")
