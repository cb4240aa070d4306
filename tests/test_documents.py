import pytest

from collabpad_server.documents import DocumentNotFound, DocumentStore, sanitize_filename


def test_sanitize_replaces_unsafe_characters():
    assert sanitize_filename("../etc/passwd") == "___etc_passwd"
    assert sanitize_filename("Meeting Notes-2024_v1") == "Meeting_Notes-2024_v1"


def test_save_load_roundtrip_keeps_newlines(tmp_path):
    store = DocumentStore(tmp_path)
    assert store.save("draft", "a\r\nb\n") == "draft"
    assert store.load("draft") == "a\r\nb\n"
    assert (tmp_path / "draft.txt").exists()


def test_save_overwrites_and_leaves_no_temp_files(tmp_path):
    store = DocumentStore(tmp_path)
    store.save("draft", "one")
    store.save("draft", "two")
    assert store.load("draft") == "two"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["draft.txt"]


def test_list_ignores_other_files(tmp_path):
    store = DocumentStore(tmp_path)
    store.save("b", "")
    store.save("a", "")
    (tmp_path / "notes.md").write_text("x")
    assert store.list() == ["a", "b"]


def test_missing_documents_raise(tmp_path):
    store = DocumentStore(tmp_path)
    with pytest.raises(DocumentNotFound):
        store.load("nope")
    with pytest.raises(DocumentNotFound):
        store.delete("nope")
