import json

import pytest

from collabpad_server.protocol import JsonLineFramer, ProtocolError, encode_message, make_event


def test_framer_splits_lines_across_chunks():
    framer = JsonLineFramer()
    assert framer.feed(b'{"op":"join-session","sess') == []
    messages = framer.feed(b'ionId":"abc"}\n{"op":"ping"}\n')
    assert messages == [{"op": "join-session", "sessionId": "abc"}, {"op": "ping"}]


def test_framer_skips_blank_lines():
    framer = JsonLineFramer()
    assert framer.feed(b'\n  \n{"op":"ping"}\n') == [{"op": "ping"}]


def test_framer_rejects_bad_json():
    framer = JsonLineFramer()
    with pytest.raises(ProtocolError):
        framer.feed(b"{not json}\n")


def test_framer_rejects_oversized_partial_message():
    framer = JsonLineFramer(max_message_bytes=16)
    with pytest.raises(ProtocolError):
        framer.feed(b'{"content":"' + b"x" * 32)


def test_framer_accepts_large_batch_of_complete_lines():
    framer = JsonLineFramer(max_message_bytes=64)
    chunk = b'{"op":"ping"}\n' * 20
    assert len(framer.feed(chunk)) == 20


def test_encode_message_is_single_utf8_line():
    data = encode_message(make_event("title-update", title="메모", userId="C-1"))
    assert data.endswith(b"\n")
    assert data.count(b"\n") == 1
    assert json.loads(data) == {"ev": "title-update", "title": "메모", "userId": "C-1"}


def test_encode_message_rejects_unserializable():
    with pytest.raises(ProtocolError):
        encode_message({"ev": "x", "bad": object()})
