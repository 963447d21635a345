import pytest

from joshgpt_core.domain.exceptions import BusinessError
from joshgpt_core.domain.models import TraceEvent
from joshgpt_core.infrastructure.storage.json_store import DEFAULT_TITLE, JsonSessionStore, derive_title


def test_json_store_create_and_messages(tmp_path):
    root = tmp_path / ".storage"
    store = JsonSessionStore(root=root)
    session = store.ensure_active_session()
    assert session.title == DEFAULT_TITLE
    assert store.ensure_active_session().id == session.id

    store.append_message(session.id, "user", "  list   the files  ")
    store.append_message(session.id, "assistant", "a.txt")
    store.append_trace_events(session.id, [TraceEvent(timestamp="t", type="final", summary="done")])

    reloaded = JsonSessionStore(root=root)
    loaded = reloaded.get_session(session.id)
    assert loaded.title == "list the files"
    assert [m.role for m in loaded.messages] == ["user", "assistant"]
    assert loaded.trace_events == [{"timestamp": "t", "type": "final", "summary": "done", "details": ""}]
    assert reloaded.active_session_id == session.id


def test_title_capped():
    assert derive_title("x" * 60) == "x" * 48 + "..."
    assert derive_title("   ") == DEFAULT_TITLE


def test_new_sessions_first_and_delete_active(tmp_path):
    store = JsonSessionStore(root=tmp_path)
    first = store.create_session()
    second = store.create_session("second")
    assert [s.id for s in store.list_sessions()] == [second.id, first.id]
    assert store.active_session_id == second.id

    store.delete_session(second.id)
    assert store.active_session_id == first.id
    store.delete_session("missing")
    assert [s.id for s in store.list_sessions()] == [first.id]

    assert store.set_active_session("missing") is None


def test_append_to_unknown_session(tmp_path):
    store = JsonSessionStore(root=tmp_path)
    with pytest.raises(BusinessError) as exc:
        store.append_message("nope", "user", "hi")
    assert exc.value.code == "SESSION_NOT_FOUND"
