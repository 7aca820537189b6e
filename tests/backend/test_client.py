import pytest

from conftest import ALICE, HANK, help_request
from request_logic import client, paths
from request_logic.dispatcher import Dispatcher
from request_logic.store import DocumentEvent, EventKind
from request_logic.triggers import TRIGGERS, Trigger, match_path


def test_append_action_has_no_status(store):
    action_id = client.append_action(store, "r1", "make_offer", HANK)
    doc = store.get(paths.action("r1", action_id)).to_dict()
    assert doc["type"] == "make_offer"
    assert doc["payload"] == {}
    assert "status" not in doc


def test_append_action_rejects_unknown_type(store):
    with pytest.raises(ValueError):
        client.append_action(store, "r1", "reject_completion", ALICE)


def test_system_sender_is_reserved(store):
    store.set(paths.chat("r1"), {"participants": [ALICE, HANK]})
    with pytest.raises(ValueError):
        client.send_message(store, "r1", "system", "spoofed")
    assert store.list(paths.messages("r1")) == []


def test_watch_user_chats_hides_deleted(store):
    store.set(paths.chat("r1"), {"participants": [ALICE, HANK], "deletedBy": [], "lastMessageTimestamp": 1})
    store.set(paths.chat("r2"), {"participants": [ALICE, "bob"], "deletedBy": [], "lastMessageTimestamp": 2})
    seen = []
    client.watch_user_chats(store, ALICE, lambda chats: seen.append([c.id for c in chats]))
    assert seen[-1] == ["r2", "r1"]

    client.hide_chat(store, "r2", ALICE)
    assert seen[-1] == ["r1"]


def test_watch_open_requests(store):
    seen = []
    client.watch_open_requests(store, lambda snaps: seen.append([s.id for s in snaps]))
    store.set(paths.request("r1"), help_request())
    store.set(paths.request("r2"), help_request(status="in_progress"))
    assert seen[-1] == ["r1"]


def test_watch_action_sees_outcome(seeded, act):
    action_id = client.append_action(seeded, "r1", "make_offer", HANK)
    outcomes = []
    client.watch_action(seeded, "r1", action_id, lambda snap: outcomes.append(snap.get("status")))
    act("r1", "make_offer", HANK)  # drains the queue, which includes our action
    assert outcomes[0] is None
    assert outcomes[-1] == "processed"


def test_match_path():
    assert match_path("requests/{requestId}/offers/{offerId}", "requests/r1/offers/hank") == {
        "requestId": "r1",
        "offerId": "hank",
    }
    assert match_path("requests/{requestId}", "requests/r1/offers/hank") is None
    assert match_path("chats/{chatId}", "requests/r1") is None


def test_trigger_kinds():
    created = DocumentEvent("requests/r1", None, {"status": "open"})
    deleted = DocumentEvent("requests/r1", {"status": "open"}, None)
    on_create = Trigger("c", "requests/{requestId}", EventKind.CREATED, lambda ctx, e: None)
    on_write = Trigger("w", "requests/{requestId}", EventKind.WRITTEN, lambda ctx, e: None)
    assert on_create.matches(created) == {"requestId": "r1"}
    assert on_create.matches(deleted) is None
    assert on_write.matches(deleted) == {"requestId": "r1"}


def test_every_cloud_function_is_registered():
    assert {t.name for t in TRIGGERS} == {
        "handle_request_action",
        "update_offer_count",
        "increment_requests_posted",
        "sync_request_status_to_chat",
        "on_request_completed",
        "cleanup_request_data",
        "cleanup_user_data",
        "handle_chat_deletion",
        "send_new_message_notification",
        "update_unread_count",
        "on_review_created",
    }


def test_failing_handler_does_not_stop_the_pipeline(store, ctx):
    calls = []

    def broken(ctx, event):
        raise RuntimeError("boom")

    triggers = [
        Trigger("broken", "things/{id}", EventKind.WRITTEN, broken),
        Trigger("ok", "things/{id}", EventKind.WRITTEN, lambda ctx, e: calls.append(e.params["id"])),
    ]
    dispatcher = Dispatcher(store, ctx, triggers)
    store.set("things/a", {"n": 1})
    store.set("things/b", {"n": 1})
    assert dispatcher.pending == 2
    assert dispatcher.run_until_idle() == 2
    assert calls == ["a", "b"]
    dispatcher.close()


def test_runaway_cascade_is_detected(store, ctx):
    def bump(ctx, event):
        ctx.store.update(event.path, {"n": event.after["n"] + 1})

    dispatcher = Dispatcher(store, ctx, [Trigger("bump", "loops/{id}", EventKind.WRITTEN, bump)])
    store.set("loops/a", {"n": 0})
    with pytest.raises(RuntimeError):
        dispatcher.run_until_idle(max_events=50)
    dispatcher.close()
