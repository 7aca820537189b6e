from conftest import ALICE, HANK, HERA, help_request, profile
from request_logic import cleanup, paths
from request_logic.client import hide_chat, send_message
from request_logic.config import Settings


def test_deleting_request_removes_everything_under_it(seeded, act, dispatcher):
    act("r1", "make_offer", HERA)
    act("r1", "accept_offer", ALICE, helperId=HANK)
    send_message(seeded, "r1", HANK, "Hello")
    dispatcher.run_until_idle()
    seeded.set(paths.offer("r1", HERA), {"helperId": HERA, "status": "pending"})  # left behind
    dispatcher.run_until_idle()

    seeded.delete(paths.request("r1"))
    dispatcher.run_until_idle()

    assert seeded.list(paths.offers("r1")) == []
    assert seeded.list(paths.actions("r1")) == []
    assert seeded.list(paths.messages("r1")) == []
    assert not seeded.get(paths.chat("r1")).exists
    assert seeded.get(paths.user(ALICE)).get("requestsPosted") == 0


def test_deleting_request_without_chat(seeded, dispatcher):
    seeded.delete(paths.request("r1"))
    dispatcher.run_until_idle()
    assert seeded.get(paths.user(ALICE)).get("requestsPosted") == 0


def test_user_deletion_cascades(seeded, act, dispatcher, identity, blobs):
    # Bob's request with an offer from Alice, and a finished job Alice reviewed
    seeded.set(paths.user("bob"), profile("Bob"))
    seeded.set(paths.request("r2"), help_request(owner="bob", owner_name="Bob"))
    dispatcher.run_until_idle()
    act("r2", "make_offer", ALICE)
    act("r1", "accept_offer", ALICE, helperId=HANK)
    act("r1", "mark_complete", HANK)
    act("r1", "confirm_complete", ALICE)
    seeded.set(
        f"{paths.REVIEWS}/rv1",
        {"requestId": "r1", "reviewerId": ALICE, "revieweeId": HANK, "badges": ["skilled"]},
    )
    dispatcher.run_until_idle()
    assert seeded.get(paths.request("r2")).get("offerCount") == 1

    seeded.delete(paths.user(ALICE))
    dispatcher.run_until_idle()

    assert identity.deleted == [ALICE]
    assert blobs.deleted == [f"profile_images/{ALICE}.jpg"]
    assert not seeded.get(paths.request("r1")).exists
    assert not seeded.get(paths.chat("r1")).exists
    assert seeded.list(paths.messages("r1")) == []
    assert seeded.list(paths.actions("r1")) == []
    assert seeded.list(paths.offers("r2")) == []
    assert seeded.get(paths.request("r2")).get("offerCount") == 0
    assert not seeded.get(f"{paths.REVIEWS}/rv1").exists
    # what others earned stays
    assert seeded.get(paths.user(HANK)).get("trustBadges") == {"skilled": 1}
    assert seeded.get(paths.user(HANK)).get("helpsCompleted") == 1


def test_user_deletion_tolerates_missing_auth_and_image(store, identity, blobs, settings):
    identity.known.clear()
    blobs.files.clear()
    store.set(paths.request("r1"), help_request(owner="ghost"))
    assert cleanup.cleanup_user(store, identity, blobs, "ghost", settings) == 1
    assert not store.get(paths.request("r1")).exists


def test_user_deletion_respects_batch_size(store, identity, blobs):
    for i in range(7):
        store.set(paths.request(f"r{i}"), help_request(owner="ghost"))
    assert cleanup.cleanup_user(store, identity, blobs, "ghost", Settings(batch_size=3)) == 7
    assert store.list(paths.REQUESTS) == []


def test_chat_hard_deleted_once_everyone_hid_it(seeded, act, dispatcher):
    act("r1", "accept_offer", ALICE, helperId=HANK)
    send_message(seeded, "r1", ALICE, "Thanks!")
    dispatcher.run_until_idle()

    hide_chat(seeded, "r1", ALICE)
    dispatcher.run_until_idle()
    assert seeded.get(paths.chat("r1")).get("deletedBy") == [ALICE]
    assert len(seeded.list(paths.messages("r1"))) == 2

    hide_chat(seeded, "r1", ALICE)  # hiding twice counts once
    dispatcher.run_until_idle()
    assert seeded.get(paths.chat("r1")).exists

    hide_chat(seeded, "r1", HANK)
    dispatcher.run_until_idle()
    assert not seeded.get(paths.chat("r1")).exists
    assert seeded.list(paths.messages("r1")) == []
    # the request itself is untouched
    assert seeded.get(paths.request("r1")).get("status") == "in_progress"


def test_hard_delete_needs_both_fields(store, settings):
    store.set(paths.chat("c1"), {"participants": ["a", "b"]})
    assert not cleanup.hard_delete_if_abandoned(store, "c1", {"participants": ["a", "b"]}, settings)
    assert not cleanup.hard_delete_if_abandoned(store, "c1", {"deletedBy": ["a", "b"]}, settings)
    assert not cleanup.hard_delete_if_abandoned(store, "c1", None, settings)
    assert store.get(paths.chat("c1")).exists
    assert cleanup.hard_delete_if_abandoned(
        store, "c1", {"participants": ["a", "b"], "deletedBy": ["b", "a"]}, settings
    )
    assert not store.get(paths.chat("c1")).exists
