"""End-to-end request journeys driven through the trigger pipeline."""

from conftest import ALICE, HANK
from request_logic import paths, triggers
from request_logic.store import DocumentEvent


def test_offer_accept_cancel_then_late_complete(seeded, act):
    action = act("r1", "make_offer", HANK)
    assert action["status"] == "processed"
    assert seeded.get(paths.request("r1")).get("offerCount") == 1

    act("r1", "accept_offer", ALICE, helperId=HANK)
    request = seeded.get(paths.request("r1")).to_dict()
    assert request["status"] == "in_progress"
    assert request["responderId"] == HANK
    assert request["offerCount"] == 0
    assert seeded.get(paths.chat("r1")).get("participants") == [ALICE, HANK]
    assert len(seeded.list(paths.messages("r1"))) == 1

    act("r1", "cancel_request", ALICE)
    request = seeded.get(paths.request("r1")).to_dict()
    assert request["status"] == "open"
    assert request["responderId"] is None
    assert seeded.get(paths.chat("r1")).get("requestStatus") == "open"
    assert len(seeded.list(paths.messages("r1"))) == 2

    # the helper's stale client still thinks the job is theirs
    late = act("r1", "mark_complete", HANK)
    assert late["status"] == "error"
    assert late["errorMessage"] == "Cannot mark complete. Current status: open."
    assert seeded.get(paths.request("r1")).get("status") == "open"


def test_complete_confirm_and_review_prompts(seeded, act, ctx, notifier):
    act("r1", "make_offer", HANK)
    act("r1", "accept_offer", ALICE, helperId=HANK)
    act("r1", "mark_complete", HANK)
    assert seeded.get(paths.request("r1")).get("status") == "pending_completion"

    actions_before = {s.id for s in seeded.list(paths.actions("r1"))}
    act("r1", "confirm_complete", ALICE)
    confirm_id = ({s.id for s in seeded.list(paths.actions("r1"))} - actions_before).pop()

    request = seeded.get(paths.request("r1")).to_dict()
    assert request["status"] == "completed"
    assert request["reviewStatus"] == {ALICE: "pending", HANK: "pending"}
    assert seeded.get(paths.user(HANK)).get("helpsCompleted") == 1
    assert seeded.get(paths.chat("r1")).get("archived") is True
    assert seeded.get(paths.chat("r1")).get("requestStatus") == "completed"
    assert sorted(n["token"] for n in notifier.sent) == ["tok-alice", "tok-hank"]

    # the platform delivers the confirm action and the status change a second time
    action_path = paths.action("r1", confirm_id)
    triggers.handle_request_action(
        ctx,
        DocumentEvent(action_path, None, seeded.get(action_path).to_dict(), {"requestId": "r1", "actionId": confirm_id}),
    )
    before = dict(request, status="pending_completion")
    triggers.on_request_completed(ctx, DocumentEvent(paths.request("r1"), before, request, {"requestId": "r1"}))

    assert seeded.get(paths.user(HANK)).get("helpsCompleted") == 1
    assert seeded.get(paths.request("r1")).get("reviewStatus") == {ALICE: "pending", HANK: "pending"}
    assert len(notifier.sent) == 2
