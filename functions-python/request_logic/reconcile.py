"""
Periodic repair of state that the triggers only maintain best-effort.

- offers left behind when the follow-up cleanup after ``accept_offer``
  failed are removed from every request that is no longer open;
- ``requestsPosted`` is recomputed from the requests each user owns;
- ``helpsCompleted`` is only ever raised to the number of completed
  requests the user responded to, since deleted requests keep counting.
"""

from __future__ import annotations

from collections import Counter
from typing import Dict, List, Tuple

from firebase_functions import logger

from . import paths
from .models import RequestStatus, parse_status
from .store import DocumentStore, Snapshot, StoreTransaction, delete_in_batches


def sweep_stale_offers(store: DocumentStore, batch_size: int) -> int:
    stale: List[str] = []
    for request in store.list(paths.REQUESTS):
        if parse_status(request.get("status")) is RequestStatus.OPEN:
            continue
        stale.extend(s.path for s in store.list(paths.offers(request.id)))
    deleted = delete_in_batches(store, stale, batch_size)
    if deleted:
        logger.warn(f"[RECONCILE] Deleted {deleted} stale offers on requests that are no longer open.")
    return deleted


def _tally(requests: List[Snapshot]) -> Tuple[Counter, Counter]:
    posted = Counter(r.get("userId") for r in requests if r.get("userId"))
    completed = Counter(
        r.get("responderId")
        for r in requests
        if r.get("responderId") and parse_status(r.get("status")) is RequestStatus.COMPLETED
    )
    return posted, completed


def _drift(profile: Snapshot, posted: Counter, completed: Counter) -> Dict[str, int]:
    updates = {}
    if profile.get("requestsPosted") != posted.get(profile.id, 0):
        updates["requestsPosted"] = posted.get(profile.id, 0)
    if (profile.get("helpsCompleted") or 0) < completed.get(profile.id, 0):
        updates["helpsCompleted"] = completed[profile.id]
    return updates


def _repair(txn: StoreTransaction, profile_path: str) -> Dict[str, int]:
    # recount inside the transaction so a concurrent increment forces a retry
    profile = txn.get(profile_path)
    if not profile.exists:
        return {}
    updates = _drift(profile, *_tally(txn.list(paths.REQUESTS)))
    if updates:
        txn.update(profile_path, updates)
    return updates


def reconcile_user_counters(store: DocumentStore) -> int:
    """Returns the number of profiles corrected."""
    posted, completed = _tally(store.list(paths.REQUESTS))

    fixed = 0
    for profile in store.list(paths.USERS):
        if not _drift(profile, posted, completed):
            continue
        updates = store.run_transaction(lambda txn: _repair(txn, profile.path))
        if updates:
            logger.warn(f"[RECONCILE] Correcting counters for user {profile.id}", userId=profile.id, **updates)
            fixed += 1
    return fixed
