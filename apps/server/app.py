"""Flask application providing Firebase-authenticated endpoints for AidLink clients.

Profiles can be read and updated, and request intents are queued as
actions whose outcome the client reads back later. When Firestore is
unavailable, an in-memory store is used which is suitable for tests and
local runs.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Dict, List, Optional

import firebase_admin
from firebase_admin import auth, firestore
from flask import (
    Flask,
    abort,
    current_app,
    g,
    jsonify,
    request,
)
from pydantic import BaseModel, Field, ValidationError

from request_logic import paths
from request_logic.client import append_action
from request_logic.memory_store import MemoryStore
from request_logic.models import ActionType
from request_logic.store import DocumentStore, FirestoreStore

app = Flask(__name__)

# ---------------------------------------------------------------------------
# Firebase / Firestore setup
# ---------------------------------------------------------------------------
try:
    firebase_admin.get_app()
except ValueError:  # pragma: no cover - only runs when not already initialised
    firebase_admin.initialize_app()

try:  # Attempt to obtain a Firestore client; fall back to memory if it fails.
    store: DocumentStore = FirestoreStore(firestore.client())
except Exception:  # pragma: no cover - Firestore may be missing during tests
    store = MemoryStore()


# ---------------------------------------------------------------------------
# Authentication decorator
# ---------------------------------------------------------------------------
def require_firebase_auth(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Verify the Firebase ID token from the Authorization header."""

    @wraps(fn)
    def wrapper(*args: Any, **kwargs: Any):
        if current_app.config.get("TESTING"):
            g.user = {"uid": "test-uid"}
            return fn(*args, **kwargs)

        header = request.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            abort(401)
        token = header.split(" ", 1)[1]
        try:
            decoded = auth.verify_id_token(token)
        except Exception:  # pragma: no cover - depends on firebase_admin internals
            abort(401)
        g.user = {"uid": decoded["uid"], "email": decoded.get("email")}
        return fn(*args, **kwargs)

    return wrapper


# ---------------------------------------------------------------------------
# Pydantic models for request bodies
# ---------------------------------------------------------------------------
class ProfileUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=80)
    photoUrl: str | None = None
    skills: List[str] | None = None
    area: str | None = None
    fcmToken: str | None = None


class ActionRequest(BaseModel):
    type: ActionType
    payload: Dict[str, Any] = Field(default_factory=dict)


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/api/v1/health")
def health() -> tuple[dict[str, str], int]:
    """Simple health-check endpoint."""
    return jsonify(status="ok"), 200


@app.get("/api/v1/users/me")
@require_firebase_auth
def get_me() -> tuple[Dict[str, Any], int]:
    """Return the current user's profile."""
    snap = store.get(paths.user(g.user["uid"]))
    return jsonify(_jsonable(snap.data or {})), 200


@app.put("/api/v1/users/me")
@require_firebase_auth
def update_me() -> tuple[Dict[str, Any], int]:
    """Update editable profile fields. Counters and badges are backend-owned."""
    try:
        data = ProfileUpdate.model_validate(request.json or {})
    except ValidationError as exc:
        return jsonify(error=exc.errors(include_url=False, include_context=False)), 400

    update = {k: v for k, v in data.model_dump().items() if v is not None}
    path = paths.user(g.user["uid"])
    store.set(path, update, merge=True)
    return jsonify(_jsonable(store.get(path).data)), 200


@app.post("/api/v1/requests/<request_id>/actions")
@require_firebase_auth
def post_action(request_id: str) -> tuple[Dict[str, Any], int]:
    """Queue an action for the backend; the outcome is read from the action later."""
    try:
        body = ActionRequest.model_validate(request.json or {})
    except ValidationError as exc:
        return jsonify(error=exc.errors(include_url=False, include_context=False)), 400
    if not store.get(paths.request(request_id)).exists:
        return jsonify(error="request not found"), 404

    action_id = append_action(store, request_id, body.type, g.user["uid"], body.payload)
    return jsonify(actionId=action_id, status="pending"), 202


@app.get("/api/v1/requests/<request_id>/actions/<action_id>")
@require_firebase_auth
def get_action(request_id: str, action_id: str) -> tuple[Dict[str, Any], int]:
    """Return an action so the caller can see whether it was processed."""
    snap = store.get(paths.action(request_id, action_id))
    if not snap.exists or snap.get("createdBy") != g.user["uid"]:
        return jsonify(error="action not found"), 404
    data = _jsonable(snap.data or {})
    data.setdefault("status", "pending")
    return jsonify(data), 200


if __name__ == "__main__":
    app.run(debug=True)
