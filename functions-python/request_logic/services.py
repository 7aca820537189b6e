"""External capabilities the triggers call: push delivery, identity and blob deletion."""

from __future__ import annotations

from typing import Dict, Optional, Protocol

from firebase_admin import App, auth, messaging, storage
from firebase_functions import logger
from google.cloud.exceptions import NotFound


class Notifier(Protocol):
    def send(self, token: str, title: str, body: str, data: Dict[str, str]) -> None: ...


class IdentityProvider(Protocol):
    def delete_user(self, uid: str) -> bool: ...


class BlobStore(Protocol):
    def delete_file(self, path: str) -> bool: ...


class FcmNotifier:
    def __init__(self, app: Optional[App] = None):
        self._app = app

    def send(self, token: str, title: str, body: str, data: Dict[str, str]) -> None:
        message = messaging.Message(
            token=token,
            notification=messaging.Notification(title=title, body=body),
            data=data,
        )
        messaging.send(message, app=self._app)


class FirebaseIdentityProvider:
    def __init__(self, app: Optional[App] = None):
        self._app = app

    def delete_user(self, uid: str) -> bool:
        """Delete the auth identity. Returns False when it was already gone."""
        try:
            auth.delete_user(uid, app=self._app)
        except auth.UserNotFoundError:
            logger.warn(f"[CLEANUP] User {uid} not found in Auth (already deleted).", userId=uid)
            return False
        return True


class FirebaseBlobStore:
    def __init__(self, bucket_name: Optional[str] = None, app: Optional[App] = None):
        self._bucket_name = bucket_name
        self._app = app

    def delete_file(self, path: str) -> bool:
        """Delete a blob. A missing blob counts as deleted; returns False in that case."""
        blob = storage.bucket(self._bucket_name, app=self._app).blob(path)
        try:
            blob.delete()
        except NotFound:
            logger.warn(f"[CLEANUP] No file found at {path}. Skipping.", path=path)
            return False
        return True
