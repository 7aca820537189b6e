from __future__ import annotations

import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    region: str = "us-central1"
    timeout_sec: int = Field(default=300, gt=0, le=540)
    transaction_max_attempts: int = Field(default=5, ge=1)
    max_badges_per_review: int = Field(default=3, ge=0)
    message_preview_chars: int = Field(default=100, ge=4)
    profile_image_template: str = "profile_images/{uid}.jpg"
    # Firestore caps a write batch at 500 operations
    batch_size: int = Field(default=450, ge=1, le=500)
    reconcile_schedule: str = "every 24 hours"

    def profile_image_path(self, uid: str) -> str:
        return self.profile_image_template.format(uid=uid)


_ENV = {
    "region": "AIDLINK_REGION",
    "timeout_sec": "AIDLINK_TIMEOUT_SEC",
    "transaction_max_attempts": "AIDLINK_TXN_MAX_ATTEMPTS",
    "max_badges_per_review": "AIDLINK_MAX_BADGES",
    "message_preview_chars": "AIDLINK_PREVIEW_CHARS",
    "profile_image_template": "AIDLINK_PROFILE_IMAGE",
    "batch_size": "AIDLINK_BATCH_SIZE",
    "reconcile_schedule": "AIDLINK_RECONCILE_SCHEDULE",
}


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from AIDLINK_* environment variables; unset ones keep defaults."""
    env = os.environ if environ is None else environ
    values = {field: env[var] for field, var in _ENV.items() if env.get(var)}
    return Settings.model_validate(values)
