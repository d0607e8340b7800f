"""
Service configuration, read from the environment.

The webhook secret is the only value required at startup. Data store
credentials are read by db.client when the Supabase client is first created.
"""

import os
from dataclasses import dataclass
from functools import lru_cache

from .errors import ConfigurationError


REPLAY_STORES = ("memory", "postgres")


@dataclass(frozen=True)
class Settings:
    webhook_secret: str
    replay_store: str = "memory"
    free_plan_name: str = "free"

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables with defaults."""
        webhook_secret = os.environ.get("STRIPE_WEBHOOK_SECRET")
        if not webhook_secret:
            raise ConfigurationError("STRIPE_WEBHOOK_SECRET must be set")

        replay_store = os.environ.get("REPLAY_STORE", "memory").lower()
        if replay_store not in REPLAY_STORES:
            raise ConfigurationError(
                f"REPLAY_STORE must be one of {', '.join(REPLAY_STORES)}, got {replay_store!r}"
            )

        return cls(
            webhook_secret=webhook_secret,
            replay_store=replay_store,
            free_plan_name=os.environ.get("FREE_PLAN_NAME", "free"),
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
