"""Deduplication key derivation."""

from __future__ import annotations

import uuid
from enum import Enum


class IdempotentStrategy(str, Enum):
    """How the deduplication key of a job is chosen."""

    # The service hashes (url, method, body, account); duplicates collapse.
    HASH = "hash"
    # The client mints a fresh key per compilation; duplicates are allowed
    # (polling, scheduled jobs, webhooks that must fire every time).
    UNIQUE = "unique"


def resolve_idempotent_key(explicit: str | None, strategy: IdempotentStrategy) -> str | None:
    """Pick the key for one compilation.

    An explicit key always wins. With ``UNIQUE`` a new random key is minted on
    every call, so compiling the same step twice yields two distinct jobs. With
    ``HASH`` the key is left out and the service derives it.
    """

    if explicit:
        return explicit
    if strategy is IdempotentStrategy.UNIQUE:
        return str(uuid.uuid4())
    return None
