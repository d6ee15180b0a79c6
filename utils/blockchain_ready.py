"""Approval fingerprints with a sequence number, ready for later anchoring."""
from __future__ import annotations

import hashlib
import time

from flask import current_app

from models import BlockchainHash
from storage import store


def fingerprint(application_id: str, timestamp_ms: int | None = None) -> str:
    """SHA-256 of the application id plus the wall-clock time in milliseconds."""
    stamp = int(time.time() * 1000) if timestamp_ms is None else timestamp_ms
    return hashlib.sha256(f"{application_id}{stamp}".encode("utf-8")).hexdigest()


def record_anchor(application_id: str) -> BlockchainHash:
    existing = store.get_blockchain_hash(application_id)
    if existing:
        return existing
    with store.state.sequence_lock:
        block_number = store.count_blockchain_hashes() + 1
        anchor = store.create_blockchain_hash(application_id, fingerprint(application_id), block_number)
    current_app.logger.info(
        "Approval fingerprint recorded",
        extra={"application_id": application_id, "block_number": block_number},
    )
    return anchor
