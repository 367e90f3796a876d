"""
Client for the Polygon proof generation API.

A burn on the child chain becomes provable once a checkpoint containing it has
been submitted to the root chain. Until then the API answers 400 (or 404);
once checkpointed it answers 200 with the exit payload in ``result``.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import requests

from polbridge.config import (
    DEFAULT_EXIT_EVENT_SIGNATURE,
    DEFAULT_MAX_POLL_ATTEMPTS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_PROOF_API_URL,
    DEFAULT_PROOF_NETWORK,
)
from polbridge.exceptions import CheckpointTimeoutError, ProofServiceError
from polbridge.models import CheckpointProof, CheckpointStatus, ProofLookup, normalize_tx_hash

logger = logging.getLogger(__name__)

PENDING_STATUSES = frozenset({400, 404})


def build_proof_url(base_url: str, network: str, tx_hash: str, event_signature: str) -> str:
    return (
        f"{base_url.rstrip('/')}/{network}/exit-payload/{normalize_tx_hash(tx_hash)}"
        f"?eventSignature={event_signature}"
    )


class ProofServiceClient:
    """Looks up exit payloads keyed by burn transaction hash."""

    def __init__(
        self,
        base_url: str = DEFAULT_PROOF_API_URL,
        network: str = DEFAULT_PROOF_NETWORK,
        event_signature: str = DEFAULT_EXIT_EVENT_SIGNATURE,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.network = network
        self.event_signature = event_signature
        self.timeout = timeout
        self.session = session or requests.Session()

    def __enter__(self) -> "ProofServiceClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.session.close()

    def proof_url(self, tx_hash: str) -> str:
        return build_proof_url(self.base_url, self.network, tx_hash, self.event_signature)

    def _fetch(self, tx_hash: str) -> Optional[CheckpointProof]:
        """Query once. Returns None while not checkpointed.

        Raises:
            ProofServiceError: network failure, unexpected status, or malformed body
        """
        url = self.proof_url(tx_hash)
        logger.debug("Proof request: GET %s", url)
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ProofServiceError(f"Proof API request failed: {e}") from e

        logger.debug("Proof response: status=%d", response.status_code)
        if response.status_code in PENDING_STATUSES:
            return None
        if response.status_code != 200:
            raise ProofServiceError(
                f"Proof API returned status {response.status_code}", status_code=response.status_code
            )
        try:
            payload = response.json().get("result")
        except (ValueError, AttributeError) as e:
            raise ProofServiceError("Proof API returned a malformed body", status_code=200) from e
        if not isinstance(payload, str) or not payload:
            raise ProofServiceError("Proof API response has no result payload", status_code=200)
        proof = CheckpointProof(burn_tx_hash=normalize_tx_hash(tx_hash), payload=payload)
        try:
            decoded = proof.payload_bytes
        except ValueError as e:
            raise ProofServiceError("Proof API result is not a hex payload", status_code=200) from e
        if not decoded:
            raise ProofServiceError("Proof API response has no result payload", status_code=200)
        return proof

    def lookup(self, tx_hash: str) -> ProofLookup:
        """Single non-blocking checkpoint status check."""
        tx_hash = normalize_tx_hash(tx_hash)
        try:
            proof = self._fetch(tx_hash)
        except ProofServiceError as exc:
            return ProofLookup(
                tx_hash=tx_hash,
                status=CheckpointStatus.UNAVAILABLE,
                http_status=exc.status_code,
                error=exc.message,
            )
        if proof is None:
            return ProofLookup(tx_hash=tx_hash, status=CheckpointStatus.PENDING)
        return ProofLookup(tx_hash=tx_hash, status=CheckpointStatus.CHECKPOINTED, proof=proof, http_status=200)

    def poll_for_proof(
        self,
        tx_hash: str,
        *,
        interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
        on_attempt: Optional[Callable[[int, int, ProofLookup], None]] = None,
    ) -> CheckpointProof:
        """Block until the burn is checkpointed, sleeping ``interval`` between lookups.

        Only a 200 response ends the loop early; pending and transient failures
        are retried until ``max_attempts`` lookups have been made.

        Raises:
            CheckpointTimeoutError: no proof after ``max_attempts`` lookups
        """
        tx_hash = normalize_tx_hash(tx_hash)
        for attempt in range(1, max_attempts + 1):
            result = self.lookup(tx_hash)
            if on_attempt is not None:
                on_attempt(attempt, max_attempts, result)

            if result.checkpointed:
                logger.info(
                    "Burn checkpointed after %d attempt(s)",
                    attempt,
                    extra={"event": "proof.checkpointed", "tx_hash": tx_hash, "attempt": attempt},
                )
                return result.proof
            if result.status is CheckpointStatus.PENDING:
                logger.debug(
                    "Not checkpointed yet (attempt %d/%d)",
                    attempt,
                    max_attempts,
                    extra={"event": "proof.pending", "tx_hash": tx_hash, "attempt": attempt},
                )
            else:
                logger.warning(
                    "Proof lookup failed (attempt %d/%d): %s",
                    attempt,
                    max_attempts,
                    result.error,
                    extra={"event": "proof.unavailable", "tx_hash": tx_hash, "attempt": attempt},
                )

            if attempt < max_attempts:
                sleep(interval)

        logger.error(
            "Checkpoint timeout for %s",
            tx_hash,
            extra={"event": "proof.timeout", "tx_hash": tx_hash, "attempts": max_attempts},
        )
        raise CheckpointTimeoutError(tx_hash, max_attempts)


__all__ = ["ProofServiceClient", "PENDING_STATUSES", "build_proof_url"]
