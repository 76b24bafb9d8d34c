"""
Private Key Export Guard.

Two-step export: the first `export-privatekey` issues a 6-digit challenge
code, the second presents it. Challenges live in a keyed store, one per
(platform, handle), and are removed on first match, on expiry or when a newer
challenge supersedes them. The export call is only ever made after an exact,
fresh match, and the code is consumed before the call so it cannot be
replayed even if the export fails.
"""

import asyncio
import hmac
import logging
import re
import secrets
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Tuple

from .contract import UserIdentity
from .errors import RemoteRejection, ValidationError, VerificationFailure, WalletNotFound
from .ledger_client import LedgerClient
from .orchestrator import TransactionOrchestrator

logger = logging.getLogger(__name__)

CODE_LENGTH = 6
CODE_RE = re.compile(r"^\d{6}$")
DEFAULT_TTL_SEC = 300.0
# Wrong guesses tolerated before the challenge is dropped.
MAX_VERIFY_ATTEMPTS = 3

ChallengeKey = Tuple[str, str]


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** CODE_LENGTH):0{CODE_LENGTH}d}"


def is_code_shaped(value: str) -> bool:
    return bool(CODE_RE.match(value or ""))


@dataclass
class VerificationChallenge:
    key: ChallengeKey
    code: str
    issued_at: float
    failed_attempts: int = 0

    def __repr__(self):
        return (
            f"VerificationChallenge(key={self.key!r}, code='******', "
            f"issued_at={self.issued_at!r}, failed_attempts={self.failed_attempts!r})"
        )


class ConsumeResult(str, Enum):
    MATCHED = "matched"
    MISMATCH = "mismatch"
    NOT_FOUND = "not_found"  # never issued, already used, superseded or expired


class ChallengeStore:
    """
    Keyed registry of live export challenges.

    Every read-modify-write happens under one lock with no awaits inside, so
    two concurrent verifications of the same code cannot both match. Expiry is
    enforced twice: a cancellable loop timer removes the entry, and `consume`
    re-checks the age so a late timer never lets a stale code through.

    A challenge is expired once its age reaches `ttl_sec` (the boundary itself
    counts as expired).
    """

    def __init__(
        self,
        ttl_sec: float = DEFAULT_TTL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._challenges: Dict[ChallengeKey, VerificationChallenge] = {}
        self._timers: Dict[ChallengeKey, asyncio.TimerHandle] = {}
        self._lock = threading.Lock()

    def issue(self, key: ChallengeKey, code: str) -> VerificationChallenge:
        """Store a new challenge, superseding any live one for the same key."""
        challenge = VerificationChallenge(key=key, code=code, issued_at=self._clock())
        with self._lock:
            self._cancel_timer(key)
            self._challenges[key] = challenge
            self._schedule_expiry(key, challenge)
        return challenge

    def consume(self, key: ChallengeKey, code: str) -> ConsumeResult:
        """Atomically compare and delete."""
        with self._lock:
            challenge = self._challenges.get(key)
            if challenge is None:
                return ConsumeResult.NOT_FOUND

            if self._is_expired(challenge):
                self._drop(key)
                return ConsumeResult.NOT_FOUND

            if hmac.compare_digest(challenge.code, code):
                self._drop(key)
                return ConsumeResult.MATCHED

            challenge.failed_attempts += 1
            if challenge.failed_attempts >= MAX_VERIFY_ATTEMPTS:
                logger.warning("Export challenge dropped after repeated wrong codes")
                self._drop(key)
            return ConsumeResult.MISMATCH

    def has_live(self, key: ChallengeKey) -> bool:
        with self._lock:
            challenge = self._challenges.get(key)
            return challenge is not None and not self._is_expired(challenge)

    def discard(self, key: ChallengeKey) -> None:
        with self._lock:
            self._drop(key)

    def clear(self) -> None:
        with self._lock:
            for key in list(self._challenges):
                self._drop(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._challenges)

    def _is_expired(self, challenge: VerificationChallenge) -> bool:
        return self._clock() - challenge.issued_at >= self.ttl_sec

    def _drop(self, key: ChallengeKey) -> None:
        # Caller holds the lock. Safe on absent keys.
        self._challenges.pop(key, None)
        self._cancel_timer(key)

    def _cancel_timer(self, key: ChallengeKey) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def _schedule_expiry(self, key: ChallengeKey, challenge: VerificationChallenge) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync callers): the age check in consume() still applies.
            return
        self._timers[key] = loop.call_later(self.ttl_sec, self._expire, key, challenge)

    def _expire(self, key: ChallengeKey, challenge: VerificationChallenge) -> None:
        with self._lock:
            # Only remove the challenge this timer was scheduled for.
            if self._challenges.get(key) is challenge:
                self._challenges.pop(key, None)
                logger.info(f"Export challenge expired for {key[0]} user")
            self._timers.pop(key, None)


class ExportGuard:
    def __init__(
        self,
        client: LedgerClient,
        orchestrator: TransactionOrchestrator,
        store: ChallengeStore,
        code_factory: Callable[[], str] = generate_code,
    ):
        self.client = client
        self.orchestrator = orchestrator
        self.store = store
        self._code_factory = code_factory

    @property
    def ttl_minutes(self) -> int:
        return max(1, int(self.store.ttl_sec // 60))

    async def request_challenge(self, identity: UserIdentity) -> str:
        """Issue a fresh code for a sender that has a wallet."""
        wallet = await self.orchestrator.resolve_wallet(identity)
        if not wallet:
            raise WalletNotFound(
                'You don\'t have a wallet yet. Use "register" to create one first.'
            )
        code = self._code_factory()
        self.store.issue(identity.key, code)
        logger.info(f"Export challenge issued for {identity.platform.value} user")
        return code

    async def verify_and_export(self, identity: UserIdentity, code: str) -> str:
        """
        Consume the code and export. Returns the secret.

        A malformed code is rejected without touching the store.
        """
        code = (code or "").strip()
        if not is_code_shaped(code):
            raise ValidationError("Verification code must be 6 digits.")

        result = self.store.consume(identity.key, code)
        if result is ConsumeResult.NOT_FOUND:
            raise VerificationFailure(
                'Verification code expired or not found. Send "export-privatekey" to get a new code.'
            )
        if result is ConsumeResult.MISMATCH:
            raise VerificationFailure("Invalid verification code.")

        exported = await self.client.export_private_key(identity.platform, identity.handle)
        if not exported.success or not exported.secret:
            raise RemoteRejection(f"Export failed: {exported.error or 'unknown error'}")
        logger.info(f"Private key exported for {identity.platform.value} user")
        return exported.secret
