# crypto_box.py - pluggable crypto capabilities: HMAC, secure random, PRNG seeding
import logging
import os
import random
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import hmac as crypto_hmac

from errors import DerivationError, DigestUnsupported, RandomnessUnavailable
from secret_buffer import SecretBuffer

logger = logging.getLogger(__name__)

_DIGESTS = {
    "md5": hashes.MD5,
    "sha1": hashes.SHA1,
    "sha224": hashes.SHA224,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}

# scratch size callers must allow for one HMAC output (SHA512)
MAX_HMAC_LENGTH = 64


def resolve_digest(digest_name: str) -> hashes.HashAlgorithm:
    """Map "SHA1", "sha-256", "md5"... to a cryptography hash instance."""
    key = digest_name.lower().replace("-", "").replace("_", "")
    try:
        return _DIGESTS[key]()
    except KeyError:
        raise DigestUnsupported(digest_name) from None


class HMACProvider(ABC):
    """HMAC capability the key schedule depends on."""

    max_hmac_length: int = MAX_HMAC_LENGTH

    @abstractmethod
    def hmac(self, digest_name: str, secret: bytes, data: bytes) -> bytes: ...


class CryptographyHMAC(HMACProvider):
    """Default backend on top of cryptography's OpenSSL bindings."""

    def hmac(self, digest_name: str, secret: bytes, data: bytes) -> bytes:
        algo = resolve_digest(digest_name)
        try:
            h = crypto_hmac.HMAC(bytes(secret), algo)
            h.update(bytes(data))
            out = h.finalize()
        except UnsupportedAlgorithm as exc:
            # e.g. MD5 refused by a FIPS-only OpenSSL
            raise DigestUnsupported(digest_name) from exc
        if len(out) > self.max_hmac_length:
            raise DerivationError(f"HMAC output of {len(out)} bytes exceeds {self.max_hmac_length}")
        return out


_default_hmac = CryptographyHMAC()


def default_hmac_provider() -> HMACProvider:
    return _default_hmac


class SecureRandom:
    """Secure random capability; `source` defaults to os.urandom."""

    def __init__(self, source: Optional[Callable[[int], bytes]] = None):
        self._source = source or os.urandom

    def safe_data(self, length: int) -> SecretBuffer:
        if length <= 0:
            raise ValueError(f"length must be > 0, got {length}")
        try:
            raw = self._source(length)
        except (OSError, NotImplementedError) as exc:
            raise RandomnessUnavailable(f"cannot read {length} random bytes: {exc}") from exc
        if len(raw) != length:
            raise RandomnessUnavailable(f"short random read: {len(raw)}/{length}")
        return SecretBuffer(raw)


class PRNGState(Enum):
    UNSEEDED = "unseeded"
    SEEDED = "seeded"


class SeedablePRNG:
    """
    Process PRNG with an explicit seeded marker. Seeded once at startup;
    later seeding attempts are refused.
    """

    def __init__(self):
        self._rng = random.Random()
        self._state = PRNGState.UNSEEDED
        self._lock = threading.Lock()

    @property
    def state(self) -> PRNGState:
        return self._state

    @property
    def is_seeded(self) -> bool:
        return self._state is PRNGState.SEEDED

    def seed(self, seed: bytes) -> bool:
        if not seed:
            logger.error("refusing to seed PRNG with an empty seed")
            return False
        with self._lock:
            if self._state is PRNGState.SEEDED:
                logger.warning("PRNG already seeded; ignoring re-seed")
                return False
            self._rng.seed(bytes(seed))
            self._state = PRNGState.SEEDED
        logger.debug("PRNG seeded with %d bytes", len(seed))
        return True

    def require_seeded(self) -> None:
        if not self.is_seeded:
            raise RandomnessUnavailable("PRNG used before prepare_random_number_generator()")

    @property
    def rng(self) -> random.Random:
        self.require_seeded()
        return self._rng


_default_prng = SeedablePRNG()


def default_prng() -> SeedablePRNG:
    return _default_prng


def prepare_random_number_generator(seed_length: int,
                                    random_source: Optional[SecureRandom] = None,
                                    prng: Optional[SeedablePRNG] = None) -> bool:
    """
    Seed the process PRNG from `seed_length` secure random bytes.
    Must run once, before any session keys are derived. Returns False when
    no entropy could be read (the PRNG is then left untouched).
    """
    source = random_source or SecureRandom()
    target = prng or default_prng()
    try:
        seed = source.safe_data(seed_length)
    except RandomnessUnavailable as exc:
        logger.error("secure random unavailable: %s", exc)
        return False
    with seed:
        return target.seed(seed.bytes)
