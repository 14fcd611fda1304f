# prf.py - legacy dual-hash PRF (MD5 xor SHA1) used by the tunnel key schedule
"""
expand()  - P_hash: HMAC chain expansion of (secret, seed) to any length.
combine() - split the secret in two halves, expand one with MD5 and the other
            with SHA1 over label||seeds||session ids, XOR the results.

Output is consumed by the peer, so the byte layout here is a wire contract:
seed order, the odd-length split overlap and the XOR order must not change.
"""
import logging
from typing import Optional, Tuple, Union

from crypto_box import HMACProvider, default_hmac_provider
from errors import DerivationError
from secret_buffer import BytesLike, SecretBuffer, SecretView

logger = logging.getLogger(__name__)

Secret = Union[SecretBuffer, SecretView]


def _hmac(provider: HMACProvider, digest_name: str, secret: Secret, data: BytesLike) -> bytes:
    try:
        return provider.hmac(digest_name, bytes(secret), bytes(data))
    except DerivationError:
        raise
    except Exception as exc:
        raise DerivationError(f"HMAC-{digest_name} failed: {exc}") from exc


def expand(digest_name: str, secret: Secret, seed: BytesLike, output_length: int,
           provider: Optional[HMACProvider] = None) -> SecretBuffer:
    """
    P_hash(secret, seed) truncated to `output_length` bytes.

        chain = HMAC(secret, seed)
        repeat: out += HMAC(secret, chain || seed); chain = HMAC(secret, chain)
    """
    if output_length <= 0:
        raise ValueError(f"output_length must be > 0, got {output_length}")
    provider = provider or default_hmac_provider()

    out = SecretBuffer()
    chain = SecretBuffer(_hmac(provider, digest_name, secret, seed))
    try:
        while len(out) < output_length:
            with chain.appending(seed) as data:
                out.append(_hmac(provider, digest_name, secret, data))
            following = SecretBuffer(_hmac(provider, digest_name, secret, chain))
            chain.release()
            chain = following
        return out.with_offset(0, output_length).to_buffer()
    finally:
        chain.release()
        out.release()


def split_secret(secret: Secret) -> Tuple[SecretView, SecretView]:
    """
    Two halves of `secret`, each of ceil(n/2) bytes. For odd n they share the
    middle byte at index n // 2.
    """
    n = len(secret)
    half = n // 2
    half_ext = half + (n & 1)
    return secret.with_offset(0, half_ext), secret.with_offset(half, half_ext)


def build_seed(label: BytesLike, seed_a: BytesLike, seed_b: BytesLike,
               session_id_a: Optional[bytes] = None,
               session_id_b: Optional[bytes] = None) -> SecretBuffer:
    seed = SecretBuffer(label)
    seed.append(seed_a)
    seed.append(seed_b)
    if session_id_a is not None:
        seed.append(session_id_a)
    if session_id_b is not None:
        seed.append(session_id_b)
    return seed


def combine(label: BytesLike, secret: Union[Secret, bytes], seed_a: BytesLike, seed_b: BytesLike,
            session_id_a: Optional[bytes], session_id_b: Optional[bytes], output_length: int,
            provider: Optional[HMACProvider] = None) -> SecretBuffer:
    """MD5/SHA1 split-secret PRF; returns `output_length` bytes."""
    if output_length <= 0:
        raise ValueError(f"output_length must be > 0, got {output_length}")

    owned = None
    if not isinstance(secret, (SecretBuffer, SecretView)):
        owned = secret = SecretBuffer(secret)

    seed = build_seed(label, seed_a, seed_b, session_id_a, session_id_b)
    secret1, secret2 = split_secret(secret)
    hash1 = hash2 = None
    try:
        hash1 = expand("md5", secret1, seed, output_length, provider)
        hash2 = expand("sha1", secret2, seed, output_length, provider)
        return hash1.xor(hash2)
    finally:
        for buf in (seed, hash1, hash2, owned):
            if buf is not None:
                buf.release()
