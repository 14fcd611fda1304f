# encryption_proxy.py - hands derived session keys to the data-channel cipher box
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hmac as crypto_hmac
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from crypto_box import resolve_digest
from errors import HMACVerificationFailed, TunnelError
from key_schedule import HandshakeSecrets, KeySchedule
from secret_buffer import BytesLike, SecretBuffer

logger = logging.getLogger(__name__)

# cipher name -> key size in bytes
_CIPHERS = {
    "aes-128-cbc": 16,
    "aes-192-cbc": 24,
    "aes-256-cbc": 32,
}
_BLOCK = 16


def _cipher_key_size(name: str) -> int:
    try:
        return _CIPHERS[name.lower()]
    except KeyError:
        raise ValueError(f"unsupported cipher: {name!r}") from None


class Encrypter:
    """Frames a packet as HMAC(iv || ct) || iv || ct."""

    def __init__(self, cipher_key: SecretBuffer, hmac_key: SecretBuffer, digest_name: str):
        self._cipher_key = cipher_key
        self._hmac_key = hmac_key
        self._digest = resolve_digest(digest_name)

    @property
    def overhead(self) -> int:
        """Worst-case bytes added to a packet."""
        return self._digest.digest_size + _BLOCK + _BLOCK

    def encrypt(self, packet: bytes) -> bytes:
        iv = os.urandom(_BLOCK)
        padder = padding.PKCS7(_BLOCK * 8).padder()
        padded = padder.update(packet) + padder.finalize()
        enc = Cipher(algorithms.AES(self._cipher_key.bytes), modes.CBC(iv)).encryptor()
        ct = enc.update(padded) + enc.finalize()
        h = crypto_hmac.HMAC(self._hmac_key.bytes, self._digest)
        h.update(iv + ct)
        return h.finalize() + iv + ct


class Decrypter:
    def __init__(self, cipher_key: SecretBuffer, hmac_key: SecretBuffer, digest_name: str):
        self._cipher_key = cipher_key
        self._hmac_key = hmac_key
        self._digest = resolve_digest(digest_name)

    def decrypt(self, packet: bytes) -> bytes:
        tag_len = self._digest.digest_size
        if len(packet) < tag_len + 2 * _BLOCK or (len(packet) - tag_len) % _BLOCK:
            raise HMACVerificationFailed(f"malformed packet of {len(packet)} bytes")
        tag, body = packet[:tag_len], packet[tag_len:]
        h = crypto_hmac.HMAC(self._hmac_key.bytes, self._digest)
        h.update(body)
        try:
            h.verify(tag)
        except InvalidSignature as exc:
            raise HMACVerificationFailed("packet HMAC mismatch") from exc

        iv, ct = body[:_BLOCK], body[_BLOCK:]
        dec = Cipher(algorithms.AES(self._cipher_key.bytes), modes.CBC(iv)).decryptor()
        padded = dec.update(ct) + dec.finalize()
        unpadder = padding.PKCS7(_BLOCK * 8).unpadder()
        try:
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as exc:
            raise TunnelError(f"bad padding in authenticated packet: {exc}") from exc


class CipherBox:
    """Owns copies of the data-channel keys, trimmed to the algorithm sizes."""

    def __init__(self, cipher_algorithm: str, digest_algorithm: str):
        self.cipher_algorithm = cipher_algorithm
        self.digest_algorithm = digest_algorithm
        self.cipher_key_size = _cipher_key_size(cipher_algorithm)
        self.hmac_key_size = resolve_digest(digest_algorithm).digest_size
        self._keys: Optional[dict] = None

    def configure(self, cipher_enc_key: BytesLike, cipher_dec_key: BytesLike,
                  hmac_enc_key: BytesLike, hmac_dec_key: BytesLike) -> None:
        sizes = {
            "cipher_enc": (cipher_enc_key, self.cipher_key_size),
            "cipher_dec": (cipher_dec_key, self.cipher_key_size),
            "hmac_enc": (hmac_enc_key, self.hmac_key_size),
            "hmac_dec": (hmac_dec_key, self.hmac_key_size),
        }
        keys = {}
        for name, (key, size) in sizes.items():
            if len(key) < size:
                raise ValueError(f"{name} key too short: {len(key)} < {size}")
            keys[name] = SecretBuffer(bytes(key)[:size])
        self.wipe()
        self._keys = keys

    @property
    def configured(self) -> bool:
        return self._keys is not None

    def _require(self) -> dict:
        if self._keys is None:
            raise RuntimeError("cipher box used before configure()")
        return self._keys

    def encrypter(self) -> Encrypter:
        k = self._require()
        return Encrypter(k["cipher_enc"], k["hmac_enc"], self.digest_algorithm)

    def decrypter(self) -> Decrypter:
        k = self._require()
        return Decrypter(k["cipher_dec"], k["hmac_dec"], self.digest_algorithm)

    def wipe(self) -> None:
        if self._keys:
            for buf in self._keys.values():
                buf.release()
        self._keys = None


class EncryptionProxy:
    """Bridges the key schedule to the cipher box for the session layer."""

    def __init__(self, cipher: str, digest: str,
                 cipher_enc_key: BytesLike, cipher_dec_key: BytesLike,
                 hmac_enc_key: BytesLike, hmac_dec_key: BytesLike):
        self.box = CipherBox(cipher, digest)
        self.box.configure(cipher_enc_key, cipher_dec_key, hmac_enc_key, hmac_dec_key)

    @classmethod
    def from_handshake(cls, cipher: str, digest: str, auth: HandshakeSecrets,
                       session_id: bytes, remote_session_id: bytes,
                       schedule: Optional[KeySchedule] = None) -> "EncryptionProxy":
        """
        Derive the session keys from a finished handshake. Fails with
        DerivationPreconditionViolated when `auth` lacks the server randoms.
        The key block is zeroed once the box holds its own copies.
        """
        schedule = schedule or KeySchedule()
        keys = schedule.derive_session_keys(
            cipher, digest, auth.pre_master,
            auth.random1, auth.server_random1,
            auth.random2, auth.server_random2,
            session_id, remote_session_id)
        with keys:
            proxy = cls(cipher, digest, keys.cipher_enc, keys.cipher_dec, keys.hmac_enc, keys.hmac_dec)
        logger.info("encryption configured: %s/%s", cipher, digest)
        return proxy

    def encrypter(self) -> Encrypter:
        return self.box.encrypter()

    def decrypter(self) -> Decrypter:
        return self.box.decrypter()

    def wipe(self) -> None:
        self.box.wipe()
