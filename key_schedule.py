# key_schedule.py - pre-master secret -> master secret -> four session keys
import logging
from dataclasses import dataclass
from typing import Iterator, Optional

import tunnel_config
from crypto_box import HMACProvider, default_hmac_provider
from errors import DerivationPreconditionViolated
from prf import Secret, combine
from secret_buffer import BytesLike, SecretBuffer, SecretView
from tunnel_config import (
    KEY_LENGTH, KEYS_COUNT, LABEL_KEY_EXPANSION, LABEL_MASTER_SECRET, PRE_MASTER_LENGTH
)

logger = logging.getLogger(__name__)

KEY_BLOCK_LENGTH = KEYS_COUNT * KEY_LENGTH


@dataclass
class HandshakeSecrets:
    """What the handshake (Authenticator) hands over once it has a pre-master."""
    pre_master: SecretBuffer
    random1: SecretBuffer
    random2: SecretBuffer
    server_random1: Optional[SecretBuffer] = None
    server_random2: Optional[SecretBuffer] = None

    def wipe(self) -> None:
        for buf in (self.pre_master, self.random1, self.random2,
                    self.server_random1, self.server_random2):
            if buf is not None:
                buf.release()


class SessionKeys:
    """
    The 256-byte key block and its four 64-byte views, in wire order:
    cipher-encrypt, hmac-encrypt, cipher-decrypt, hmac-decrypt.

    Unpacks like a tuple. The views borrow from the key block, so copy what
    you need before wipe() (or leaving the `with` block).
    """

    def __init__(self, cipher_name: str, digest_name: str, key_block: SecretBuffer):
        if len(key_block) != KEY_BLOCK_LENGTH:
            raise ValueError(f"key block must be {KEY_BLOCK_LENGTH} bytes, got {len(key_block)}")
        self.cipher_name = cipher_name
        self.digest_name = digest_name
        self._key_block = key_block
        keys = [key_block.with_offset(i * KEY_LENGTH, KEY_LENGTH) for i in range(KEYS_COUNT)]
        self.cipher_enc, self.hmac_enc, self.cipher_dec, self.hmac_dec = keys

    @property
    def key_block(self) -> SecretBuffer:
        return self._key_block

    def __iter__(self) -> Iterator[SecretView]:
        return iter((self.cipher_enc, self.hmac_enc, self.cipher_dec, self.hmac_dec))

    def __len__(self) -> int:
        return KEYS_COUNT

    def wipe(self) -> None:
        self._key_block.release()

    def __enter__(self) -> "SessionKeys":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return f"SessionKeys(cipher={self.cipher_name}, digest={self.digest_name})"


class KeySchedule:
    """Two PRF passes: master secret, then key block. Pure and deterministic."""

    def __init__(self, provider: Optional[HMACProvider] = None):
        self._provider = provider or default_hmac_provider()

    def derive_master_secret(self, pre_master: Secret, client_random1: BytesLike,
                             server_random1: BytesLike) -> SecretBuffer:
        return combine(LABEL_MASTER_SECRET, pre_master, client_random1, server_random1,
                       None, None, PRE_MASTER_LENGTH, self._provider)

    def derive_key_block(self, master: Secret, client_random2: BytesLike, server_random2: BytesLike,
                         client_session_id: Optional[bytes],
                         server_session_id: Optional[bytes]) -> SecretBuffer:
        return combine(LABEL_KEY_EXPANSION, master, client_random2, server_random2,
                       client_session_id, server_session_id, KEY_BLOCK_LENGTH, self._provider)

    def derive_session_keys(self, cipher_name: str, digest_name: str,
                            pre_master: Secret,
                            client_random1: BytesLike, server_random1: Optional[BytesLike],
                            client_random2: BytesLike, server_random2: Optional[BytesLike],
                            client_session_id: Optional[bytes],
                            server_session_id: Optional[bytes]) -> SessionKeys:
        if server_random1 is None or server_random2 is None:
            raise DerivationPreconditionViolated("configuring encryption without server randoms")

        master = self.derive_master_secret(pre_master, client_random1, server_random1)
        try:
            if tunnel_config.LOGS_SENSITIVE_DATA:
                logger.debug("master secret: %s", master.hex())
            key_block = self.derive_key_block(master, client_random2, server_random2,
                                              client_session_id, server_session_id)
        finally:
            master.release()

        logger.debug("derived %d session keys (%s/%s)", KEYS_COUNT, cipher_name, digest_name)
        return SessionKeys(cipher_name, digest_name, key_block)


def derive_session_keys(cipher_name: str, digest_name: str, pre_master: Secret,
                        client_random1: BytesLike, server_random1: Optional[BytesLike],
                        client_random2: BytesLike, server_random2: Optional[BytesLike],
                        client_session_id: Optional[bytes],
                        server_session_id: Optional[bytes]) -> SessionKeys:
    return KeySchedule().derive_session_keys(
        cipher_name, digest_name, pre_master,
        client_random1, server_random1, client_random2, server_random2,
        client_session_id, server_session_id)
