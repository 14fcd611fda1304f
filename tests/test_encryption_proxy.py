import pytest

from encryption_proxy import CipherBox, EncryptionProxy
from errors import DerivationPreconditionViolated, DigestUnsupported, HMACVerificationFailed
from key_schedule import HandshakeSecrets, KeySchedule
from secret_buffer import SecretBuffer


def _auth(with_server=True) -> HandshakeSecrets:
    return HandshakeSecrets(
        pre_master=SecretBuffer(b"\x10" * 48),
        random1=SecretBuffer(b"\x20" * 32),
        random2=SecretBuffer(b"\x30" * 32),
        server_random1=SecretBuffer(b"\x40" * 32) if with_server else None,
        server_random2=SecretBuffer(b"\x50" * 32) if with_server else None,
    )


def _peers(cipher="AES-128-CBC", digest="SHA1"):
    keys = KeySchedule().derive_session_keys(
        cipher, digest, SecretBuffer(b"\x10" * 48),
        b"\x20" * 32, b"\x40" * 32, b"\x30" * 32, b"\x50" * 32,
        b"\x01" * 8, b"\x02" * 8)
    with keys:
        local = EncryptionProxy(cipher, digest, keys.cipher_enc, keys.cipher_dec,
                                keys.hmac_enc, keys.hmac_dec)
        # the peer sees the same block with directions swapped
        remote = EncryptionProxy(cipher, digest, keys.cipher_dec, keys.cipher_enc,
                                 keys.hmac_dec, keys.hmac_enc)
    return local, remote


@pytest.mark.parametrize("cipher,digest", [("AES-128-CBC", "SHA1"), ("aes-256-cbc", "sha256")])
def test_round_trip_between_peers(cipher, digest):
    local, remote = _peers(cipher, digest)
    packet = b"ping over the tunnel" * 3
    wire = local.encrypter().encrypt(packet)
    assert packet not in wire
    assert remote.decrypter().decrypt(wire) == packet


def test_tampered_packet_rejected():
    local, remote = _peers()
    wire = bytearray(local.encrypter().encrypt(b"payload"))
    wire[-1] ^= 0x01
    with pytest.raises(HMACVerificationFailed):
        remote.decrypter().decrypt(bytes(wire))
    with pytest.raises(HMACVerificationFailed):
        remote.decrypter().decrypt(b"short")


def test_own_decrypter_cannot_read_own_packets():
    local, _ = _peers()
    with pytest.raises(HMACVerificationFailed):
        local.decrypter().decrypt(local.encrypter().encrypt(b"x"))


def test_from_handshake_requires_server_randoms():
    with pytest.raises(DerivationPreconditionViolated):
        EncryptionProxy.from_handshake("AES-128-CBC", "SHA1", _auth(with_server=False),
                                       b"\x01" * 8, b"\x02" * 8)


def test_from_handshake_matches_manual_schedule():
    proxy = EncryptionProxy.from_handshake("AES-128-CBC", "SHA1", _auth(), b"\x01" * 8, b"\x02" * 8)
    _, remote = _peers()
    assert remote.decrypter().decrypt(proxy.encrypter().encrypt(b"hello")) == b"hello"


def test_box_trims_keys_to_algorithm_sizes():
    box = CipherBox("AES-192-CBC", "SHA512")
    assert box.cipher_key_size == 24
    assert box.hmac_key_size == 64
    key = bytes(range(64))
    box.configure(key, key, key, key)
    assert box.configured
    assert box._keys["cipher_enc"].bytes == key[:24]
    box.wipe()
    assert not box.configured
    with pytest.raises(RuntimeError):
        box.encrypter()


def test_box_rejects_unknown_algorithms():
    with pytest.raises(ValueError):
        CipherBox("DES-EDE3-CBC", "SHA1")
    with pytest.raises(DigestUnsupported):
        CipherBox("AES-128-CBC", "WHIRLPOOL")


def test_wiped_proxy_cannot_encrypt():
    local, _ = _peers()
    enc = local.encrypter()
    local.wipe()
    with pytest.raises(ValueError):
        enc.encrypt(b"x")
