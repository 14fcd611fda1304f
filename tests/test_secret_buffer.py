import pytest

from secret_buffer import SecretBuffer


def test_view_borrows_without_copy():
    buf = SecretBuffer(bytes(range(10)))
    view = buf.with_offset(2, 3)
    assert view.bytes == b"\x02\x03\x04"
    buf._buf[3] = 0xFF
    assert view.bytes == b"\x02\xff\x04"


def test_view_bounds_checked():
    buf = SecretBuffer(b"abcdef")
    assert buf.with_offset(6, 0).bytes == b""
    assert buf.with_offset(0, 6) == b"abcdef"
    with pytest.raises(ValueError):
        buf.with_offset(4, 3)
    with pytest.raises(ValueError):
        buf.with_offset(-1, 2)
    with pytest.raises(ValueError):
        buf.with_offset(1, 2).with_offset(1, 2)


def test_append_and_appending():
    buf = SecretBuffer("ab")
    joined = buf.appending(b"cd")
    assert joined == b"abcd"
    assert buf == b"ab"
    buf.append(joined.with_offset(2, 2))
    assert buf.bytes == b"abcd"


def test_xor_requires_equal_lengths():
    a = SecretBuffer(b"\x0f\xf0\xaa")
    b = SecretBuffer(b"\xff\xff\xaa")
    assert a.xor(b).bytes == b"\xf0\x0f\x00"
    with pytest.raises(ValueError):
        a.xor(b"\x00")


def test_release_zeroes_storage():
    buf = SecretBuffer(b"\x01" * 8)
    raw = buf._buf
    view = buf.with_offset(0, 4)
    with buf:
        pass
    assert raw == bytearray(8)
    assert buf.released
    with pytest.raises(ValueError):
        view.bytes
    with pytest.raises(ValueError):
        buf.bytes


def test_repr_hides_content():
    buf = SecretBuffer(b"topsecret")
    assert "topsecret" not in repr(buf)
    assert "len=9" in repr(buf)
