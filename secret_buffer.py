# secret_buffer.py - byte containers for key material, zeroed on release
"""
SecretBuffer owns a mutable bytearray and overwrites it with zeros when it is
released (explicitly, on context exit, or best-effort on garbage collection).
SecretView borrows a window of an owner without copying; reading a view after
its owner was released raises ValueError.

Python hands `bytes` copies to the HMAC/cipher backends, so zeroization is
best-effort: it covers every buffer this package owns, not the immutable
copies the interpreter may keep around.
"""
import hmac
from typing import Union


def _raw(data) -> bytes:
    if isinstance(data, (SecretBuffer, SecretView)):
        return data.bytes
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, int):
        # single byte, as in Z(h1 ^ h2)
        return bytes([data & 0xFF])
    return bytes(data)


class SecretBuffer:
    def __init__(self, data: "BytesLike" = b""):
        self._buf = bytearray(_raw(data))
        self._released = False

    @classmethod
    def zeros(cls, count: int) -> "SecretBuffer":
        if count < 0:
            raise ValueError(f"count must be >= 0, got {count}")
        return cls(bytes(count))

    def _check_live(self) -> None:
        if self._released:
            raise ValueError("secret buffer already released")

    def __len__(self) -> int:
        return len(self._buf)

    @property
    def count(self) -> int:
        return len(self._buf)

    @property
    def released(self) -> bool:
        return self._released

    @property
    def bytes(self) -> bytes:
        self._check_live()
        return bytes(self._buf)

    def __bytes__(self) -> bytes:
        return self.bytes

    def hex(self) -> str:
        return self.bytes.hex()

    def __eq__(self, other) -> bool:
        if not isinstance(other, (SecretBuffer, SecretView, bytes, bytearray, memoryview)):
            return NotImplemented
        return hmac.compare_digest(self.bytes, _raw(other))

    __hash__ = None

    def __repr__(self) -> str:
        state = "released" if self._released else f"len={len(self._buf)}"
        return f"SecretBuffer({state})"

    def with_offset(self, offset: int, count: int) -> "SecretView":
        """Borrow `count` bytes starting at `offset`; no copy is made."""
        self._check_live()
        if offset < 0 or count < 0 or offset + count > len(self._buf):
            raise ValueError(
                f"view [{offset}, {offset + count}) out of bounds for length {len(self._buf)}")
        return SecretView(self, offset, count)

    def append(self, other: "BytesLike") -> None:
        self._check_live()
        self._buf.extend(_raw(other))

    def appending(self, other: "BytesLike") -> "SecretBuffer":
        self._check_live()
        out = SecretBuffer(self._buf)
        out.append(other)
        return out

    def xor(self, other: "BytesLike") -> "SecretBuffer":
        """Byte-wise XOR of two equal-length buffers into a new owned buffer."""
        self._check_live()
        rhs = _raw(other)
        if len(rhs) != len(self._buf):
            raise ValueError(f"xor length mismatch: {len(self._buf)} != {len(rhs)}")
        out = SecretBuffer.zeros(len(rhs))
        for i, (a, b) in enumerate(zip(self._buf, rhs)):
            out._buf[i] = a ^ b
        return out

    def zero(self) -> None:
        # same-length slice assignment writes in place
        self._buf[:] = bytes(len(self._buf))

    def release(self) -> None:
        if not self._released:
            self.zero()
            self._released = True

    def __enter__(self) -> "SecretBuffer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __del__(self):
        buf = getattr(self, "_buf", None)
        if buf:
            buf[:] = bytes(len(buf))


class SecretView:
    """A borrowed window into a SecretBuffer. Must not outlive its owner."""

    def __init__(self, owner: SecretBuffer, offset: int, count: int):
        self._owner = owner
        self._offset = offset
        self._count = count

    @property
    def owner(self) -> SecretBuffer:
        return self._owner

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def count(self) -> int:
        return self._count

    def __len__(self) -> int:
        return self._count

    @property
    def bytes(self) -> bytes:
        self._owner._check_live()
        return bytes(self._owner._buf[self._offset:self._offset + self._count])

    def __bytes__(self) -> bytes:
        return self.bytes

    def hex(self) -> str:
        return self.bytes.hex()

    def __eq__(self, other) -> bool:
        if not isinstance(other, (SecretBuffer, SecretView, bytes, bytearray, memoryview)):
            return NotImplemented
        return hmac.compare_digest(self.bytes, _raw(other))

    __hash__ = None

    def __repr__(self) -> str:
        return f"SecretView(offset={self._offset}, count={self._count})"

    def with_offset(self, offset: int, count: int) -> "SecretView":
        if offset < 0 or count < 0 or offset + count > self._count:
            raise ValueError(
                f"view [{offset}, {offset + count}) out of bounds for length {self._count}")
        return self._owner.with_offset(self._offset + offset, count)

    def to_buffer(self) -> SecretBuffer:
        """Copy the viewed bytes into a new owned buffer."""
        return SecretBuffer(self.bytes)

    def zero(self) -> None:
        self._owner._check_live()
        end = self._offset + self._count
        self._owner._buf[self._offset:end] = bytes(self._count)


BytesLike = Union[bytes, bytearray, memoryview, str, SecretBuffer, SecretView]
