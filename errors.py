# errors.py - tunnel error taxonomy
from enum import IntEnum
from typing import Optional


class ErrorCode(IntEnum):
    RANDOM_GENERATOR = 1
    HMAC = 2
    TLS_CA = 3
    TLS_HANDSHAKE = 4
    TLS_GENERIC = 5
    DATA_PATH_OVERFLOW = 6
    DERIVATION_PRECONDITION = 7
    TRANSPORT_READ = 8
    TRANSPORT_WRITE = 9


class TunnelError(Exception):
    """Base error; `code` mirrors the numeric codes peers log."""
    code: ErrorCode = ErrorCode.TLS_GENERIC

    def __init__(self, message: str = "", code: Optional[ErrorCode] = None):
        super().__init__(message or self.__class__.__name__)
        if code is not None:
            self.code = code


class RandomnessUnavailable(TunnelError):
    code = ErrorCode.RANDOM_GENERATOR


class DerivationError(TunnelError):
    code = ErrorCode.HMAC


class DigestUnsupported(DerivationError):
    def __init__(self, digest_name: str):
        super().__init__(f"unsupported digest: {digest_name!r}")
        self.digest_name = digest_name


class DerivationPreconditionViolated(TunnelError):
    """Keys requested before the handshake supplied both server randoms."""
    code = ErrorCode.DERIVATION_PRECONDITION


class HMACVerificationFailed(TunnelError):
    code = ErrorCode.HMAC


class TransportError(TunnelError):
    pass


class TransportReadFailed(TransportError):
    code = ErrorCode.TRANSPORT_READ


class TransportWriteFailed(TransportError):
    code = ErrorCode.TRANSPORT_WRITE
