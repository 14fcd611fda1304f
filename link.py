# link.py - transport-agnostic contract for batched datagram I/O
"""
PacketLink is what the session loop talks to; it carries ciphertext datagrams
and knows nothing about handshakes or session state.

Reads are push-based: register_read_handler() installs one handler that the
link calls from its own I/O thread as handler(datagrams, None) with 1..N
datagrams (N = max_batch_size()) or handler(None, error).

Writes return at once. Each write_one()/write_many() completes exactly once,
through both the optional on_complete(error_or_None) callback and the returned
Future. write_many() is all-or-nothing from the caller's point of view.
"""
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future
from typing import Callable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

ReadHandler = Callable[[Optional[List[bytes]], Optional[Exception]], None]
Completion = Callable[[Optional[Exception]], None]


def make_completion(on_complete: Optional[Completion]) -> Tuple[Future, Completion]:
    """Future plus a finish(error) that resolves it and the callback only once."""
    fut: Future = Future()
    lock = threading.Lock()
    fired = False

    def finish(error: Optional[Exception] = None) -> None:
        nonlocal fired
        with lock:
            if fired:
                return
            fired = True
        if error is None:
            fut.set_result(None)
        else:
            fut.set_exception(error)
        if on_complete is not None:
            try:
                on_complete(error)
            except Exception:
                logger.exception("write completion handler raised")

    return fut, finish


def split_batches(datagrams: Sequence[bytes], max_batch: int) -> List[List[bytes]]:
    return [list(datagrams[i:i + max_batch]) for i in range(0, len(datagrams), max_batch)]


class PacketLink(ABC):

    @abstractmethod
    def resolved_remote_address(self) -> Optional[str]:
        """Best-effort peer host; None while unresolved."""

    @abstractmethod
    def max_batch_size(self) -> int:
        """Upper bound on datagrams per read-handler call."""

    @abstractmethod
    def register_read_handler(self, handler: ReadHandler) -> None: ...

    @abstractmethod
    def write_one(self, datagram: bytes, on_complete: Optional[Completion] = None) -> Future: ...

    @abstractmethod
    def write_many(self, datagrams: Sequence[bytes],
                   on_complete: Optional[Completion] = None) -> Future: ...

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _dispatch(self, handler: ReadHandler, datagrams: Optional[List[bytes]],
                  error: Optional[Exception]) -> None:
        """Call the read handler; a raising handler must not kill the reader."""
        try:
            handler(datagrams, error)
        except Exception:
            logger.exception("read handler raised")
