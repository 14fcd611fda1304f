# udp_driver.py - UDP socket backend for PacketLink
import logging
import random
import select
import socket
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from errors import TransportReadFailed, TransportWriteFailed
from link import Completion, PacketLink, ReadHandler, make_completion
from tunnel_config import DEFAULT_MAX_DATAGRAMS, DEFAULT_MAX_LEN, LinkProfile

logger = logging.getLogger(__name__)


@dataclass
class UDPConfig:
    bind_host: str = "0.0.0.0"
    bind_port: int = 9000
    peer_host: str = "127.0.0.1"
    peer_port: int = 9001
    drop: float = 0.0    # iid drop probability
    jitter_ms: int = 0   # +/- jitter per send in ms
    max_len: int = DEFAULT_MAX_LEN
    max_datagrams: int = DEFAULT_MAX_DATAGRAMS

    @classmethod
    def from_profile(cls, profile: LinkProfile, bind_host: str = "0.0.0.0", bind_port: int = 9000,
                     peer_host: str = "127.0.0.1", peer_port: int = 9001) -> "UDPConfig":
        return cls(bind_host=bind_host, bind_port=bind_port,
                   peer_host=peer_host, peer_port=peer_port,
                   drop=profile.drop, jitter_ms=profile.jitter_ms,
                   max_len=profile.max_len, max_datagrams=profile.max_datagrams)


class UDPLink(PacketLink):
    """
    One reader thread delivers batches to the registered handler; one writer
    thread drains write requests in submission order.
    """

    def __init__(self, cfg: UDPConfig, rng: Optional[random.Random] = None):
        self.cfg = cfg
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind((cfg.bind_host, cfg.bind_port))
        self.sock.settimeout(0.2)
        self._rng = rng or random.Random(0xD15EA5E)
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="udp-writer")
        self._handler: Optional[ReadHandler] = None
        self._reader: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._closed = False

    @property
    def local_address(self) -> Tuple[str, int]:
        return self.sock.getsockname()

    # --- PacketLink ---

    def resolved_remote_address(self) -> Optional[str]:
        try:
            infos = socket.getaddrinfo(self.cfg.peer_host, self.cfg.peer_port,
                                       socket.AF_INET, socket.SOCK_DGRAM)
        except (socket.gaierror, UnicodeError):
            return None
        return infos[0][4][0] if infos else None

    def max_batch_size(self) -> int:
        return self.cfg.max_datagrams

    def register_read_handler(self, handler: ReadHandler) -> None:
        if self._handler is not None:
            raise RuntimeError("read handler already registered")
        if self._closed:
            raise RuntimeError("link is closed")
        self._handler = handler
        self._reader = threading.Thread(target=self._read_loop, name="udp-reader", daemon=True)
        self._reader.start()

    def write_one(self, datagram: bytes, on_complete: Optional[Completion] = None) -> Future:
        return self._submit([bytes(datagram)], on_complete)

    def write_many(self, datagrams: Sequence[bytes],
                   on_complete: Optional[Completion] = None) -> Future:
        return self._submit([bytes(d) for d in datagrams], on_complete)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        self._writer.shutdown(wait=True)
        if self._reader is not None:
            self._reader.join(timeout=1.0)
        self.sock.close()

    # --- internals ---

    def _send(self, blob: bytes) -> None:
        if self.cfg.drop and self._rng.random() < self.cfg.drop:
            logger.debug("impairment: dropped %d-byte datagram", len(blob))
            return
        if self.cfg.jitter_ms:
            time.sleep(max(0, (self._rng.randint(-self.cfg.jitter_ms, self.cfg.jitter_ms))/1000.0))
        self.sock.sendto(blob, (self.cfg.peer_host, self.cfg.peer_port))

    def _submit(self, batch: List[bytes], on_complete: Optional[Completion]) -> Future:
        fut, finish = make_completion(on_complete)
        if not batch:
            finish(None)
            return fut

        def job():
            try:
                for blob in batch:
                    self._send(blob)
            except OSError as exc:
                finish(TransportWriteFailed(f"sendto {self.cfg.peer_host}:{self.cfg.peer_port} failed: {exc}"))
                return
            finish(None)

        try:
            self._writer.submit(job)
        except RuntimeError:
            # executor already shut down
            finish(TransportWriteFailed("link is closed"))
        return fut

    def _recv_one(self) -> Optional[bytes]:
        try:
            data, _ = self.sock.recvfrom(self.cfg.max_len)
            return data
        except socket.timeout:
            return None

    def _read_failed(self, handler: ReadHandler, exc: Exception) -> None:
        self._dispatch(handler, None, TransportReadFailed(f"recvfrom failed: {exc}"))
        self._stop.wait(0.2)

    def _read_loop(self) -> None:
        handler = self._handler
        while not self._stop.is_set():
            try:
                first = self._recv_one()
            except (OSError, ValueError) as exc:
                if self._stop.is_set():
                    break
                self._read_failed(handler, exc)
                continue
            if first is None:
                continue
            batch = [first]
            failure: Optional[Exception] = None
            try:
                while len(batch) < self.cfg.max_datagrams:
                    ready, _, _ = select.select([self.sock], [], [], 0)
                    if not ready:
                        break
                    data = self._recv_one()
                    if data is None:
                        break
                    batch.append(data)
            except (OSError, ValueError) as exc:
                failure = exc
            # datagrams read before a failure are still delivered
            self._dispatch(handler, batch, None)
            if failure is not None and not self._stop.is_set():
                self._read_failed(handler, failure)
        logger.debug("udp reader stopped")
