import threading

import pytest

from errors import TransportReadFailed, TransportWriteFailed
from link import make_completion, split_batches
from udp_driver import UDPConfig, UDPLink


def _pair(max_datagrams=200, drop=0.0):
    a = UDPLink(UDPConfig(bind_host="127.0.0.1", bind_port=0, peer_host="127.0.0.1", peer_port=0,
                          drop=drop))
    b = UDPLink(UDPConfig(bind_host="127.0.0.1", bind_port=0, peer_host="127.0.0.1", peer_port=0,
                          max_datagrams=max_datagrams))
    a.cfg.peer_port = b.local_address[1]
    b.cfg.peer_port = a.local_address[1]
    return a, b


class Collector:
    def __init__(self, expected):
        self.expected = expected
        self.batches = []
        self.errors = []
        self.done = threading.Event()
        self._lock = threading.Lock()

    def __call__(self, datagrams, error):
        with self._lock:
            if error is not None:
                self.errors.append(error)
                return
            self.batches.append(datagrams)
            if sum(len(b) for b in self.batches) >= self.expected:
                self.done.set()


def test_write_many_empty_batch_completes_once():
    a, b = _pair()
    calls = []
    try:
        fut = a.write_many([], calls.append)
        assert fut.result(timeout=1.0) is None
        assert calls == [None]
    finally:
        a.close()
        b.close()


def test_completion_fires_once():
    calls = []
    fut, finish = make_completion(calls.append)
    finish(None)
    finish(TransportWriteFailed("late"))
    assert calls == [None]
    assert fut.result(timeout=0) is None


def test_write_one_delivered_to_read_handler():
    a, b = _pair()
    got = Collector(1)
    try:
        b.register_read_handler(got)
        calls = []
        fut = a.write_one(b"hello", calls.append)
        assert fut.result(timeout=2.0) is None
        assert got.done.wait(timeout=3.0)
        assert got.batches[0] == [b"hello"]
        assert calls == [None]
    finally:
        a.close()
        b.close()


def test_batches_never_exceed_max_batch_size():
    a, b = _pair(max_datagrams=4)
    got = Collector(20)
    packets = [bytes([i]) * 32 for i in range(20)]
    try:
        b.register_read_handler(got)
        a.write_many(packets).result(timeout=2.0)
        assert got.done.wait(timeout=3.0)
        assert all(1 <= len(batch) <= 4 for batch in got.batches)
        assert sorted(p for batch in got.batches for p in batch) == sorted(packets)
        assert not got.errors
    finally:
        a.close()
        b.close()


def test_single_handler_only():
    a, b = _pair()
    try:
        b.register_read_handler(lambda d, e: None)
        with pytest.raises(RuntimeError):
            b.register_read_handler(lambda d, e: None)
    finally:
        a.close()
        b.close()


def test_write_after_close_reports_error():
    a, b = _pair()
    a.close()
    b.close()
    calls = []
    fut = a.write_one(b"x", calls.append)
    with pytest.raises(TransportWriteFailed):
        fut.result(timeout=1.0)
    assert len(calls) == 1
    assert isinstance(calls[0], TransportWriteFailed)


def test_dropped_datagrams_still_complete():
    a, b = _pair(drop=1.0)
    try:
        calls = []
        assert a.write_many([b"1", b"2"], calls.append).result(timeout=2.0) is None
        assert calls == [None]
    finally:
        a.close()
        b.close()


def test_resolved_remote_address():
    a, b = _pair()
    try:
        assert a.resolved_remote_address() == "127.0.0.1"
        assert a.max_batch_size() == 200
        a.cfg.peer_host = "x" * 64 + ".example"
        assert a.resolved_remote_address() is None
    finally:
        a.close()
        b.close()


def test_split_batches():
    assert split_batches([b"a", b"b", b"c"], 2) == [[b"a", b"b"], [b"c"]]
    assert split_batches([], 2) == []


def _failing_recv(link, fail_on):
    """Make the link's n-th recv (1-based, in fail_on) raise OSError."""
    real = link._recv_one
    calls = [0]

    def recv():
        calls[0] += 1
        if calls[0] in fail_on:
            raise OSError("simulated recvfrom failure")
        return real()

    link._recv_one = recv
    return calls


def test_read_error_reaches_handler_and_reader_keeps_running():
    a, b = _pair()
    got = Collector(1)
    _failing_recv(b, fail_on={1})
    try:
        b.register_read_handler(got)
        a.write_one(b"after-error").result(timeout=2.0)
        assert got.done.wait(timeout=3.0)
        assert len(got.errors) == 1
        assert isinstance(got.errors[0], TransportReadFailed)
        assert got.batches == [[b"after-error"]]
    finally:
        a.close()
        b.close()


def test_partial_batch_delivered_before_read_error():
    a, b = _pair()
    events = []
    done = threading.Event()

    def handler(datagrams, error):
        events.append((datagrams, error))
        if sum(len(d) for d, _ in events if d) >= 3:
            done.set()

    packets = [b"p0", b"p1", b"p2"]
    try:
        # queued before the reader starts so the drain step finds them ready
        a.write_many(packets).result(timeout=2.0)
        _failing_recv(b, fail_on={2})
        b.register_read_handler(handler)
        assert done.wait(timeout=3.0)
        assert events[0] == ([b"p0"], None)
        assert events[1][0] is None
        assert isinstance(events[1][1], TransportReadFailed)
        assert [p for d, _ in events[2:] for p in d] == [b"p1", b"p2"]
    finally:
        a.close()
        b.close()


def test_raising_handler_does_not_stop_reader():
    a, b = _pair()
    got = Collector(1)
    first = threading.Event()

    def handler(datagrams, error):
        if not first.is_set():
            first.set()
            raise RuntimeError("handler bug")
        got(datagrams, error)

    try:
        b.register_read_handler(handler)
        a.write_one(b"one").result(timeout=2.0)
        assert first.wait(timeout=3.0)
        a.write_one(b"two").result(timeout=2.0)
        assert got.done.wait(timeout=3.0)
        assert got.batches == [[b"two"]]
    finally:
        a.close()
        b.close()
