#!/usr/bin/env python3
"""
tunnelkeys.py — operator CLI for the tunnel key schedule and packet link:
- derive: run the dual-hash PRF key schedule on hex inputs and print key fingerprints
- seed:   seed the process PRNG from the secure random source
- link:   exercise a UDP PacketLink (send a batch / echo batches back)
"""
import argparse
import logging
import os
import sys
import threading
import time
from typing import List, Optional

from cryptography.hazmat.primitives import hashes

import tunnel_config
from crypto_box import default_prng, prepare_random_number_generator
from errors import DerivationError, DerivationPreconditionViolated, TransportError
from key_schedule import KeySchedule
from link import split_batches
from secret_buffer import SecretBuffer
from udp_driver import UDPConfig, UDPLink


def _hex_arg(args: argparse.Namespace, name: str) -> Optional[bytes]:
    value = getattr(args, name)
    if value is None:
        return None
    try:
        return bytes.fromhex(value)
    except ValueError:
        print(f"[keys] --{name} is not valid hex")
        raise SystemExit(2)


def fingerprint(data: bytes) -> str:
    h = hashes.Hash(hashes.SHA256())
    h.update(data)
    return h.finalize()[:8].hex()


# ---------- derive ----------

def cmd_derive(args: argparse.Namespace) -> int:
    pre_master = _hex_arg(args, "pre_master")
    if pre_master is None:
        print("[keys] --pre_master is required")
        raise SystemExit(2)
    if len(pre_master) != tunnel_config.PRE_MASTER_LENGTH:
        print(f"[keys] warn: pre-master is {len(pre_master)} bytes, "
              f"expected {tunnel_config.PRE_MASTER_LENGTH}")

    with SecretBuffer(pre_master) as pm:
        try:
            keys = KeySchedule().derive_session_keys(
                args.cipher, args.digest, pm,
                _hex_arg(args, "client_random1"), _hex_arg(args, "server_random1"),
                _hex_arg(args, "client_random2"), _hex_arg(args, "server_random2"),
                _hex_arg(args, "client_sid"), _hex_arg(args, "server_sid"))
        except DerivationPreconditionViolated as e:
            print(f"[keys] refused: {e}")
            return 1
        except DerivationError as e:
            print(f"[keys] derivation FAILED: {e}")
            return 1

    with keys:
        print(f"[keys] key block derived ({args.cipher}/{args.digest}, "
              f"{len(keys.key_block)} bytes)")
        names = ("cipher_enc", "hmac_enc", "cipher_dec", "hmac_dec")
        for name, key in zip(names, keys):
            if args.show_keys:
                print(f"[keys] {name:<10} {key.hex()}")
            else:
                print(f"[keys] {name:<10} fp={fingerprint(key.bytes)}")
    return 0


# ---------- seed ----------

def cmd_seed(args: argparse.Namespace) -> int:
    if default_prng().is_seeded:
        print("[seed] PRNG already seeded")
        return 0
    if not prepare_random_number_generator(args.length):
        print("[seed] FAILED: secure random source unavailable")
        return 1
    print(f"[seed] PRNG seeded ({args.length} bytes), state={default_prng().state.value}")
    return 0


# ---------- link ----------

def _build_link(args: argparse.Namespace) -> UDPLink:
    profile = tunnel_config.load_link_profile(args.profile, args.profile_json)
    cfg = UDPConfig.from_profile(profile, bind_host=args.bind_host, bind_port=args.bind_port,
                                 peer_host=args.peer_host, peer_port=args.peer_port)
    return UDPLink(cfg, rng=default_prng().rng)


def _run_sender(link: UDPLink, args: argparse.Namespace) -> int:
    received: List[bytes] = []
    done = threading.Event()

    def on_read(datagrams, error):
        if error is not None:
            print(f"[link] read error: {error}")
            return
        received.extend(datagrams)
        if len(received) >= args.count:
            done.set()

    link.register_read_handler(on_read)
    packets = [os.urandom(args.size) for _ in range(args.count)]
    t0 = time.time()
    for batch in split_batches(packets, link.max_batch_size()):
        try:
            link.write_many(batch).result(timeout=args.timeout)
        except TransportError as e:
            print(f"[link] write FAILED: {e}")
            return 1
    print(f"[link] sent {len(packets)} datagrams to {link.resolved_remote_address()}:{args.peer_port}")

    done.wait(timeout=args.timeout)
    dt = time.time() - t0
    expected = set(packets)
    echoed = sum(1 for p in received if p in expected)
    print(f"[link] echoed {echoed}/{len(packets)} in {dt*1000:.1f} ms")
    return 0 if echoed == len(packets) else 1


def _run_echo(link: UDPLink, args: argparse.Namespace) -> int:
    seen = [0]
    done = threading.Event()

    def on_read(datagrams, error):
        if error is not None:
            print(f"[link] read error: {error}")
            return
        link.write_many(datagrams)
        seen[0] += len(datagrams)
        if args.count and seen[0] >= args.count:
            done.set()

    link.register_read_handler(on_read)
    print(f"[link] echo ready on {link.local_address[0]}:{link.local_address[1]}")
    try:
        while not done.wait(timeout=0.2):
            pass
    except KeyboardInterrupt:
        print("[link] interrupted")
    print(f"[link] echoed {seen[0]} datagrams")
    return 0


def cmd_link(args: argparse.Namespace) -> int:
    # PRNG is seeded once, at startup of a link process
    if not default_prng().is_seeded and not prepare_random_number_generator(tunnel_config.RNG_SEED_LENGTH):
        print("[link] FAILED: cannot seed PRNG")
        return 1
    with _build_link(args) as link:
        if args.role == "send":
            return _run_sender(link, args)
        return _run_echo(link, args)


# ---------- CLI ----------

def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Tunnel key schedule and packet link tool.")
    p.add_argument("--verbose", action="store_true", help="debug logging to stderr")
    sub = p.add_subparsers(dest="cmd", required=True)

    d = sub.add_parser("derive", help="derive the four session keys from hex inputs")
    d.add_argument("--pre_master", type=str, required=True, help="48-byte pre-master secret (hex)")
    d.add_argument("--client_random1", type=str, required=True)
    d.add_argument("--server_random1", type=str, default=None)
    d.add_argument("--client_random2", type=str, required=True)
    d.add_argument("--server_random2", type=str, default=None)
    d.add_argument("--client_sid", type=str, default=None, help="local session id (hex)")
    d.add_argument("--server_sid", type=str, default=None, help="remote session id (hex)")
    d.add_argument("--cipher", type=str, default="AES-128-CBC")
    d.add_argument("--digest", type=str, default="SHA1")
    d.add_argument("--show_keys", action="store_true", help="print full key hex (sensitive!)")

    s = sub.add_parser("seed", help="seed the PRNG from the secure random source")
    s.add_argument("--length", type=int, default=tunnel_config.RNG_SEED_LENGTH)

    lk = sub.add_parser("link", help="exercise a UDP packet link")
    lk.add_argument("--role", required=True, choices=["send", "echo"])
    lk.add_argument("--profile", choices=sorted(tunnel_config.PROFILES), default="lan")
    lk.add_argument("--profile_json", type=str, default=None, help="link profile JSON (overrides --profile)")
    lk.add_argument("--bind_host", type=str, default="0.0.0.0")
    lk.add_argument("--bind_port", type=int, required=True)
    lk.add_argument("--peer_host", type=str, default="127.0.0.1")
    lk.add_argument("--peer_port", type=int, required=True)
    lk.add_argument("--count", type=int, default=16, help="datagrams to send / echo before exit (0 = forever)")
    lk.add_argument("--size", type=int, default=256, help="datagram payload size")
    lk.add_argument("--timeout", type=float, default=5.0)
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_argparser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if args.cmd == "derive":
        return cmd_derive(args)
    if args.cmd == "seed":
        return cmd_seed(args)
    try:
        return cmd_link(args)
    except (OSError, ValueError) as e:
        print(f"[link] setup FAILED: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
