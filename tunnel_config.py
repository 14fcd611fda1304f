# tunnel_config.py - protocol constants, session timing and link profiles
import json
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional

# --- Keys (wire contract, must match the peer) ---
LABEL_MASTER_SECRET = "OpenVPN master secret"
LABEL_KEY_EXPANSION = "OpenVPN key expansion"
PRE_MASTER_LENGTH = 48
KEY_LENGTH = 64
KEYS_COUNT = 4
RANDOM_LENGTH = 32
RNG_SEED_LENGTH = 32

# --- Authentication ---
PEER_INFO = "IV_VER=2.3.98\n"

# --- Session ---
LOGS_SENSITIVE_DATA = False
USES_REPLAY_PROTECTION = True
USES_DATA_OPTIMIZATION = True

# --- Link ---
DEFAULT_MAX_DATAGRAMS = 200
DEFAULT_MAX_LEN = 4096


@dataclass(frozen=True)
class SessionTiming:
    """Timers (seconds) for the session loop that drives a PacketLink."""
    tick_interval: float = 0.2
    hard_reset_timeout: float = 2.0
    connection_timeout: float = 10.0
    ping_interval: float = 10.0
    ping_timeout: float = 120.0
    retransmission_limit: float = 0.1
    soft_reset_delay: float = 5.0
    soft_connection_timeout: float = 120.0
    max_out_length: int = 1000


DEFAULT_TIMING = SessionTiming()


@dataclass
class LinkProfile:
    drop: float = 0.0      # iid drop probability on send
    jitter_ms: int = 0     # +/- send jitter
    max_datagrams: int = DEFAULT_MAX_DATAGRAMS
    max_len: int = DEFAULT_MAX_LEN

    def to_dict(self) -> dict:
        return asdict(self)


PROFILES = {
    "lan":   {"drop": 0.0,  "jitter_ms": 0,  "max_datagrams": DEFAULT_MAX_DATAGRAMS, "max_len": 4096},
    "wan":   {"drop": 0.01, "jitter_ms": 15, "max_datagrams": DEFAULT_MAX_DATAGRAMS, "max_len": 1500},
    "lossy": {"drop": 0.1,  "jitter_ms": 40, "max_datagrams": 64,                    "max_len": 1500},
}


def _dict_to_profile(d: dict) -> LinkProfile:
    prof = LinkProfile(
        drop=float(d.get("drop", 0.0)),
        jitter_ms=int(d.get("jitter_ms", 0)),
        max_datagrams=int(d.get("max_datagrams", DEFAULT_MAX_DATAGRAMS)),
        max_len=int(d.get("max_len", DEFAULT_MAX_LEN)),
    )
    if not 0.0 <= prof.drop <= 1.0:
        raise ValueError(f"drop must be within [0, 1], got {prof.drop}")
    if prof.jitter_ms < 0:
        raise ValueError(f"jitter_ms must be >= 0, got {prof.jitter_ms}")
    if prof.max_datagrams <= 0:
        raise ValueError(f"max_datagrams must be > 0, got {prof.max_datagrams}")
    if prof.max_len <= 0:
        raise ValueError(f"max_len must be > 0, got {prof.max_len}")
    return prof


def load_link_profile(name: Optional[str] = None, path: Optional[str] = None) -> LinkProfile:
    """JSON file wins over a built-in name; no arguments gives `lan`."""
    if path:
        with open(Path(path), "r") as f:
            return _dict_to_profile(json.load(f))
    key = (name or "lan").lower()
    if key not in PROFILES:
        raise ValueError(f"unknown link profile '{key}' (known: {', '.join(sorted(PROFILES))})")
    return _dict_to_profile(PROFILES[key])
