from __future__ import annotations

import base64
import hashlib
import hmac
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

# Public routing prefix; the venue signs the path without it.
ROUTING_PREFIX = "/derivatives"
NONCE_COUNTER_LIMIT = 10_000


@dataclass
class NonceGenerator:
    """Millisecond timestamp followed by a 5-digit rolling counter.

    Nonces are distinct within a millisecond for fewer than 10,000 calls. The
    counter wraps to zero, so strict ordering only holds across millisecond
    boundaries.
    """

    now_ms_fn: Callable[[], int] = field(default_factory=lambda: (lambda: int(time.time() * 1000)))
    counter: int = 0
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def next_nonce(self) -> str:
        with self._lock:
            if self.counter >= NONCE_COUNTER_LIMIT:
                self.counter = 0
            value = self.counter
            self.counter += 1
        return f"{int(self.now_ms_fn())}{value:05d}"


def canonical_path(path: str) -> str:
    if path.startswith(ROUTING_PREFIX):
        return path[len(ROUTING_PREFIX) :]
    return path


def sign_request(api_secret: str, path: str, nonce: str, body: str = "") -> str:
    try:
        secret = base64.b64decode(api_secret, validate=True)
    except Exception as exc:  # noqa: BLE001
        raise ValueError("KRAKEN_API_SECRET must be valid base64") from exc

    message = f"{body}{nonce}{canonical_path(path)}".encode()
    digest = hashlib.sha256(message).digest()
    mac = hmac.new(secret, digest, hashlib.sha512).digest()
    return base64.b64encode(mac).decode("utf-8")


def build_auth_headers(
    api_key: str,
    api_secret: str,
    *,
    path: str,
    nonce: str,
    body: str = "",
) -> dict[str, str]:
    return {
        "APIKey": api_key,
        "Nonce": nonce,
        "Authent": sign_request(api_secret, path, nonce, body),
    }
