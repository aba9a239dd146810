"""
CSRF token generation and validation.

Token layout (hex encoded): issued_at (8 bytes, big endian) + random (16 bytes)
+ HMAC-SHA256(secret, issued_at + random).
"""
import hashlib
import hmac
import os
import struct
import time
from typing import Optional


class CSRFTokenManager:
    """Issues and verifies signed, time-limited CSRF tokens."""

    _HEADER = struct.Struct(">Q")
    _RANDOM_LEN = 16
    _SIG_LEN = 32

    def __init__(self, secret: str, token_ttl: int = 3600):
        self.secret = secret.encode('utf-8')
        self.token_ttl = token_ttl

    def _sign(self, body: bytes) -> bytes:
        return hmac.new(self.secret, body, hashlib.sha256).digest()

    def generate_token(self, now: Optional[float] = None) -> str:
        issued_at = int(now if now is not None else time.time())
        body = self._HEADER.pack(issued_at) + os.urandom(self._RANDOM_LEN)
        return (body + self._sign(body)).hex()

    def verify_token(self, token: str, now: Optional[float] = None) -> bool:
        try:
            raw = bytes.fromhex(token)
        except ValueError:
            return False

        body_len = self._HEADER.size + self._RANDOM_LEN
        if len(raw) != body_len + self._SIG_LEN:
            return False

        body, signature = raw[:body_len], raw[body_len:]
        if not hmac.compare_digest(signature, self._sign(body)):
            return False

        (issued_at,) = self._HEADER.unpack(body[:self._HEADER.size])
        current = now if now is not None else time.time()
        return 0 <= current - issued_at <= self.token_ttl


_csrf_manager: Optional[CSRFTokenManager] = None


def init_csrf_manager(secret: str) -> None:
    global _csrf_manager
    _csrf_manager = CSRFTokenManager(secret)


def _manager() -> CSRFTokenManager:
    if not _csrf_manager:
        raise RuntimeError("CSRF manager not initialized. Call init_csrf_manager() first.")
    return _csrf_manager


def generate_csrf_token() -> str:
    return _manager().generate_token()


def verify_csrf_token(token: str) -> bool:
    return _manager().verify_token(token)
