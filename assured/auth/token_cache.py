from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)

# tokens are treated as expired this many seconds before the server says so
EXPIRY_BUFFER_SECONDS = 300


@dataclass(frozen=True)
class CachedToken:
    access_token: str
    expires_at: float
    token_type: str = "Bearer"

    def is_valid(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now + EXPIRY_BUFFER_SECONDS < self.expires_at


class MemoryTokenCache:
    def __init__(self, clock=time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens: Dict[str, CachedToken] = {}

    @staticmethod
    def key_for(client_id: str, token_url: str) -> str:
        return f"oauth2:{client_id}:{token_url}"

    def get(self, key: str) -> Optional[CachedToken]:
        with self._lock:
            token = self._tokens.get(key)
            if token is None:
                return None
            if not token.is_valid(self._clock()):
                logger.debug("Cached token %s expired", key)
                del self._tokens[key]
                return None
            return token

    def put(self, key: str, access_token: str, expires_in: float, token_type: str = "Bearer") -> CachedToken:
        token = CachedToken(access_token, self._clock() + float(expires_in), token_type)
        with self._lock:
            self._tokens[key] = token
        return token

    def remove(self, key: str) -> None:
        with self._lock:
            self._tokens.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._tokens.clear()
