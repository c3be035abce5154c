"""
Per-IP message rate limiting for the relay.

Usage:
    limiter = RateLimiter()
    if not limiter.allow(ip):
        ...  # close the socket
    limiter.forget(ip)  # on disconnect
"""
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict

from cabin.constants import RATE_BAN_SECONDS, RATE_MAX_MESSAGES, RATE_WINDOW_SECONDS


@dataclass
class _KeyState:
    hits: Deque[float] = field(default_factory=deque)
    banned_until: float = 0.0


class RateLimiter:
    """
    Sliding window of `max_messages` per `window` seconds; exceeding it bans
    the key for `ban_seconds`. Bans outlive forget().
    """

    def __init__(self, window: float = RATE_WINDOW_SECONDS, max_messages: int = RATE_MAX_MESSAGES,
                 ban_seconds: float = RATE_BAN_SECONDS) -> None:
        self.window = window
        self.max_messages = max_messages
        self.ban_seconds = ban_seconds
        self._keys: Dict[str, _KeyState] = {}

    def allow(self, key: str) -> bool:
        """
        Count one message for `key`.

        Args:
            key (str): Remote IP.

        Returns:
            bool: False while banned, and for the message that triggers a ban.
        """
        now = time.time()
        state = self._keys.setdefault(key, _KeyState())
        if now < state.banned_until:
            return False

        cutoff = now - self.window
        while state.hits and state.hits[0] < cutoff:
            state.hits.popleft()
        state.hits.append(now)

        if len(state.hits) <= self.max_messages:
            return True
        state.hits.clear()
        state.banned_until = now + self.ban_seconds
        return False

    def is_banned(self, key: str) -> bool:
        state = self._keys.get(key)
        return state is not None and time.time() < state.banned_until

    def forget(self, key: str) -> None:
        """Drop the window for `key`, keeping an active ban."""
        state = self._keys.get(key)
        if state is None:
            return
        if time.time() < state.banned_until:
            state.hits.clear()
        else:
            del self._keys[key]
