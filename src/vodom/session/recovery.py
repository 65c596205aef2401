"""Consecutive-failure countdown that triggers automatic re-anchoring."""

from __future__ import annotations


class ResetCountdown:
    """Countdown over consecutive estimation failures.

    The countdown is *armed* while ``remaining > 0`` and *tripped* when a
    failure brings it to 0. Any success reloads it to ``limit``. After the
    session has re-anchored it calls :meth:`rearm` to reload it.

    A limit of 0 disables the policy: failures never trip it.
    """

    def __init__(self, limit: int = 0) -> None:
        if limit < 0:
            raise ValueError(f"Reset countdown must be >= 0, got {limit}")
        self._limit = int(limit)
        self._remaining = self._limit

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def enabled(self) -> bool:
        return self._limit > 0

    @property
    def armed(self) -> bool:
        return self._remaining > 0

    @property
    def tripped(self) -> bool:
        return self.enabled and self._remaining == 0

    def on_success(self) -> None:
        """Reload the countdown after a valid pose."""
        self._remaining = self._limit

    def on_failure(self) -> bool:
        """Count one failure.

        Returns:
            True exactly when this failure trips the countdown
        """
        if self._remaining == 0:
            return False
        self._remaining -= 1
        return self._remaining == 0

    def rearm(self) -> None:
        """Reload the countdown after re-anchoring."""
        self._remaining = self._limit

    def copy(self) -> ResetCountdown:
        clone = ResetCountdown(self._limit)
        clone._remaining = self._remaining
        return clone

    def __repr__(self) -> str:
        return f"ResetCountdown(remaining={self._remaining}, limit={self._limit})"
