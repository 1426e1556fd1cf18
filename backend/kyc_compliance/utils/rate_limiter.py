"""
Simple Memory-based Rate Limiter for the public verification links.
Keyed by client IP and limiter scope.
"""
import time
from fastapi import Request, HTTPException
from typing import Dict, Tuple

# In-memory storage: {(scope, ip): (timestamp, count)}
_rate_limit_store: Dict[Tuple[str, str], Tuple[float, int]] = {}


def rate_limit(requests: int, window: int, scope: str = "default"):
    """
    Dependency for rate limiting.
    Example: Depends(rate_limit(requests=5, window=60, scope="verify"))
    """
    def limiter(request: Request):
        ip = request.client.host if request.client else "unknown"
        key = (scope, ip)
        now = time.time()
        _prune(scope, window, now)

        if key not in _rate_limit_store:
            _rate_limit_store[key] = (now, 1)
            return True

        last_ts, count = _rate_limit_store[key]

        if count >= requests:
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Try again in {int(window - (now - last_ts))} seconds."
            )

        _rate_limit_store[key] = (last_ts, count + 1)
        return True

    return limiter


def _prune(scope: str, window: int, now: float):
    """Forget this scope's clients whose window has already expired."""
    expired = [k for k, (ts, _) in _rate_limit_store.items() if k[0] == scope and now - ts > window]
    for key in expired:
        del _rate_limit_store[key]


def reset_rate_limits():
    """Clear all counters."""
    _rate_limit_store.clear()
