"""
Rate Limiting Middleware
Sliding-window limits for the machine-to-machine webhooks
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Tuple, Optional
import threading
import logging

from facility_ledger.core.config import settings
from facility_ledger.core.security import API_KEY_HEADER

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Thread-safe in-memory rate limiter using sliding window algorithm.
    State lives in the process; a multi-worker deployment gets one window per worker.
    """

    def __init__(self, per_minute: Optional[int] = None):
        self._requests: Dict[str, list] = defaultdict(list)
        self._lock = threading.Lock()
        self._last_sweep = datetime.utcnow()

        webhook_limit = per_minute or settings.WEBHOOK_RATE_LIMIT_PER_MINUTE

        # Rate limit configurations
        self.limits = {
            '/api/v1/webhooks/': (webhook_limit, 60),

            # Default limit for all other endpoints
            'default': (100, 60),  # 100 requests per minute
        }

    def _get_client_ip(self, request: Request) -> str:
        """Get client IP address from request"""
        # Check for forwarded headers (when behind proxy)
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        # Direct connection
        if request.client:
            return request.client.host

        return "unknown"

    def _get_rate_limit_key(self, request: Request) -> str:
        """
        Create a unique key for rate limiting.
        Combines IP address with a prefix of the API key.
        """
        ip = self._get_client_ip(request)

        api_key = request.headers.get(API_KEY_HEADER, "")
        key_id = api_key[:8] if api_key else "anonymous"

        return f"{ip}:{key_id}"

    def _resolve_limit(self, path: str) -> Tuple[int, int]:
        for pattern, (limit, window) in self.limits.items():
            if pattern != 'default' and path.startswith(pattern):
                return limit, window
        return self.limits['default']

    def _cleanup_old_requests(self, key: str, window_seconds: int):
        """Remove requests outside the time window, and the key once none are left"""
        cutoff = datetime.utcnow() - timedelta(seconds=window_seconds)
        recent = [
            timestamp for timestamp in self._requests.get(key, [])
            if timestamp > cutoff
        ]
        if recent:
            self._requests[key] = recent
        else:
            self._requests.pop(key, None)

    def _sweep(self, window_seconds: int):
        """Evict idle keys at most once per window"""
        now = datetime.utcnow()
        if now - self._last_sweep < timedelta(seconds=window_seconds):
            return
        self._last_sweep = now
        for key in list(self._requests):
            self._cleanup_old_requests(key, window_seconds)

    def is_allowed(self, request: Request) -> Tuple[bool, Optional[Dict]]:
        """
        Check if the request is allowed under rate limiting rules.

        Returns:
            Tuple of (is_allowed, rate_limit_info)
        """
        path = request.url.path

        if request.method in ['GET', 'HEAD', 'OPTIONS']:
            return True, None

        limit, window = self._resolve_limit(path)
        key = f"{path}:{self._get_rate_limit_key(request)}"

        with self._lock:
            self._sweep(window)
            self._cleanup_old_requests(key, window)

            current_count = len(self._requests.get(key, []))

            if current_count >= limit:
                # Calculate retry-after
                oldest_request = min(self._requests[key]) if self._requests[key] else datetime.utcnow()
                retry_after = int((oldest_request + timedelta(seconds=window) - datetime.utcnow()).total_seconds())

                logger.warning(f"Rate limit exceeded for {key}: {current_count}/{limit} requests")

                return False, {
                    'limit': limit,
                    'remaining': 0,
                    'reset': retry_after,
                    'retry_after': max(1, retry_after)
                }

            # Record the request
            self._requests[key].append(datetime.utcnow())

            return True, {
                'limit': limit,
                'remaining': limit - current_count - 1,
                'reset': window
            }

    def reset(self):
        with self._lock:
            self._requests.clear()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """FastAPI middleware for rate limiting"""

    def __init__(self, app, per_minute: Optional[int] = None, enabled: Optional[bool] = None):
        super().__init__(app)
        self.rate_limiter = RateLimiter(per_minute)
        self.enabled = settings.RATE_LIMIT_ENABLED if enabled is None else enabled

    async def dispatch(self, request: Request, call_next):
        if not self.enabled:
            return await call_next(request)

        # Skip rate limiting for non-API routes
        if not request.url.path.startswith('/api/'):
            return await call_next(request)

        is_allowed, rate_info = self.rate_limiter.is_allowed(request)

        if not is_allowed:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    'success': False,
                    'error': 'Too many requests. Please try again later.',
                    'humanReadable': {
                        'en': 'Too many requests. Please try again in a minute.',
                        'ar': 'عدد الطلبات كبير. حاول مرة أخرى بعد دقيقة.'
                    },
                    'retry_after': rate_info.get('retry_after', 60)
                },
                headers={
                    'Retry-After': str(rate_info.get('retry_after', 60)),
                    'X-RateLimit-Limit': str(rate_info.get('limit', 0)),
                    'X-RateLimit-Remaining': '0',
                    'X-RateLimit-Reset': str(rate_info.get('reset', 60))
                }
            )

        response = await call_next(request)

        # Add rate limit headers to response
        if rate_info:
            response.headers['X-RateLimit-Limit'] = str(rate_info['limit'])
            response.headers['X-RateLimit-Remaining'] = str(rate_info['remaining'])
            response.headers['X-RateLimit-Reset'] = str(rate_info['reset'])

        return response
