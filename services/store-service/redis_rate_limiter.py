"""Redis-backed rate limiter."""
import logging
import time
from typing import Iterable, Optional, Tuple
import redis
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from auth import get_user_id_from_token
from monitoring import rate_limit_exceeded_counter, suspicious_activity_counter

logger = logging.getLogger(__name__)

# (pattern, key suffix, hits within the window that trigger an alert)
SUSPICIOUS_PATTERNS = (
    ("credential_stuffing", "401", 5),
    ("signature_tampering", "payment_400", 5),
    ("abuse", "4xx", 20),
)
SUSPICIOUS_WINDOW_SECONDS = 300


class RedisRateLimiter(BaseHTTPMiddleware):
    """
    Rate limiter using Redis sorted sets, shared across service instances.

    Dual-tier sliding window:
    - Per IP: high limit, many customers can share one address
    - Per user: lower limit, keyed on the bearer token's user id

    Payment verification is the endpoint worth protecting most: repeated
    failed verifications from one address are reported as suspicious.
    Redis errors fail open.
    """

    def __init__(
        self,
        app,
        redis_client: redis.Redis,
        requests_per_minute_ip: int = 600,
        requests_per_minute_user: int = 120,
        window_seconds: int = 60,
        exempt_paths: Iterable[str] = ("/health",)
    ):
        """
        Initialize Redis-backed rate limiter.

        Args:
            app: FastAPI application
            redis_client: Redis connection
            requests_per_minute_ip: Max requests per IP per window
            requests_per_minute_user: Max requests per user per window
            window_seconds: Sliding window size in seconds
            exempt_paths: Paths never rate limited
        """
        super().__init__(app)
        self.redis = redis_client
        self.requests_per_minute_ip = requests_per_minute_ip
        self.requests_per_minute_user = requests_per_minute_user
        self.window_seconds = window_seconds
        self.exempt_paths = frozenset(exempt_paths)

    def _check_rate_limit(
        self,
        key: str,
        limit: int,
        window: int
    ) -> Tuple[bool, int]:
        """
        Check rate limit using a Redis sorted set (sliding window).

        Drops timestamps older than the window, counts what is left, adds
        the current request and refreshes the key TTL in one pipeline.

        Returns:
            Tuple of (is_allowed, current_count)
        """
        try:
            current_time = time.time()
            window_start = current_time - window

            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            pipe.zadd(key, {str(current_time): current_time})
            pipe.expire(key, window + 1)
            results = pipe.execute()

            # Count BEFORE adding current request
            count = results[1]
            return count < limit, count + 1

        except redis.RedisError as e:
            logger.error(f"Redis rate limit error: {e}")
            return True, 0

    def _too_many_requests(self, limit_type: str, limit: int) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content={
                "detail": f"Rate limit exceeded for {limit_type}. "
                          f"Maximum {limit} requests per {self.window_seconds} seconds."
            },
            headers={"Retry-After": str(self.window_seconds)}
        )

    async def dispatch(self, request: Request, call_next):
        """
        Process request with dual-tier rate limiting.

        Returns:
            Response, or 429 if rate limited
        """
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        if "x-forwarded-for" in request.headers:
            client_ip = request.headers["x-forwarded-for"].split(",")[0].strip()

        user_id = None
        auth_header = request.headers.get("authorization")
        if auth_header and auth_header.startswith("Bearer "):
            user_id = get_user_id_from_token(auth_header.split(" ")[1])

        ip_allowed, ip_count = self._check_rate_limit(
            f"rate:ip:{client_ip}",
            self.requests_per_minute_ip,
            self.window_seconds
        )
        if not ip_allowed:
            rate_limit_exceeded_counter.add(1, {"limit_type": "ip"})
            logger.warning("IP rate limit exceeded", extra={
                "client_ip": client_ip,
                "endpoint": request.url.path,
                "requests_in_window": ip_count,
                "limit": self.requests_per_minute_ip
            })
            return self._too_many_requests("IP", self.requests_per_minute_ip)

        if user_id:
            user_allowed, user_count = self._check_rate_limit(
                f"rate:user:{user_id}",
                self.requests_per_minute_user,
                self.window_seconds
            )
            if not user_allowed:
                rate_limit_exceeded_counter.add(1, {"limit_type": "user"})
                logger.warning("User rate limit exceeded", extra={
                    "user_id": user_id,
                    "client_ip": client_ip,
                    "endpoint": request.url.path,
                    "requests_in_window": user_count,
                    "limit": self.requests_per_minute_user
                })
                return self._too_many_requests("user", self.requests_per_minute_user)

        response = await call_next(request)

        self._detect_suspicious_activity(request, response.status_code, client_ip, user_id)

        return response

    def _detect_suspicious_activity(
        self,
        request: Request,
        status_code: int,
        client_ip: str,
        user_id: Optional[str]
    ) -> None:
        """Count failures per IP over five minutes and flag repeat offenders."""
        matches = []
        if status_code == 401:
            matches.append("401")
        if status_code == 400 and request.url.path.startswith("/payments/verify"):
            matches.append("payment_400")
        if 400 <= status_code < 500:
            matches.append("4xx")
        if not matches:
            return

        try:
            current_time = time.time()
            for pattern, suffix, threshold in SUSPICIOUS_PATTERNS:
                if suffix not in matches:
                    continue
                key = f"suspicious:{suffix}:{client_ip}"
                self.redis.zadd(key, {str(current_time): current_time})
                self.redis.expire(key, SUSPICIOUS_WINDOW_SECONDS + 1)

                count = self.redis.zcount(key, current_time - SUSPICIOUS_WINDOW_SECONDS, current_time)
                if count >= threshold:
                    suspicious_activity_counter.add(1, {"type": pattern})
                    logger.warning("Suspicious activity detected", extra={
                        "pattern": pattern,
                        "client_ip": client_ip,
                        "user_id": user_id,
                        "endpoint": request.url.path,
                        "count": count
                    })
        except redis.RedisError as e:
            logger.error(f"Error detecting suspicious activity: {e}")
