"""
Shared client instances.

redis.from_url() does not connect until the first command, so importing this
module is safe without a running Redis (tests, local dev).
"""
import redis

from leadfunnel.config import REDIS_URL

redis_client = redis.from_url(
    REDIS_URL,
    decode_responses=True,
    socket_connect_timeout=1,
    socket_timeout=1,
)
