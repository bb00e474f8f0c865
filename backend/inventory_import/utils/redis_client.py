"""Helper to create Redis clients, with TLS handling for hosted providers."""

from __future__ import annotations

import ssl
from typing import Any

from redis import Redis


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Create a Redis client for progress, control flags and staged uploads.

    Hosted providers such as Upstash only accept TLS, so their plain redis://
    URLs are upgraded and certificate verification is relaxed.

    Args:
        url: Redis connection URL (redis:// or rediss://)
        **kwargs: Extra client options (decode_responses, socket_connect_timeout, ...)
    """
    if ".upstash.io" in url and url.startswith("redis://"):
        url = url.replace("redis://", "rediss://", 1)

    client = Redis.from_url(url, **kwargs)

    if url.startswith("rediss://"):
        pool_kwargs = getattr(client.connection_pool, "connection_kwargs", None)
        if pool_kwargs is not None:
            pool_kwargs["ssl_cert_reqs"] = ssl.CERT_NONE

    return client
