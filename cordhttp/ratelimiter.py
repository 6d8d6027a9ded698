"""
The MIT License (MIT)

Copyright (c) 2015-present Rapptz

Permission is hereby granted, free of charge, to any person obtaining a
copy of this software and associated documentation files (the "Software"),
to deal in the Software without restriction, including without limitation
the rights to use, copy, modify, merge, publish, distribute, sublicense,
and/or sell copies of the Software, and to permit persons to whom the
Software is furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in
all copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS
OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING
FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER
DEALINGS IN THE SOFTWARE.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple, runtime_checkable

from . import utils
from .errors import RateLimited

# fmt: off
__all__ = (
    'Ratelimiter',
    'RatelimitPermit',
    'InMemoryRatelimiter',
)
# fmt: on

_log = logging.getLogger(__name__)


@runtime_checkable
class RatelimitPermit(Protocol):
    """Authorisation to send exactly one request.

    Releasing a permit more than once must be harmless.
    """

    def release(self) -> None:
        ...


@runtime_checkable
class Ratelimiter(Protocol):
    """The interface a rate limiter must implement to be used by the HTTP client.

    The client calls :meth:`acquire` with the bucket key of the route before
    sending anything, then :meth:`update` with the response headers once the
    response has arrived, and finally releases the permit.

    Implementations own their state and synchronisation entirely.
    """

    async def acquire(self, key: str) -> RatelimitPermit:
        """Waits until a request to the bucket may be sent.

        May raise :exc:`RateLimited` instead of waiting.
        """
        ...

    def update(
        self,
        key: str,
        headers: Mapping[str, str],
        *,
        retry_after: Optional[float] = None,
        is_global: bool = False,
    ) -> None:
        """Feeds back the rate limit headers of a response.

        ``retry_after`` is given when Discord answered with a 429.
        """
        ...


class Bucket:
    """Represents a Discord rate limit.

    This is similar to a semaphore except tailored to Discord's rate limits. This is aware of
    the expiry of a token window, along with the number of tokens available. The goal of this
    design is to increase throughput of requests being sent concurrently rather than forcing
    everything into a single lock queue per route.
    """

    __slots__ = (
        'limit',
        'remaining',
        'outgoing',
        'reset_after',
        'expires',
        'dirty',
        '_last_request',
        '_max_ratelimit_timeout',
        '_loop',
        '_pending_requests',
        '_sleeping',
        '_refresh_task',
    )

    def __init__(self, max_ratelimit_timeout: Optional[float]) -> None:
        self.limit: int = 1
        self.remaining: int = self.limit
        self.outgoing: int = 0
        self.reset_after: float = 0.0
        self.expires: Optional[float] = None
        self.dirty: bool = False
        self._max_ratelimit_timeout: Optional[float] = max_ratelimit_timeout
        self._loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        self._pending_requests: deque[asyncio.Future[Any]] = deque()
        # Only a single refresh should be sleeping at a time.
        # The refresh that is sleeping is ultimately responsible for freeing the semaphore
        # for the requests currently pending.
        self._sleeping: asyncio.Lock = asyncio.Lock()
        self._refresh_task: Optional[asyncio.Task[None]] = None
        self._last_request: float = self._loop.time()

    def __repr__(self) -> str:
        return (
            f'<RateLimitBucket limit={self.limit} remaining={self.remaining} pending_requests={len(self._pending_requests)}>'
        )

    def reset(self) -> None:
        self.remaining = self.limit - self.outgoing
        self.expires = None
        self.reset_after = 0.0
        self.dirty = False

    def update(self, headers: Mapping[str, str], *, use_clock: bool = False) -> None:
        self.limit = int(headers.get('X-Ratelimit-Limit', 1))

        if self.dirty:
            self.remaining = min(int(headers.get('X-Ratelimit-Remaining', 0)), self.limit - self.outgoing)
        else:
            self.remaining = int(headers.get('X-Ratelimit-Remaining', 0))
            self.dirty = True

        if 'X-Ratelimit-Reset-After' in headers or 'X-Ratelimit-Reset' in headers:
            self.reset_after = utils._parse_ratelimit_header(headers, use_clock=use_clock)
            self.expires = self._loop.time() + self.reset_after

    def exhaust(self, retry_after: float) -> None:
        self.remaining = 0
        self.dirty = True
        self.reset_after = retry_after
        self.expires = self._loop.time() + retry_after

    def _wake_next(self) -> None:
        while self._pending_requests:
            future = self._pending_requests.popleft()
            if not future.done():
                future.set_result(None)
                break

    def _wake(self, count: int = 1, *, exception: Optional[RateLimited] = None) -> None:
        awaken = 0
        while self._pending_requests:
            future = self._pending_requests.popleft()
            if not future.done():
                if exception:
                    future.set_exception(exception)
                else:
                    future.set_result(None)
                awaken += 1

            if awaken >= count:
                break

    async def _refresh(self) -> None:
        error = self._max_ratelimit_timeout and self.reset_after > self._max_ratelimit_timeout
        exception = RateLimited(self.reset_after) if error else None
        async with self._sleeping:
            if not error:
                delay = self.reset_after if self.expires is None else self.expires - self._loop.time()
                await asyncio.sleep(max(delay, 0.0))

        self.reset()
        self._wake(self.remaining, exception=exception)

    def _schedule_refresh(self) -> None:
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = self._loop.create_task(self._refresh())

    def is_expired(self) -> bool:
        return self.expires is not None and self._loop.time() > self.expires

    def is_inactive(self) -> bool:
        delta = self._loop.time() - self._last_request
        return delta >= 300 and self.outgoing == 0 and len(self._pending_requests) == 0

    async def acquire(self) -> None:
        self._last_request = self._loop.time()
        if self.is_expired():
            self.reset()

        if self._max_ratelimit_timeout is not None and self.expires is not None:
            # Check if we can pre-emptively block this request for having too large of a timeout
            current_reset_after = self.expires - self._loop.time()
            if current_reset_after > self._max_ratelimit_timeout:
                raise RateLimited(current_reset_after)

        # Nothing in flight will release into this bucket, so the window has to be waited out here
        if self.remaining <= 0 and self.outgoing == 0:
            self._schedule_refresh()

        while self.remaining <= 0:
            future = self._loop.create_future()
            self._pending_requests.append(future)
            try:
                await future
            except BaseException:
                future.cancel()
                # A wake-up meant for this waiter is handed to the next one
                if self.remaining > 0 and not future.cancelled():
                    self._wake_next()
                raise

        self.remaining -= 1
        self.outgoing += 1

    def release(self) -> None:
        self.outgoing -= 1
        tokens = self.remaining - self.outgoing
        # Check whether the rate limit needs to be pre-emptively slept on
        if not self._sleeping.locked():
            if tokens <= 0:
                self._schedule_refresh()
            elif self._pending_requests:
                exception = (
                    RateLimited(self.reset_after)
                    if self._max_ratelimit_timeout and self.reset_after > self._max_ratelimit_timeout
                    else None
                )
                self._wake(tokens, exception=exception)


class _BucketPermit:
    __slots__ = ('bucket', '_released')

    def __init__(self, bucket: Bucket) -> None:
        self.bucket: Bucket = bucket
        self._released: bool = False

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self.bucket.release()


class InMemoryRatelimiter:
    """The default rate limiter, keeping every bucket in process memory.

    Bucket keys are expected in the ``'{route key}:{major parameters}'`` form
    produced by :attr:`Route.bucket`. Once Discord reports the hash of the bucket a
    route belongs to (``X-Ratelimit-Bucket``), every route sharing that hash shares
    the same state.

    Parameters
    -----------
    max_ratelimit_timeout: Optional[:class:`float`]
        The maximum number of seconds to wait for a bucket before raising
        :exc:`RateLimited` instead. Values lower than 30 are raised to 30.
        ``None`` (the default) waits for as long as needed.
    use_clock: :class:`bool`
        Whether to compute the reset from ``X-Ratelimit-Reset`` and the local
        clock rather than ``X-Ratelimit-Reset-After``.
    """

    def __init__(self, *, max_ratelimit_timeout: Optional[float] = None, use_clock: bool = False) -> None:
        self.max_ratelimit_timeout: Optional[float] = max(30.0, max_ratelimit_timeout) if max_ratelimit_timeout else None
        self.use_clock: bool = use_clock
        # Route key -> Bucket hash
        self._bucket_hashes: Dict[str, str] = {}
        # Bucket hash + major parameters -> Bucket
        # or
        # Route key + major parameters -> Bucket
        # The latter is used until Discord tells us the bucket hash
        # When this reaches 256 elements, it will try to evict based off of expiry
        self._buckets: Dict[str, Bucket] = {}
        self._global_over: Optional[asyncio.Event] = None
        self._global_reset: Optional[asyncio.TimerHandle] = None

    def __repr__(self) -> str:
        return f'<InMemoryRatelimiter buckets={len(self._buckets)} global_limited={self.is_globally_limited()}>'

    @staticmethod
    def _split_key(key: str) -> Tuple[str, str]:
        route_key, _, major_parameters = key.rpartition(':')
        return route_key, major_parameters

    def _resolve_key(self, key: str) -> str:
        route_key, major_parameters = self._split_key(key)
        try:
            bucket_hash = self._bucket_hashes[route_key]
        except KeyError:
            return key
        return f'{bucket_hash}:{major_parameters}'

    def _try_clear_expired_buckets(self) -> None:
        if len(self._buckets) < 256:
            return

        keys = [key for key, bucket in self._buckets.items() if bucket.is_inactive()]
        for key in keys:
            del self._buckets[key]

    def get_bucket(self, key: str) -> Bucket:
        internal_key = self._resolve_key(key)
        try:
            value = self._buckets[internal_key]
        except KeyError:
            self._buckets[internal_key] = value = Bucket(self.max_ratelimit_timeout)
            self._try_clear_expired_buckets()
        return value

    def is_globally_limited(self) -> bool:
        return self._global_over is not None and not self._global_over.is_set()

    async def acquire(self, key: str) -> RatelimitPermit:
        if self._global_over is not None and not self._global_over.is_set():
            await self._global_over.wait()

        bucket = self.get_bucket(key)
        await bucket.acquire()
        return _BucketPermit(bucket)

    def update(
        self,
        key: str,
        headers: Mapping[str, str],
        *,
        retry_after: Optional[float] = None,
        is_global: bool = False,
    ) -> None:
        route_key, major_parameters = self._split_key(key)
        internal_key = self._resolve_key(key)
        bucket = self.get_bucket(key)

        discord_hash = headers.get('X-Ratelimit-Bucket')
        if discord_hash is not None:
            bucket_hash = self._bucket_hashes.get(route_key)
            # If the hash Discord has provided is different from our current hash something changed
            if bucket_hash != discord_hash:
                if bucket_hash is not None:
                    # This is either a sub-ratelimit or the rate limit information genuinely changed.
                    # There is no way to tell them apart, so this is only logged.
                    _log.debug('A route (%s) has changed hashes: %s -> %s.', route_key, bucket_hash, discord_hash)
                else:
                    _log.debug('%s has found its initial rate limit bucket hash (%s).', route_key, discord_hash)

                self._bucket_hashes[route_key] = discord_hash
                recalculated_key = f'{discord_hash}:{major_parameters}'
                shared = self._buckets.get(recalculated_key)
                if recalculated_key != internal_key:
                    self._buckets.pop(internal_key, None)
                if shared is None:
                    self._buckets[recalculated_key] = bucket
                else:
                    # Another route already owns this bucket
                    bucket = shared

        if retry_after is not None:
            if is_global:
                _log.warning('Global rate limit has been hit. Blocking every bucket for %.2f seconds.', retry_after)
                self._block_globally(retry_after)
            else:
                bucket.exhaust(retry_after)
        elif 'X-Ratelimit-Remaining' in headers:
            bucket.update(headers, use_clock=self.use_clock)
            if bucket.remaining == 0:
                _log.debug(
                    'A rate limit bucket (%s) has been exhausted. Pre-emptively rate limiting...',
                    discord_hash or route_key,
                )

    def _block_globally(self, retry_after: float) -> None:
        loop = asyncio.get_running_loop()
        if self._global_over is None:
            self._global_over = asyncio.Event()

        self._global_over.clear()
        if self._global_reset is not None:
            self._global_reset.cancel()
        self._global_reset = loop.call_later(retry_after, self._global_over.set)
