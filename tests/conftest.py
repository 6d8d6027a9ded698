"""
Fakes standing in for the network in the cordhttp tests.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Union

import pytest
from multidict import CIMultiDict

import cordhttp
from cordhttp.http import HTTPClient, InvalidTokenFlag


PROPERTIES_URL = 'https://properties.test/api/v2/properties/web'

PROPERTIES: Dict[str, Any] = {
    'properties': {
        'os': 'Windows',
        'browser': 'Chrome',
        'device': '',
        'browser_user_agent': (
            'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
        ),
        'browser_version': '120.0.0.0',
        'os_version': '10',
        'release_channel': 'stable',
        'system_locale': 'en-US',
        'client_build_number': 250000,
    },
    'encoded': 'eyJvcyI6IldpbmRvd3MifQ==',
}


class FakeResponse:
    def __init__(
        self,
        status: int = 200,
        body: Union[Dict[str, Any], List[Any], str, None] = None,
        *,
        headers: Optional[Mapping[str, str]] = None,
        reason: str = 'OK',
    ) -> None:
        self.status = status
        self.reason = reason
        self.headers = CIMultiDict(headers or {})
        if isinstance(body, (dict, list)):
            self._text = json.dumps(body)
            self.headers.setdefault('Content-Type', 'application/json')
        else:
            self._text = body or ''
            self.headers.setdefault('Content-Type', 'text/plain')

    async def text(self, encoding: str = 'utf-8') -> str:
        return self._text


class Call(NamedTuple):
    method: str
    url: str
    kwargs: Dict[str, Any]

    @property
    def headers(self) -> Dict[str, str]:
        return self.kwargs['headers']

    @property
    def json(self) -> Any:
        return json.loads(self.kwargs['data'])


Handler = Callable[[str, str, Dict[str, Any]], Any]


class _RequestContext:
    def __init__(self, handler: Handler, call: Call) -> None:
        self.handler = handler
        self.call = call

    async def __aenter__(self) -> FakeResponse:
        result = self.handler(self.call.method, self.call.url, self.call.kwargs)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, BaseException):
            raise result
        return result

    async def __aexit__(self, *args: Any) -> None:
        pass


class FakeSession:
    """Records every request and answers with whatever the handler returns.

    The identity metadata endpoint is always answered unless the handler
    deals with it itself.
    """

    def __init__(self, handler: Optional[Handler] = None) -> None:
        self.handler = handler or (lambda method, url, kwargs: None)
        self.calls: List[Call] = []
        self.closed = False

    def _dispatch(self, method: str, url: str, kwargs: Dict[str, Any]) -> Any:
        result = self.handler(method, url, kwargs)
        if result is None:
            if url == PROPERTIES_URL:
                return FakeResponse(200, PROPERTIES)
            return FakeResponse(200, {})
        return result

    @property
    def api_calls(self) -> List[Call]:
        return [call for call in self.calls if call.url != PROPERTIES_URL]

    def request(self, method: str, url: str, **kwargs: Any) -> _RequestContext:
        call = Call(method, url, kwargs)
        self.calls.append(call)
        return _RequestContext(self._dispatch, call)

    async def close(self) -> None:
        self.closed = True


class RecordingRatelimiter:
    """Grants every permit after an optional delay and records what it is told."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.acquired: List[str] = []
        self.updates: List[Dict[str, Any]] = []
        self.released = 0

    async def acquire(self, key: str) -> RecordingPermit:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.acquired.append(key)
        return RecordingPermit(self)

    def update(self, key, headers, *, retry_after=None, is_global=False) -> None:
        self.updates.append({'key': key, 'headers': dict(headers), 'retry_after': retry_after, 'is_global': is_global})


class RecordingPermit:
    def __init__(self, limiter: RecordingRatelimiter) -> None:
        self.limiter = limiter

    def release(self) -> None:
        self.limiter.released += 1


class CountingFlag(InvalidTokenFlag):
    __slots__ = ('transitions',)

    def __init__(self) -> None:
        super().__init__()
        self.transitions = 0

    def set(self) -> bool:
        flipped = super().set()
        if flipped:
            self.transitions += 1
        return flipped


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def recording_ratelimiter():
    return RecordingRatelimiter


@pytest.fixture
def counting_flag():
    return CountingFlag


@pytest.fixture
def make_http():
    def factory(session: FakeSession, **options: Any) -> HTTPClient:
        options.setdefault('token', 'Bot token')
        options.setdefault('token_invalidated', InvalidTokenFlag())
        http = HTTPClient(session, **options)  # type: ignore # fake session
        http.super_properties = cordhttp.SuperProperties.from_data(PROPERTIES)
        return http

    return factory


@pytest.fixture
def make_builder():
    def factory(session: FakeSession) -> cordhttp.ClientBuilder:
        return cordhttp.ClientBuilder().token('token').session(session).super_properties_url(PROPERTIES_URL)  # type: ignore

    return factory


@pytest.fixture
def properties_url():
    return PROPERTIES_URL


@pytest.fixture
def properties_payload():
    return PROPERTIES
