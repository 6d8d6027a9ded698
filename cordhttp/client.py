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

import logging
from types import TracebackType
from typing import TYPE_CHECKING, Any, Mapping, Optional, Type

import aiohttp

from .errors import ClientException, ConstructionFailed, DiscordException
from .http import HTTPClient, InvalidTokenFlag
from .ratelimiter import InMemoryRatelimiter
from .tracking import SuperProperties
from .utils import MISSING

if TYPE_CHECKING:
    from typing_extensions import Self

    from .http import Route
    from .mentions import AllowedMentions
    from .ratelimiter import Ratelimiter

# fmt: off
__all__ = (
    'Client',
    'ClientBuilder',
)
# fmt: on

_log = logging.getLogger(__name__)

SUPER_PROPERTIES_URL = 'https://cordapi.dolfi.es/api/v2/properties/web'
TOKEN_PREFIXES = ('Bot ', 'Bearer ')


class ClientBuilder:
    """A builder for :class:`Client`.

    Every setter returns the builder, so calls can be chained. Nothing
    happens until :meth:`build` is awaited.

    .. code-block:: python3

        client = await (
            ClientBuilder()
            .token('...')
            .timeout(5.0)
            .default_allowed_mentions(AllowedMentions.none())
            .build()
        )
    """

    def __init__(self) -> None:
        self._default_allowed_mentions: Optional[AllowedMentions] = None
        self._default_headers: Optional[Mapping[str, str]] = None
        self._proxy: Optional[str] = None
        self._use_http: bool = False
        self._ratelimiter: Optional[Ratelimiter] = MISSING
        self._remember_invalid_token: bool = True
        self._timeout: float = 10.0
        self._token: Optional[str] = None
        self._connector: Optional[aiohttp.BaseConnector] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._super_properties_url: str = SUPER_PROPERTIES_URL

    def __repr__(self) -> str:
        return f'<ClientBuilder proxy={self._proxy!r} timeout={self._timeout} remember_invalid_token={self._remember_invalid_token}>'

    def default_allowed_mentions(self, allowed_mentions: AllowedMentions) -> Self:
        """Sets the mention policy applied to messages that do not specify their own."""
        self._default_allowed_mentions = allowed_mentions
        return self

    def default_headers(self, headers: Mapping[str, str]) -> Self:
        """Sets headers sent with every request. Per-request headers take precedence."""
        self._default_headers = dict(headers)
        return self

    def proxy(self, proxy: str, use_http: bool = False) -> Self:
        """Sets a proxy every API request is sent to instead of Discord.

        This is not a traditional forward proxy. Requests keep their path and are
        sent to ``proxy`` (``host[:port]``), as done by HTTP proxies that
        handle rate limits on behalf of many clients.

        Parameters
        -----------
        proxy: :class:`str`
            The host (and optionally port) of the proxy.
        use_http: :class:`bool`
            Whether to talk to the proxy over plain HTTP instead of HTTPS.
        """
        self._proxy = proxy
        self._use_http = use_http
        return self

    def ratelimiter(self, ratelimiter: Optional[Ratelimiter]) -> Self:
        """Sets the rate limiter to use.

        If this is ``None`` then rate limiting is skipped entirely. If this
        is never called then an :class:`InMemoryRatelimiter` is used.
        """
        self._ratelimiter = ratelimiter
        return self

    def timeout(self, timeout: float) -> Self:
        """Sets the timeout for HTTP requests, in seconds. Defaults to 10.

        The timeout applies separately to waiting on the rate limiter and to
        waiting on Discord.
        """
        self._timeout = timeout
        return self

    def remember_invalid_token(self, remember: bool) -> Self:
        """Whether to remember that Discord rejected the token.

        If the client remembers encountering an Unauthorized response, then
        it will not process future requests. Defaults to ``True``.
        """
        self._remember_invalid_token = remember
        return self

    def token(self, token: str) -> Self:
        """Sets the token to use for HTTP requests.

        Tokens without a ``Bot `` or ``Bearer `` prefix are assumed to be bot tokens.
        The token is not validated here.
        """
        if not token.startswith(TOKEN_PREFIXES):
            token = 'Bot ' + token
        self._token = token
        return self

    def connector(self, connector: aiohttp.BaseConnector) -> Self:
        """Sets the connector of the session created by :meth:`build`."""
        self._connector = connector
        return self

    def session(self, session: aiohttp.ClientSession) -> Self:
        """Sets the session to use instead of creating one.

        The client takes ownership of the session and closes it.
        """
        self._session = session
        return self

    def super_properties_url(self, url: str) -> Self:
        """Sets the endpoint the client identity metadata is fetched from."""
        self._super_properties_url = url
        return self

    async def _fetch_super_properties(self, http: HTTPClient) -> SuperProperties:
        data = await http.get_super_properties(self._super_properties_url)
        super_properties = SuperProperties.from_data(data)
        _log.info(
            'Found user agent %s, build number %s.', super_properties.browser_user_agent, super_properties.build_number
        )
        return super_properties

    async def build(self) -> Client:
        """|coro|

        Builds the :class:`Client`.

        The client identity metadata is fetched before the client is returned,
        through the same request machinery every other request uses.

        Raises
        -------
        ConstructionFailed
            The client identity metadata could not be fetched. The session has
            been closed and no client was created.
        """
        session = self._session or aiohttp.ClientSession(connector=self._connector)
        ratelimiter = InMemoryRatelimiter() if self._ratelimiter is MISSING else self._ratelimiter
        token_invalidated = InvalidTokenFlag() if self._remember_invalid_token else None

        http = HTTPClient(
            session,
            token=self._token,
            ratelimiter=ratelimiter,
            token_invalidated=token_invalidated,
            proxy=self._proxy,
            use_http=self._use_http,
            timeout=self._timeout,
            default_headers=self._default_headers,
            default_allowed_mentions=self._default_allowed_mentions,
        )

        try:
            http.super_properties = await self._fetch_super_properties(http)
        except BaseException as exc:
            await http.close()
            if isinstance(exc, DiscordException):
                raise ConstructionFailed(f'Could not fetch the client properties: {exc}') from exc
            raise

        return Client(http)


class Client:
    """Represents a client connection to Discord's HTTP API.

    Clients are created with :class:`ClientBuilder`; a client always has its
    identity metadata. Endpoint helpers live on :attr:`http`.

    .. container:: operations

        .. describe:: async with x

            Closes the client when the block exits.

    Attributes
    -----------
    http: :class:`HTTPClient`
        The HTTP client every request goes through.
    """

    def __init__(self, http: HTTPClient) -> None:
        if http.super_properties is None:
            raise ClientException('Clients must be created with ClientBuilder.build()')
        self.http: HTTPClient = http

    def __repr__(self) -> str:
        return f'<Client proxy={self.http.proxy!r} timeout={self.http.timeout} token_invalidated={self.token_invalidated}>'

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        await self.close()

    @staticmethod
    def builder() -> ClientBuilder:
        """Returns a new :class:`ClientBuilder`."""
        return ClientBuilder()

    @property
    def super_properties(self) -> SuperProperties:
        """:class:`SuperProperties`: The client identity metadata."""
        return self.http.super_properties  # type: ignore # Always set, see __init__

    @property
    def ratelimiter(self) -> Optional[Ratelimiter]:
        return self.http.ratelimiter

    @property
    def token_invalidated(self) -> bool:
        """:class:`bool`: Whether Discord rejected the token and every request is refused."""
        flag = self.http.token_invalidated
        return flag is not None and flag.is_set()

    async def request(self, route: Route, **kwargs: Any) -> Any:
        """|coro|

        Sends a request to Discord. See :meth:`HTTPClient.request`.
        """
        return await self.http.request(route, **kwargs)

    async def close(self) -> None:
        """|coro|

        Closes the underlying session.
        """
        await self.http.close()
