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
from typing import (
    TYPE_CHECKING,
    Any,
    ClassVar,
    Coroutine,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
    Union,
)
from urllib.parse import quote as _uriquote

import aiohttp

from . import utils
from .errors import (
    DiscordServerError,
    Forbidden,
    HTTPException,
    NotFound,
    RateLimited,
    RequestTimeout,
    TokenInvalidated,
    TransportError,
    Unauthorized,
)
from .tracking import ContextProperties, context_properties_for
from .utils import MISSING

if TYPE_CHECKING:
    from typing_extensions import Self

    from .automod import AutoModTriggerMetadata
    from .mentions import AllowedMentions
    from .ratelimiter import Ratelimiter, RatelimitPermit
    from .tracking import SuperProperties

    T = TypeVar('T')
    Response = Coroutine[Any, Any, T]
    Snowflake = Union[int, str]

# fmt: off
__all__ = (
    'Route',
    'HTTPClient',
    'InvalidTokenFlag',
)
# fmt: on

INTERNAL_API_VERSION = 9
DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/109.0.0.0 Safari/537.36'
)
_log = logging.getLogger(__name__)


async def json_or_text(response: aiohttp.ClientResponse) -> Union[Dict[str, Any], str]:
    text = await response.text(encoding='utf-8')
    try:
        # The content type may carry parameters, e.g. a charset
        if response.headers['content-type'].split(';')[0].strip() == 'application/json':
            return utils._from_json(text)
    except KeyError:
        # Thanks Cloudflare
        pass

    return text


class Route:
    r"""Represents a single API endpoint call.

    The path is kept as a template so that requests to the same endpoint share
    a rate limit bucket no matter the minor parameters (e.g. message IDs). Only
    the major parameters (channel, guild and webhook) split buckets.

    Parameters
    -----------
    method: :class:`str`
        The HTTP method.
    path: :class:`str`
        The path template, relative to the API base, e.g. ``'/channels/{channel_id}'``.
    metadata: Optional[:class:`str`]
        Differentiates known sub rate limits of the same endpoint.
    mentions: :class:`bool`
        Whether the endpoint accepts an ``allowed_mentions`` object.
    \*\*parameters
        The values substituted in the path template.
    """

    BASE: ClassVar[str] = f'https://discord.com/api/v{INTERNAL_API_VERSION}'

    def __init__(
        self, method: str, path: str, *, metadata: Optional[str] = None, mentions: bool = False, **parameters: Any
    ) -> None:
        self.path: str = path
        self.method: str = method
        # Metadata is a special string used to differentiate between known sub rate limits
        # Since these can't be handled generically, this is the next best way to do so.
        self.metadata: Optional[str] = metadata
        self.supports_mentions: bool = mentions
        self.is_raw: bool = False
        formatted = path
        if parameters:
            formatted = path.format_map({k: _uriquote(v) if isinstance(v, str) else v for k, v in parameters.items()})
        self.formatted_path: str = formatted
        self.url: str = self.BASE + formatted

        # Major parameters
        self.channel_id: Optional[Snowflake] = parameters.get('channel_id')
        self.guild_id: Optional[Snowflake] = parameters.get('guild_id')
        self.webhook_id: Optional[Snowflake] = parameters.get('webhook_id')
        self.webhook_token: Optional[str] = parameters.get('webhook_token')

    @classmethod
    def raw(cls, method: str, url: str) -> Self:
        """Creates a route to an absolute URL outside of the API.

        These are never rewritten to go through a proxy.
        """
        route = cls(method, url)
        route.url = url
        route.is_raw = True
        return route

    def __repr__(self) -> str:
        return f'<Route method={self.method!r} path={self.path!r}>'

    @property
    def key(self) -> str:
        """The bucket key is used to represent the route in various mappings."""
        if self.metadata:
            return f'{self.method} {self.path}:{self.metadata}'
        return f'{self.method} {self.path}'

    @property
    def major_parameters(self) -> str:
        """Returns the major parameters formatted a string.

        This needs to be appended to a bucket hash to constitute as a full rate limit key.
        """
        return '+'.join(
            str(k) for k in (self.channel_id, self.guild_id, self.webhook_id, self.webhook_token) if k is not None
        )

    @property
    def bucket(self) -> str:
        """The key handed to the rate limiter."""
        return f'{self.key}:{self.major_parameters}'

    def proxied_url(self, proxy: str, *, use_http: bool = False) -> str:
        """The URL of the route when sent through a proxy at ``proxy`` (``host[:port]``).

        The path is preserved, only the scheme and authority change.
        """
        if self.is_raw:
            return self.url
        scheme = 'http' if use_http else 'https'
        return f'{scheme}://{proxy}/api/v{INTERNAL_API_VERSION}{self.formatted_path}'


class InvalidTokenFlag:
    """Remembers whether Discord has rejected the client's token.

    The flag only ever goes from unset to set. Checking and setting happen
    without yielding to the event loop, so concurrent requests observe exactly
    one transition.

    The flag is bound to a single event loop and is not thread safe.
    """

    __slots__ = ('_value',)

    def __init__(self) -> None:
        self._value: bool = False

    def __repr__(self) -> str:
        return f'<InvalidTokenFlag value={self._value}>'

    def __bool__(self) -> bool:
        return self._value

    def is_set(self) -> bool:
        return self._value

    def set(self) -> bool:
        """Sets the flag. Returns ``True`` if this call is the one that set it."""
        if self._value:
            return False
        self._value = True
        return True


class HTTPClient:
    """Represents an HTTP client sending HTTP requests to the Discord API.

    Every request goes through :meth:`request`, which checks whether the token
    is known to be invalid, waits for the rate limiter, builds the headers,
    sends the request under a deadline and classifies the response. Nothing is
    retried automatically.

    The client owns its session and closes it in :meth:`close`.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        token: Optional[str] = None,
        ratelimiter: Optional[Ratelimiter] = None,
        token_invalidated: Optional[InvalidTokenFlag] = None,
        proxy: Optional[str] = None,
        use_http: bool = False,
        timeout: float = 10.0,
        default_headers: Optional[Mapping[str, str]] = None,
        default_allowed_mentions: Optional[AllowedMentions] = None,
    ) -> None:
        self.__session: aiohttp.ClientSession = session
        self.token: Optional[str] = token
        self.ratelimiter: Optional[Ratelimiter] = ratelimiter
        self.token_invalidated: Optional[InvalidTokenFlag] = token_invalidated
        self.proxy: Optional[str] = proxy
        self.use_http: bool = use_http
        self.timeout: float = timeout
        self.default_headers: Dict[str, str] = dict(default_headers) if default_headers else {}
        self.default_allowed_mentions: Optional[AllowedMentions] = default_allowed_mentions
        self.super_properties: Optional[SuperProperties] = None

    @property
    def user_agent(self) -> str:
        if self.super_properties is not None:
            return self.super_properties.browser_user_agent or DEFAULT_USER_AGENT
        return DEFAULT_USER_AGENT

    def _base_headers(self) -> Dict[str, str]:
        headers = {
            'Accept-Language': 'en-US',
            'Cache-Control': 'no-cache',
            'Connection': 'keep-alive',
            'Origin': 'https://discord.com',
            'Pragma': 'no-cache',
            'Referer': 'https://discord.com/channels/@me',
            'Sec-CH-UA-Mobile': '?0',
            'Sec-CH-UA-Platform': '"Windows"',
            'Sec-Fetch-Dest': 'empty',
            'Sec-Fetch-Mode': 'cors',
            'Sec-Fetch-Site': 'same-origin',
            'User-Agent': self.user_agent,
            'X-Discord-Locale': 'en-US',
            'X-Debug-Options': 'bugReporterEnabled',
        }

        sp = self.super_properties
        if sp is not None:
            headers['X-Super-Properties'] = sp.encoded
            if sp.browser_version:
                headers['Sec-CH-UA'] = '"Google Chrome";v="{0}", "Chromium";v="{0}", ";Not A Brand";v="99"'.format(
                    sp.browser_version.split('.')[0]
                )
        return headers

    def _with_default_mentions(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.default_allowed_mentions is None or 'allowed_mentions' in payload:
            return payload
        return {**payload, 'allowed_mentions': self.default_allowed_mentions.to_dict()}

    def _form_with_default_mentions(self, form: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        fields = []
        for field in form:
            if field.get('name') == 'payload_json':
                payload = self._with_default_mentions(utils._from_json(field['value']))
                field = {**field, 'value': utils._to_json(payload)}
            fields.append(field)
        return fields

    def _prepare(
        self,
        route: Route,
        *,
        json: Optional[Any],
        form: Optional[List[Dict[str, Any]]],
        params: Optional[Mapping[str, Any]],
        headers: Optional[Mapping[str, str]],
        reason: Optional[str],
        auth: bool,
        context_properties: Optional[ContextProperties],
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {}

        # Header creation
        if route.is_raw:
            final_headers = {'User-Agent': self.user_agent}
        else:
            final_headers = self._base_headers()

        # Header modification
        if self.token is not None and auth:
            final_headers['Authorization'] = self.token

        final_headers.update(self.default_headers)
        if headers:
            final_headers.update(headers)

        if context_properties is MISSING:
            context_properties = context_properties_for(route)
        if isinstance(context_properties, ContextProperties):
            final_headers['X-Context-Properties'] = context_properties.value

        if reason:
            final_headers['X-Audit-Log-Reason'] = _uriquote(reason)

        if route.supports_mentions:
            if isinstance(json, dict):
                json = self._with_default_mentions(json)
            if form:
                form = self._form_with_default_mentions(form)

        if json is not None:
            final_headers['Content-Type'] = 'application/json'
            kwargs['data'] = utils._to_json(json)

        if form:
            # With quote_fields=True '[' and ']' in file field names are escaped, which Discord does not support
            form_data = aiohttp.FormData(quote_fields=False)
            for field in form:
                form_data.add_field(**field)
            kwargs['data'] = form_data

        if params is not None:
            kwargs['params'] = params

        kwargs['headers'] = final_headers
        return kwargs

    async def _send(
        self, method: str, url: str, kwargs: Dict[str, Any]
    ) -> Tuple[aiohttp.ClientResponse, Union[Dict[str, Any], str]]:
        async with self.__session.request(method, url, **kwargs) as response:
            _log.debug('%s %s with %s has returned %s.', method, url, kwargs.get('data'), response.status)
            data = await json_or_text(response)
            return response, data

    async def request(
        self,
        route: Route,
        *,
        json: Optional[Any] = None,
        form: Optional[List[Dict[str, Any]]] = None,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        reason: Optional[str] = None,
        auth: bool = True,
        context_properties: Optional[ContextProperties] = MISSING,
    ) -> Any:
        """|coro|

        Sends a request to Discord.

        Parameters
        -----------
        route: :class:`Route`
            The endpoint to call.
        json: Optional[Any]
            The JSON body of the request.
        form: Optional[List[Dict[:class:`str`, Any]]]
            Multipart form fields, as accepted by :meth:`aiohttp.FormData.add_field`.
        params: Optional[Mapping[:class:`str`, Any]]
            The query string parameters.
        headers: Optional[Mapping[:class:`str`, :class:`str`]]
            Headers overriding the ones the client would send.
        reason: Optional[:class:`str`]
            The audit log reason.
        auth: :class:`bool`
            Whether to send the ``Authorization`` header.
        context_properties: Optional[:class:`ContextProperties`]
            The ``X-Context-Properties`` to send. By default these are looked up
            from the route. ``None`` sends none.

        Raises
        -------
        TokenInvalidated
            The token was already rejected, nothing was sent.
        Unauthorized
            Discord rejected the token.
        RateLimited
            Discord answered with a 429, or the rate limiter refused to wait.
            A 429 that does not say how long to wait has a ``retry_after`` of 0.
        RequestTimeout
            The rate limiter or Discord did not answer in time.
        TransportError
            The request could not be sent or the response could not be read.
        HTTPException
            Any other unsuccessful status.

        Returns
        --------
        Union[Dict[:class:`str`, Any], List[Any], :class:`str`]
            The decoded body of the response.
        """
        method = route.method
        key = route.bucket

        invalidated = self.token_invalidated
        if invalidated is not None and invalidated.is_set():
            raise TokenInvalidated()

        ratelimiter = self.ratelimiter
        permit: Optional[RatelimitPermit] = None
        if ratelimiter is not None:
            try:
                permit = await asyncio.wait_for(ratelimiter.acquire(key), timeout=self.timeout)
            except asyncio.TimeoutError:
                _log.debug('%s %s could not acquire rate limit bucket %s in time.', method, route.url, key)
                raise RequestTimeout('ratelimit', self.timeout) from None

        try:
            kwargs = self._prepare(
                route,
                json=json,
                form=form,
                params=params,
                headers=headers,
                reason=reason,
                auth=auth,
                context_properties=context_properties,
            )

            # Proxy support
            url = route.url if self.proxy is None else route.proxied_url(self.proxy, use_http=self.use_http)

            try:
                response, data = await asyncio.wait_for(self._send(method, url, kwargs), timeout=self.timeout)
            except asyncio.TimeoutError:
                _log.debug('%s %s did not respond within %.2f seconds.', method, url, self.timeout)
                raise RequestTimeout('send', self.timeout) from None
            except (aiohttp.ClientError, OSError, ValueError) as exc:
                raise TransportError(exc) from exc

            return self._handle_response(route, url, response, data)
        finally:
            if permit is not None:
                permit.release()

    def _handle_response(
        self,
        route: Route,
        url: str,
        response: aiohttp.ClientResponse,
        data: Union[Dict[str, Any], str],
    ) -> Any:
        method = route.method
        status = response.status
        ratelimiter = self.ratelimiter

        # Request was successful so just return the text/json
        if 300 > status >= 200:
            if ratelimiter is not None:
                ratelimiter.update(route.bucket, response.headers)
            _log.debug('%s %s has received %s.', method, url, data)
            return data

        if status == 401:
            invalidated = self.token_invalidated
            if invalidated is not None and invalidated.set():
                _log.warning('%s %s responded with 401. The token is invalid, refusing every further request.', method, url)
            raise Unauthorized(response, data)

        # Rate limited
        if status == 429:
            retry_after = self._get_retry_after(response, data)
            if retry_after is None:
                # Banned by Cloudflare more than likely, there is nothing to wait on
                _log.warning('%s %s responded with 429 without telling how long to wait.', method, url)
                raise RateLimited(0.0)

            is_global = isinstance(data, dict) and bool(data.get('global', False))
            if ratelimiter is not None:
                ratelimiter.update(route.bucket, response.headers, retry_after=retry_after, is_global=is_global)

            fmt = 'We are being rate limited. %s %s responded with 429. Retry in %.2f seconds.'
            _log.warning(fmt, method, url, retry_after)
            raise RateLimited(retry_after, is_global=is_global)

        # Usual error cases
        if status == 403:
            raise Forbidden(response, data)
        elif status == 404:
            raise NotFound(response, data)
        elif status >= 500:
            raise DiscordServerError(response, data)
        else:
            raise HTTPException(response, data)

    @staticmethod
    def _get_retry_after(response: aiohttp.ClientResponse, data: Union[Dict[str, Any], str]) -> Optional[float]:
        if isinstance(data, dict) and 'retry_after' in data:
            return float(data['retry_after'])

        header = response.headers.get('Retry-After')
        if header is not None:
            try:
                return float(header)
            except ValueError:
                return None
        return None

    # State management

    async def close(self) -> None:
        if self.__session:
            await self.__session.close()

    # Client identity

    def get_super_properties(self, url: str) -> Response[Dict[str, Any]]:
        return self.request(Route.raw('POST', url), auth=False, context_properties=None)

    # Users

    def get_me(self, with_analytics_token: bool = True) -> Response[Dict[str, Any]]:
        params = {'with_analytics_token': str(with_analytics_token).lower()}
        return self.request(Route('GET', '/users/@me'), params=params)

    def start_private_message(self, user_id: Snowflake) -> Response[Dict[str, Any]]:
        payload = {
            'recipients': [str(user_id)],
        }

        return self.request(Route('POST', '/users/@me/channels'), json=payload)

    # Messages

    def get_channel(self, channel_id: Snowflake) -> Response[Dict[str, Any]]:
        return self.request(Route('GET', '/channels/{channel_id}', channel_id=channel_id))

    def get_message(self, channel_id: Snowflake, message_id: Snowflake) -> Response[Dict[str, Any]]:
        r = Route('GET', '/channels/{channel_id}/messages/{message_id}', channel_id=channel_id, message_id=message_id)
        return self.request(r)

    def send_message(
        self,
        channel_id: Snowflake,
        content: Optional[str] = None,
        *,
        tts: bool = False,
        nonce: Optional[Union[int, str]] = MISSING,
        allowed_mentions: Optional[AllowedMentions] = MISSING,
        message_reference: Optional[Dict[str, Any]] = None,
    ) -> Response[Dict[str, Any]]:
        payload: Dict[str, Any] = {'tts': tts}
        if content is not None:
            payload['content'] = str(content)

        if nonce is MISSING:
            payload['nonce'] = utils._generate_nonce()
        elif nonce:
            payload['nonce'] = nonce

        if allowed_mentions is not MISSING:
            payload['allowed_mentions'] = allowed_mentions.to_dict() if allowed_mentions is not None else {'parse': []}

        if message_reference is not None:
            payload['message_reference'] = message_reference

        r = Route('POST', '/channels/{channel_id}/messages', channel_id=channel_id, mentions=True)
        return self.request(r, json=payload)

    def edit_message(
        self,
        channel_id: Snowflake,
        message_id: Snowflake,
        *,
        content: Optional[str] = MISSING,
        allowed_mentions: Optional[AllowedMentions] = MISSING,
    ) -> Response[Dict[str, Any]]:
        payload: Dict[str, Any] = {}
        if content is not MISSING:
            payload['content'] = content
        if allowed_mentions is not MISSING:
            payload['allowed_mentions'] = allowed_mentions.to_dict() if allowed_mentions is not None else {'parse': []}

        r = Route(
            'PATCH',
            '/channels/{channel_id}/messages/{message_id}',
            channel_id=channel_id,
            message_id=message_id,
            mentions=True,
        )
        return self.request(r, json=payload)

    def delete_message(
        self, channel_id: Snowflake, message_id: Snowflake, *, reason: Optional[str] = None
    ) -> Response[None]:
        r = Route(
            'DELETE',
            '/channels/{channel_id}/messages/{message_id}',
            channel_id=channel_id,
            message_id=message_id,
        )
        return self.request(r, reason=reason)

    # Relationships

    def send_friend_request(self, username: str, discriminator: Optional[Snowflake] = None) -> Response[None]:
        payload: Dict[str, Any] = {'username': username}
        if discriminator is not None:
            payload['discriminator'] = int(discriminator)

        return self.request(Route('POST', '/users/@me/relationships'), json=payload)

    def add_relationship(self, user_id: Snowflake, type: Optional[int] = None) -> Response[None]:
        r = Route('PUT', '/users/@me/relationships/{user_id}', user_id=user_id)
        return self.request(r, json={'type': type} if type else {})

    def remove_relationship(self, user_id: Snowflake) -> Response[None]:
        return self.request(Route('DELETE', '/users/@me/relationships/{user_id}', user_id=user_id))

    # Guilds

    def get_guild(self, guild_id: Snowflake, with_counts: bool = True) -> Response[Dict[str, Any]]:
        params = {'with_counts': str(with_counts).lower()}
        return self.request(Route('GET', '/guilds/{guild_id}', guild_id=guild_id), params=params)

    def leave_guild(self, guild_id: Snowflake, lurking: bool = False) -> Response[None]:
        r = Route('DELETE', '/users/@me/guilds/{guild_id}', guild_id=guild_id)
        payload = {'lurking': lurking}

        return self.request(r, json=payload)

    # Auto moderation

    def get_auto_moderation_rules(self, guild_id: Snowflake) -> Response[List[Dict[str, Any]]]:
        return self.request(Route('GET', '/guilds/{guild_id}/auto-moderation/rules', guild_id=guild_id))

    def get_auto_moderation_rule(self, guild_id: Snowflake, rule_id: Snowflake) -> Response[Dict[str, Any]]:
        return self.request(
            Route('GET', '/guilds/{guild_id}/auto-moderation/rules/{rule_id}', guild_id=guild_id, rule_id=rule_id)
        )

    def create_auto_moderation_rule(
        self,
        guild_id: Snowflake,
        *,
        name: str,
        event_type: int,
        trigger_type: int,
        trigger_metadata: Optional[AutoModTriggerMetadata] = None,
        actions: List[Dict[str, Any]],
        enabled: bool = False,
        exempt_roles: Optional[List[Snowflake]] = None,
        exempt_channels: Optional[List[Snowflake]] = None,
        reason: Optional[str] = None,
    ) -> Response[Dict[str, Any]]:
        payload: Dict[str, Any] = {
            'name': name,
            'event_type': event_type,
            'trigger_type': trigger_type,
            'actions': actions,
            'enabled': enabled,
        }
        if trigger_metadata is not None:
            payload['trigger_metadata'] = trigger_metadata.to_dict()
        if exempt_roles is not None:
            payload['exempt_roles'] = [str(r) for r in exempt_roles]
        if exempt_channels is not None:
            payload['exempt_channels'] = [str(c) for c in exempt_channels]

        return self.request(
            Route('POST', '/guilds/{guild_id}/auto-moderation/rules', guild_id=guild_id), json=payload, reason=reason
        )

    def delete_auto_moderation_rule(
        self, guild_id: Snowflake, rule_id: Snowflake, *, reason: Optional[str] = None
    ) -> Response[None]:
        return self.request(
            Route('DELETE', '/guilds/{guild_id}/auto-moderation/rules/{rule_id}', guild_id=guild_id, rule_id=rule_id),
            reason=reason,
        )
