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

from typing import TYPE_CHECKING, Any, Dict, List, Literal, Optional, Tuple, Union

if TYPE_CHECKING:
    from aiohttp import ClientResponse

__all__ = (
    'DiscordException',
    'ClientException',
    'HTTPException',
    'RateLimited',
    'Forbidden',
    'NotFound',
    'DiscordServerError',
    'InvalidData',
    'TokenInvalidated',
    'Unauthorized',
    'RequestTimeout',
    'TransportError',
    'ConstructionFailed',
)


class DiscordException(Exception):
    """Base exception class for cordhttp

    Ideally speaking, this could be caught to handle any exceptions raised from this library.
    """

    __slots__ = ()


class ClientException(DiscordException):
    """Exception that's raised when an operation in the :class:`Client` fails.

    These are usually for exceptions that happened due to user input.
    """

    __slots__ = ()


def _flatten_error_dict(d: Dict[str, Any], key: str = '', /) -> Dict[str, str]:
    items: List[Tuple[str, str]] = []

    if '_errors' in d and not key:
        items.append(('miscellaneous', ' '.join(x.get('message', '') for x in d['_errors'])))
        d.pop('_errors')

    for k, v in d.items():
        new_key = key + '.' + k if key else k

        if isinstance(v, dict):
            if '_errors' in v:
                _errors = v['_errors']
                items.append((new_key, ' '.join(x.get('message', '') for x in _errors)))
            else:
                items.extend(_flatten_error_dict(v, new_key).items())
        else:
            items.append((new_key, v))

    return dict(items)


class HTTPException(DiscordException):
    """Exception that's raised when an HTTP request operation fails.

    Attributes
    ------------
    response: :class:`aiohttp.ClientResponse`
        The response of the failed HTTP request.
    text: :class:`str`
        The text of the error. Could be an empty string.
    status: :class:`int`
        The status code of the HTTP request.
    code: :class:`int`
        The Discord specific error code for the failure.
    json: :class:`dict`
        The raw error JSON.
    """

    def __init__(self, response: ClientResponse, message: Optional[Union[str, Dict[str, Any]]]):
        self.response: ClientResponse = response
        self.status: int = response.status
        self.code: int = 0
        self.text: str
        self.json: Dict[str, Any]
        if isinstance(message, dict):
            self.json = message
            self.code = message.get('code', 0)
            base = message.get('message', '')
            errors = message.get('errors')
            if errors:
                errors = _flatten_error_dict(errors)
                helpful = '\n'.join('In %s: %s' % t for t in errors.items())
                self.text = base + '\n' + helpful
            else:
                self.text = base
        else:
            self.text = message or ''
            self.json = {'code': 0, 'message': message or ''}

        fmt = '{0.status} {0.reason} (error code: {1})'
        if len(self.text):
            fmt += ': {2}'

        super().__init__(fmt.format(self.response, self.code, self.text))


class RateLimited(DiscordException):
    """Exception that's raised for when status code 429 occurs, or when
    a rate limiter refuses to wait because the cool-down is greater than
    its configured maximum.

    The client never retries these on its own. Since sometimes requests
    are halted pre-emptively before they're even made, this **does not**
    subclass :exc:`HTTPException`.

    Attributes
    ------------
    retry_after: :class:`float`
        The amount of seconds that the client should wait before retrying
        the request.
    is_global: :class:`bool`
        Whether the rate limit applies to every route.
    """

    __slots__ = ('retry_after', 'is_global')

    def __init__(self, retry_after: float, *, is_global: bool = False):
        self.retry_after = retry_after
        self.is_global = is_global
        super().__init__(f'Too many requests. Retry in {retry_after:.2f} seconds.')


class Forbidden(HTTPException):
    """Exception that's raised for when status code 403 occurs.

    Subclass of :exc:`HTTPException`
    """

    __slots__ = ()


class NotFound(HTTPException):
    """Exception that's raised for when status code 404 occurs.

    Subclass of :exc:`HTTPException`
    """

    __slots__ = ()


class DiscordServerError(HTTPException):
    """Exception that's raised for when a 500 range status code occurs.

    Subclass of :exc:`HTTPException`.
    """

    __slots__ = ()


class InvalidData(ClientException):
    """Exception that's raised when the library encounters unknown
    or invalid data from Discord.
    """

    __slots__ = ()


class TokenInvalidated(ClientException):
    """Exception that's raised when the token has been rejected by Discord.

    Once a client has seen a 401 response (and remembers invalid tokens),
    every following request raises this without touching the network.
    A new client has to be built with a valid token.
    """

    __slots__ = ()

    def __init__(self, message: str = 'The token has been invalidated by Discord.'):
        super().__init__(message)


class Unauthorized(HTTPException, TokenInvalidated):
    """Exception that's raised for when status code 401 occurs.

    Subclass of both :exc:`HTTPException` and :exc:`TokenInvalidated`.
    """

    __slots__ = ()


class RequestTimeout(DiscordException):
    """Exception that's raised when a request does not complete in time.

    Attributes
    ------------
    stage: :class:`str`
        Where the deadline was exceeded, either ``'ratelimit'`` while waiting
        for the rate limiter or ``'send'`` while waiting for Discord.
    timeout: :class:`float`
        The deadline in seconds.
    """

    __slots__ = ('stage', 'timeout')

    def __init__(self, stage: Literal['ratelimit', 'send'], timeout: float):
        self.stage: Literal['ratelimit', 'send'] = stage
        self.timeout: float = timeout
        super().__init__(f'Request timed out after {timeout:.2f} seconds ({stage}).')


class TransportError(DiscordException):
    """Exception that's raised when the request could not be sent or its
    response could not be read.

    Attributes
    -----------
    original: :class:`Exception`
        The original exception raised by the transport.
    """

    __slots__ = ('original',)

    def __init__(self, original: Exception):
        self.original: Exception = original
        super().__init__(f'{original.__class__.__name__}: {original}')


class ConstructionFailed(ClientException):
    """Exception that's raised when :meth:`ClientBuilder.build` cannot
    fetch the client identity metadata.

    No usable client exists when this is raised. The original error is
    chained as ``__cause__``.
    """

    __slots__ = ()
