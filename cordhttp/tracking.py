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

from base64 import b64encode
import json
from random import choice

from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Tuple

from . import utils
from .errors import InvalidData
from .utils import MISSING

if TYPE_CHECKING:
    from typing_extensions import Self

    from .http import Route

# fmt: off
__all__ = (
    'ContextProperties',
    'SuperProperties',
    'context_properties_for',
)
# fmt: on


class SuperProperties:
    """Represents the client identity metadata sent with every request.

    This is fetched exactly once while the :class:`Client` is being built and
    is read-only afterwards.

    Attributes
    -----------
    properties: Dict[:class:`str`, Any]
        The decoded properties.
    encoded: :class:`str`
        The base64 encoded properties, as sent in the ``X-Super-Properties`` header.
    """

    __slots__ = ('_properties', '_encoded')

    def __init__(self, properties: Mapping[str, Any], encoded: Optional[str] = None) -> None:
        self._properties: Dict[str, Any] = dict(properties)
        if encoded is None:
            encoded = b64encode(utils._to_json(self._properties).encode()).decode('utf-8')
        self._encoded: str = encoded

    @classmethod
    def from_data(cls, data: Any) -> Self:
        if not isinstance(data, dict) or not isinstance(data.get('properties'), dict):
            raise InvalidData('Client properties payload is missing the "properties" object')
        return cls(data['properties'], data.get('encoded'))

    @property
    def properties(self) -> Dict[str, Any]:
        return self._properties.copy()

    @property
    def encoded(self) -> str:
        return self._encoded

    @property
    def browser_user_agent(self) -> Optional[str]:
        return self._properties.get('browser_user_agent')

    @property
    def browser_version(self) -> Optional[str]:
        return self._properties.get('browser_version')

    @property
    def build_number(self) -> Optional[int]:
        return utils._get_as_snowflake(self._properties, 'client_build_number')

    def __repr__(self) -> str:
        return f'<SuperProperties browser_version={self.browser_version!r} build_number={self.build_number!r}>'

    def __eq__(self, other: object) -> bool:
        return isinstance(other, SuperProperties) and self._encoded == other._encoded


class ContextPropertiesMeta(type):
    if TYPE_CHECKING:

        def __getattribute__(self, name: str) -> Callable[[], Self]:
            ...

    def __new__(cls, name: str, bases: Tuple[type, ...], attrs: Dict[str, Any]):
        cls = super().__new__(cls, name, bases, attrs)
        locations = attrs.get('LOCATIONS', {})
        sources = attrs.get('SOURCES', {})

        def build_location(location: str) -> classmethod:
            def f(cls) -> Self:
                data = {'location': location}
                return cls(data)

            return classmethod(f)

        def build_source(source: str) -> classmethod:
            def f(cls) -> Self:
                data = {'source': source}
                return cls(data)

            return classmethod(f)

        for location in locations:
            if location:
                setattr(cls, f'from_{location.lower().replace(" ", "_").replace("/", "")}', build_location(location))

        for source in sources:
            if source:
                setattr(cls, f'from_{source.lower().replace(" ", "_")}', build_source(source))

        return cls


class ContextProperties(metaclass=ContextPropertiesMeta):
    """Represents the Discord X-Context-Properties header.

    This header is essential for certain actions (e.g. joining guilds, friend requesting).
    """

    __slots__ = ('_data',)

    LOCATIONS = {
        None: 'e30=',
        'Friends': 'eyJsb2NhdGlvbiI6IkZyaWVuZHMifQ==',
        'ContextMenu': 'eyJsb2NhdGlvbiI6IkNvbnRleHRNZW51In0=',
        'Context Menu': 'eyJsb2NhdGlvbiI6IkNvbnRleHQgTWVudSJ9',
        'User Profile': 'eyJsb2NhdGlvbiI6IlVzZXIgUHJvZmlsZSJ9',
        'Add Friend': 'eyJsb2NhdGlvbiI6IkFkZCBGcmllbmQifQ==',
        'Guild Header': 'eyJsb2NhdGlvbiI6Ikd1aWxkIEhlYWRlciJ9',
        'Group DM': 'eyJsb2NhdGlvbiI6Ikdyb3VwIERNIn0=',
        'DM Channel': 'eyJsb2NhdGlvbiI6IkRNIENoYW5uZWwifQ==',
        '/app': 'eyJsb2NhdGlvbiI6ICIvYXBwIn0=',
        'Login': 'eyJsb2NhdGlvbiI6IkxvZ2luIn0=',
        'Register': 'eyJsb2NhdGlvbiI6IlJlZ2lzdGVyIn0=',
        'Verify Email': 'eyJsb2NhdGlvbiI6IlZlcmlmeSBFbWFpbCJ9',
        'New Group DM': 'eyJsb2NhdGlvbiI6Ik5ldyBHcm91cCBETSJ9',
        'Add Friends to DM': 'eyJsb2NhdGlvbiI6IkFkZCBGcmllbmRzIHRvIERNIn0=',
        'Group DM Invite Create': 'eyJsb2NhdGlvbiI6Ikdyb3VwIERNIEludml0ZSBDcmVhdGUifQ==',
    }

    SOURCES = {
        None: 'e30=',
        'Chat Input Blocker - Lurker Mode': 'eyJzb3VyY2UiOiJDaGF0IElucHV0IEJsb2NrZXIgLSBMdXJrZXIgTW9kZSJ9',
        'Notice - Lurker Mode': 'eyJzb3VyY2UiOiJOb3RpY2UgLSBMdXJrZXIgTW9kZSJ9',
    }

    def __init__(self, data: dict) -> None:
        self._data: Dict[str, Any] = data

    def _encode_data(self) -> str:
        data = self._data
        # Pre-encoded values only stand for payloads made of the target alone
        if not data:
            return self.LOCATIONS[None]
        if len(data) == 1:
            if 'location' in data and data['location'] in self.LOCATIONS:
                return self.LOCATIONS[data['location']]
            if 'source' in data and data['source'] in self.SOURCES:
                return self.SOURCES[data['source']]
        return b64encode(json.dumps(self._data, separators=(',', ':')).encode()).decode('utf-8')

    @classmethod
    def empty(cls) -> Self:
        return cls({})

    @classmethod
    def from_location(cls, location: Optional[str]) -> Self:
        if location is None:
            return cls.empty()
        return cls({'location': location})

    @classmethod
    def from_join_guild(
        cls,
        *,
        guild_id: int = MISSING,
        channel_id: int = MISSING,
        channel_type: int = MISSING,
    ) -> Self:
        data: Dict[str, Any] = {
            'location': 'Join Guild',
        }
        if guild_id is not MISSING:
            data['location_guild_id'] = str(guild_id)
        if channel_id is not MISSING:
            data['location_channel_id'] = str(channel_id)
        if channel_type is not MISSING:
            data['location_channel_type'] = int(channel_type)
        return cls(data)

    @classmethod
    def from_lurking(cls, source: str = MISSING) -> Self:
        data = {'source': source or choice(('Chat Input Blocker - Lurker Mode', 'Notice - Lurker Mode'))}
        return cls(data)

    @property
    def target(self) -> Optional[str]:
        return self._data.get('location', self._data.get('source'))

    @property
    def value(self) -> str:
        return self._encode_data()

    def __str__(self) -> str:
        return self.target or 'None'

    def __repr__(self) -> str:
        return f'<ContextProperties target={self.target!r}>'

    def __eq__(self, other) -> bool:
        return isinstance(other, ContextProperties) and self.value == other.value

    def __ne__(self, other) -> bool:
        if isinstance(other, ContextProperties):
            return self.value != other.value
        return True


# Route key -> locations the official client sends the request from.
# A None entry stands for the empty payload.
ROUTE_CONTEXT_LOCATIONS: Dict[str, Tuple[Optional[str], ...]] = {
    'POST /users/@me/channels': (None,),
    'POST /users/@me/relationships': ('Add Friend', 'Group DM'),
    'PUT /users/@me/relationships/{user_id}': ('Friends', 'User Profile', 'DM Channel'),
    'DELETE /users/@me/relationships/{user_id}': ('Friends', 'ContextMenu', 'User Profile', 'DM Channel'),
    'DELETE /users/@me/guilds/{guild_id}': ('Guild Header', 'Context Menu'),
}


def context_properties_for(route: Route) -> Optional[ContextProperties]:
    """Picks the context properties to send for a route.

    Routes with several candidate locations get one of them at random.
    Returns ``None`` for routes that do not send the header.
    """
    candidates = ROUTE_CONTEXT_LOCATIONS.get(route.key)
    if not candidates:
        return None
    return ContextProperties.from_location(choice(candidates))
