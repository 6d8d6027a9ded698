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

from enum import IntEnum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Union

if TYPE_CHECKING:
    from typing_extensions import Self

# fmt: off
__all__ = (
    'AutoModPresetType',
    'AutoModTriggerMetadata',
)
# fmt: on


class AutoModPresetType(IntEnum):
    """Internally pre-defined wordsets searched for by a keyword preset rule."""

    profanity = 1
    sexual_content = 2
    slurs = 3


def _try_preset(value: int) -> Union[AutoModPresetType, int]:
    try:
        return AutoModPresetType(value)
    except ValueError:
        return value


class AutoModTriggerMetadata:
    """Additional data used to determine whether an auto moderation rule should be triggered.

    Which fields are relevant depends on the trigger type of the rule. Fields left as
    ``None`` are not sent.

    Attributes
    -----------
    allow_list: Optional[List[:class:`str`]]
        Substrings that will be exempt from triggering the preset type.
    keyword_filter: Optional[List[:class:`str`]]
        Substrings which will be searched for in content.
    presets: Optional[List[:class:`AutoModPresetType`]]
        Internally pre-defined wordsets which will be searched for in content.
        Values unknown to the library are kept as plain integers.
    """

    __slots__ = ('allow_list', 'keyword_filter', 'presets')

    def __init__(
        self,
        *,
        allow_list: Optional[List[str]] = None,
        keyword_filter: Optional[List[str]] = None,
        presets: Optional[List[Union[AutoModPresetType, int]]] = None,
    ) -> None:
        self.allow_list: Optional[List[str]] = allow_list
        self.keyword_filter: Optional[List[str]] = keyword_filter
        self.presets: Optional[List[Union[AutoModPresetType, int]]] = presets

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Self:
        presets = data.get('presets')
        return cls(
            allow_list=data.get('allow_list'),
            keyword_filter=data.get('keyword_filter'),
            presets=[_try_preset(p) for p in presets] if presets is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.allow_list is not None:
            data['allow_list'] = list(self.allow_list)
        if self.keyword_filter is not None:
            data['keyword_filter'] = list(self.keyword_filter)
        if self.presets is not None:
            data['presets'] = [int(p) for p in self.presets]
        return data

    def _key(self) -> Tuple[Any, ...]:
        def freeze(value: Optional[List[Any]]) -> Optional[Tuple[Any, ...]]:
            return tuple(value) if value is not None else None

        return (freeze(self.allow_list), freeze(self.keyword_filter), freeze(self.presets))

    def __eq__(self, other: object) -> bool:
        return isinstance(other, AutoModTriggerMetadata) and self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __repr__(self) -> str:
        return (
            f'<AutoModTriggerMetadata allow_list={self.allow_list!r} '
            f'keyword_filter={self.keyword_filter!r} presets={self.presets!r}>'
        )
