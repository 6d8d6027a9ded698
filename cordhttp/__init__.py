"""
Discord HTTP Client
~~~~~~~~~~~~~~~~~~~

A rate limit aware client for Discord's HTTP API.

:copyright: (c) 2015-present Rapptz
:license: MIT, see LICENSE for more details.

"""

__title__ = 'cordhttp'
__author__ = 'Rapptz'
__license__ = 'MIT'
__copyright__ = 'Copyright 2015-present Rapptz'
__version__ = '0.1.0'

import logging
from typing import NamedTuple, Literal

from .client import *
from .errors import *
from .http import *
from .mentions import *
from .ratelimiter import *
from .tracking import *
from .automod import *
from . import utils as utils


class VersionInfo(NamedTuple):
    major: int
    minor: int
    micro: int
    releaselevel: Literal['alpha', 'beta', 'candidate', 'final']
    serial: int


version_info: VersionInfo = VersionInfo(major=0, minor=1, micro=0, releaselevel='final', serial=0)

logging.getLogger(__name__).addHandler(logging.NullHandler())

del logging, NamedTuple, Literal, VersionInfo
