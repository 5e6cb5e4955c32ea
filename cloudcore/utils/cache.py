# Licensed to the Apache Software Foundation (ASF) under one or more
# contributor license agreements.  See the NOTICE file distributed with
# this work for additional information regarding copyright ownership.
# The ASF licenses this file to You under the Apache License, Version 2.0
# (the "License"); you may not use this file except in compliance with
# the License.  You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Memoize-with-expiration for short lived secrets (bearer tokens, temp URL
keys, timestamps).
"""

import logging
import threading

from cloudcore.utils.clock import SYSTEM_CLOCK
from cloudcore.common.types import MissingKeyError

__all__ = [
    'CachedToken',
    'TokenCache',
    'memoize_with_expiration'
]

_logger = logging.getLogger(__name__)


class CachedToken(object):
    """
    A value together with the epoch time at which it stops being usable.
    """

    __slots__ = ('value', 'expires_at')

    def __init__(self, value, expires_at):
        self.value = value
        self.expires_at = expires_at

    def is_valid(self, now):
        return now < self.expires_at

    def __repr__(self):
        # Never print the value itself, it is usually a secret
        return '<CachedToken expires_at=%s>' % (self.expires_at)


class TokenCache(object):
    """
    Cache a value produced by ``loader`` for ``expiry_seconds``.

    Once the cached value expires, the next caller runs the loader while the
    others wait on the lock and then read the freshly stored value, so the
    loader runs once per expiration window no matter how many threads ask.
    The entry is replaced in a single assignment, so a reader sees either the
    old complete entry or the new one.

    A loader may return a :class:`CachedToken` to set its own expiry (e.g. an
    OAuth token carrying ``expires_in``). ``None`` or an empty value raises
    :class:`MissingKeyError` and is not cached.

    :param loader: Zero-argument callable producing the value.
    :type loader: ``callable``

    :param expiry_seconds: How long a loaded value stays valid. A value of 0
                           or less disables caching.
    :type expiry_seconds: ``float``

    :param clock: Time source, defaults to the system clock.
    :type clock: :class:`cloudcore.utils.clock.Clock`

    :param name: Name used in log and error messages.
    :type name: ``str``
    """

    def __init__(self, loader, expiry_seconds, clock=None, name=None):
        self.loader = loader
        self.expiry_seconds = expiry_seconds
        self.clock = clock or SYSTEM_CLOCK
        self.name = name or getattr(loader, '__name__', 'value')

        self._entry = None  # type: CachedToken
        self._lock = threading.Lock()

    def get(self):
        entry = self._entry
        if entry is not None and entry.is_valid(self.clock.time()):
            return entry.value

        with self._lock:
            # Another thread may have refreshed while we waited for the lock
            entry = self._entry
            if entry is not None and entry.is_valid(self.clock.time()):
                return entry.value

            entry = self._load()
            if entry.expires_at is not None:
                self._entry = entry
            return entry.value

    __call__ = get

    def invalidate(self):
        """
        Drop the cached value, the next :meth:`get` runs the loader again.
        """
        with self._lock:
            self._entry = None

    @property
    def cached(self):
        """
        The current entry (possibly expired), or None.
        """
        return self._entry

    def _load(self):
        _logger.debug('Refreshing cached %s', self.name)
        result = self.loader()

        if isinstance(result, CachedToken):
            value, expires_at = result.value, result.expires_at
        else:
            value = result
            expires_at = None

        if value is None or value == '' or value == b'':
            raise MissingKeyError('Loader for %s returned no value' %
                                  (self.name))

        if expires_at is None:
            if self.expiry_seconds <= 0:
                return CachedToken(value, None)
            expires_at = self.clock.time() + self.expiry_seconds

        return CachedToken(value, expires_at)


def memoize_with_expiration(loader, seconds, clock=None):
    """
    Return a zero-argument callable that caches ``loader()`` for ``seconds``.

    :rtype: :class:`TokenCache`
    """
    return TokenCache(loader=loader, expiry_seconds=seconds, clock=clock)
