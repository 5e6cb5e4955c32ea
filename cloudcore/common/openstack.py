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
OpenStack Swift temporary URLs.

A temporary URL grants access to a single object until an expiration time,
signed with the account's ``Temp-Url-Key`` metadata.
"""

import uuid
import logging
import binascii

from cloudcore.utils.py3 import urlencode
from cloudcore.utils.cache import TokenCache
from cloudcore.utils.clock import SYSTEM_CLOCK
from cloudcore.utils.crypto import default_registry
from cloudcore.common.base import ConnectionKey
from cloudcore.common.types import InvalidArgumentError
from cloudcore.common.types import MissingKeyError

__all__ = [
    'TEMP_URL_KEY_CACHE_SECONDS',
    'TEMP_URL_KEY_HEADER',

    'SwiftAccountConnection',
    'AccountTempUrlKeyLoader',
    'TemporaryUrlSigner',
    'set_account_temp_url_key'
]

_logger = logging.getLogger(__name__)

TEMP_URL_KEY_CACHE_SECONDS = 60
TEMP_URL_KEY_HEADER = 'X-Account-Meta-Temp-Url-Key'

# Lifetime of a temporary URL when neither timeout nor expires is given
DEFAULT_TEMP_URL_TIMEOUT = 60 * 60


class SwiftAccountConnection(ConnectionKey):
    """
    Connection to a Swift account (storage) URL, authenticated with an
    already issued Keystone token passed as ``key``.
    """

    def add_default_headers(self, headers):
        headers['X-Auth-Token'] = self.key
        return headers


class AccountTempUrlKeyLoader(object):
    """
    Read the temporary URL key from the account metadata with a ``HEAD``
    request on the account.

    :param connection: Connection whose base URL is the account endpoint.
    :type connection: :class:`SwiftAccountConnection`
    """

    def __init__(self, connection):
        self.connection = connection

    def __call__(self):
        response = self.connection.request('', method='HEAD')
        key = response.headers.get(TEMP_URL_KEY_HEADER.lower())

        if not key:
            raise MissingKeyError('Account has no %s metadata, set one with '
                                  'set_account_temp_url_key()' %
                                  (TEMP_URL_KEY_HEADER))
        return key


def set_account_temp_url_key(connection, key=None, signer=None):
    """
    Store ``key`` (a random one if not given) as the account temporary URL
    key.

    :param signer: Signer whose cached key must be dropped.
    :type signer: :class:`TemporaryUrlSigner`

    :return: The key which was set.
    :rtype: ``str``
    """
    if key is None:
        key = uuid.uuid4().hex

    connection.request('', method='POST', headers={TEMP_URL_KEY_HEADER: key})

    if signer is not None:
        signer.invalidate_key()

    return key


class TemporaryUrlSigner(object):
    """
    Produces Swift temporary URL signatures.

    :param key_loader: Zero-argument callable returning the account key,
                       usually an :class:`AccountTempUrlKeyLoader`.
    :type key_loader: ``callable``

    :param clock: Used for relative expirations and the key cache.
    :type clock: :class:`cloudcore.utils.clock.Clock`

    :param key_cache_ttl: Seconds the loaded key is reused for.
    :type key_cache_ttl: ``int``
    """

    algorithm = 'hmac-sha1'

    def __init__(self, key_loader, clock=None,
                 key_cache_ttl=TEMP_URL_KEY_CACHE_SECONDS, registry=None):
        self.clock = clock or SYSTEM_CLOCK
        self.registry = registry or default_registry()
        self._key_cache = TokenCache(loader=key_loader,
                                     expiry_seconds=key_cache_ttl,
                                     clock=self.clock,
                                     name='temporary URL key')

    @classmethod
    def from_connection(cls, connection, **kwargs):
        return cls(AccountTempUrlKeyLoader(connection), **kwargs)

    def sign(self, method, expires, path):
        """
        HMAC-SHA1 of ``"{method}\\n{expires}\\n{path}"`` as lowercase hex.

        :param expires: Expiration as unix epoch seconds.
        :type expires: ``int``

        :rtype: ``str``
        """
        if (isinstance(expires, bool) or not isinstance(expires, int) or
                expires <= 0):
            raise InvalidArgumentError('expires must be a positive integer '
                                       'timestamp, got %r' % (expires,))
        if not method:
            raise InvalidArgumentError('method must not be empty')

        hmac_body = '%s\n%d\n%s' % (method.upper(), expires, path)
        signature = self.registry.sign(hmac_body, self._key_cache.get(),
                                       self.algorithm)
        return binascii.hexlify(signature).decode('utf-8')

    def get_temp_url(self, method, base_url, path, timeout=None,
                     expires=None):
        """
        Return a URL granting ``method`` on ``path`` until ``expires`` (or for
        ``timeout`` seconds from now).

        :param base_url: Scheme and host of the object store, e.g.
                         ``https://swift.example.com``.
        :type base_url: ``str``

        :param path: Object path including the account, e.g.
                     ``/v1/AUTH_account/container/object``.
        :type path: ``str``

        :rtype: ``str``
        """
        if expires is None:
            if timeout is None:
                timeout = DEFAULT_TEMP_URL_TIMEOUT
            expires = int(self.clock.time() + timeout)

        signature = self.sign(method, expires, path)
        params = [('temp_url_sig', signature), ('temp_url_expires', expires)]
        return '%s%s?%s' % (base_url.rstrip('/'), path, urlencode(params))

    def invalidate_key(self):
        self._key_cache.invalidate()
