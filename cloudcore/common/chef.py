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
Chef style header authentication (protocol version 1.0).

Every request carries the SHA-1 of its body, a timestamp and the requesting
user, signed with the client key and split over several
``X-Ops-Authorization-N`` headers.
"""

import json
import logging
import threading

from cloudcore.utils.cache import TokenCache
from cloudcore.utils.clock import SYSTEM_CLOCK
from cloudcore.utils.crypto import default_registry
from cloudcore.utils.crypto import is_pem_private_key
from cloudcore.utils.crypto import load_private_key
from cloudcore.utils.misc import chunk_string
from cloudcore.utils.py3 import base64_encode_string
from cloudcore.common.base import ConnectionUserAndKey
from cloudcore.common.base import JsonResponse
from cloudcore.common.signing import BaseRequestSigner
from cloudcore.common.signing import create_string_to_sign
from cloudcore.common.signing import hash_body
from cloudcore.common.signing import hash_path
from cloudcore.common.signing import unescape_query_marker

__all__ = [
    'SIGNING_DESCRIPTION',
    'SIGNATURE_CHUNK_WIDTH',
    'AUTHORIZATION_HEADER_PREFIX',

    'SignedHeaderAuth',
    'ChefResponse',
    'ChefConnection'
]

_logger = logging.getLogger(__name__)

SIGNING_DESCRIPTION = 'version=1.0'
SIGNATURE_CHUNK_WIDTH = 60
AUTHORIZATION_HEADER_PREFIX = 'X-Ops-Authorization-'

RSA_ALGORITHM = 'rsa-private-encrypt'
HMAC_ALGORITHM = 'hmac-sha1'

DEFAULT_API_VERSION = '0.10.8'


def _is_authorization_header(name):
    return name.lower().startswith(AUTHORIZATION_HEADER_PREFIX.lower())


class SignedHeaderAuth(BaseRequestSigner):
    """
    Signs requests with the ``X-Ops-*`` headers.

    :param credentials: Client name and key. A PEM private key selects the
                        ``rsa-private-encrypt`` algorithm, anything else is
                        used as an ``hmac-sha1`` secret.
    :type credentials: :class:`cloudcore.common.signing.Credentials`

    :param clock: Source of the ``X-Ops-Timestamp`` value.
    :type clock: :class:`cloudcore.utils.clock.Clock`

    :param registry: Signature algorithms to pick from.
    :type registry: :class:`cloudcore.utils.crypto.SignatureRegistry`

    :param algorithm: Override the algorithm picked from the key type.
    :type algorithm: ``str``

    :param chunk_width: Length of a single ``X-Ops-Authorization-N`` value.
    :type chunk_width: ``int``

    :param session_interval: Reuse the same timestamp for this many seconds
                             (0 means a fresh timestamp for every request).
    :type session_interval: ``int``
    """

    def __init__(self, credentials, clock=None, registry=None, algorithm=None,
                 chunk_width=SIGNATURE_CHUNK_WIDTH, session_interval=0):
        self.credentials = credentials
        self.clock = clock or SYSTEM_CLOCK
        self.registry = registry or default_registry()
        self.chunk_width = chunk_width

        if algorithm is None:
            if is_pem_private_key(credentials.credential):
                algorithm = RSA_ALGORITHM
            else:
                algorithm = HMAC_ALGORITHM

        # Fail early on unknown algorithms
        self.registry.get(algorithm)
        self.algorithm = algorithm

        self._key = None
        self._key_lock = threading.Lock()

        if session_interval and session_interval > 0:
            self._timestamps = TokenCache(loader=self.clock.iso8601,
                                          expiry_seconds=session_interval,
                                          clock=self.clock,
                                          name='X-Ops-Timestamp')
        else:
            self._timestamps = None

    def sign_request(self, request):
        request = request.copy(url=unescape_query_marker(request.url))

        content_hash = hash_body(request.body)
        timestamp = self.timestamp()
        string_to_sign = create_string_to_sign(
            method=request.method,
            hashed_path=hash_path(request.path),
            hashed_body=content_hash,
            timestamp=timestamp,
            user_id=self.credentials.identity)
        _logger.debug('String to sign for %s %s: %r', request.method,
                      request.path, string_to_sign)

        headers = {
            'X-Ops-Content-Hash': content_hash,
            'X-Ops-Userid': self.credentials.identity,
            'X-Ops-Sign': SIGNING_DESCRIPTION,
            'X-Ops-Timestamp': timestamp,
        }
        headers.update(self.authorization_headers(string_to_sign))

        return request.with_headers(headers, remove=_is_authorization_header)

    def authorization_headers(self, string_to_sign):
        """
        Sign ``string_to_sign`` and spread the Base64 signature over
        numbered headers, starting at 1.

        :rtype: ``dict``
        """
        lines = chunk_string(self.sign(string_to_sign), self.chunk_width)
        return dict(('%s%d' % (AUTHORIZATION_HEADER_PREFIX, index), line)
                    for index, line in enumerate(lines, 1))

    def sign(self, string_to_sign):
        """
        :return: Base64 encoded signature.
        :rtype: ``str``
        """
        signature = self.registry.sign(string_to_sign, self._signing_key(),
                                       self.algorithm)
        return base64_encode_string(signature)

    def timestamp(self):
        if self._timestamps is not None:
            return self._timestamps.get()
        return self.clock.iso8601()

    def _signing_key(self):
        if self.algorithm != RSA_ALGORITHM:
            return self.credentials.credential

        key = self._key
        if key is None:
            with self._key_lock:
                if self._key is None:
                    self._key = load_private_key(self.credentials.credential)
                key = self._key
        return key

    def __repr__(self):
        return ('<SignedHeaderAuth identity=%s, algorithm=%s>' %
                (self.credentials.identity, self.algorithm))


class ChefResponse(JsonResponse):
    def parse_error(self):
        body = super(ChefResponse, self).parse_error()
        if isinstance(body, dict) and 'error' in body:
            errors = body['error']
            if isinstance(errors, list):
                return ', '.join(errors)
            return errors
        return body


class ChefConnection(ConnectionUserAndKey):
    """
    Connection to a Chef server; every request is signed with
    :class:`SignedHeaderAuth`.
    """

    responseCls = ChefResponse

    def __init__(self, user_id, key, secure=True, host=None, port=None,
                 url=None, timeout=None, proxy_url=None, retry_delay=None,
                 backoff=None, api_version=DEFAULT_API_VERSION, clock=None,
                 session_interval=0):
        super(ChefConnection, self).__init__(user_id, key, secure=secure,
                                             host=host, port=port, url=url,
                                             timeout=timeout,
                                             proxy_url=proxy_url,
                                             retry_delay=retry_delay,
                                             backoff=backoff)
        self.api_version = api_version
        self.signer = SignedHeaderAuth(self.credentials, clock=clock,
                                       session_interval=session_interval)

    def add_default_headers(self, headers):
        headers['Accept'] = 'application/json'
        headers['X-Chef-Version'] = self.api_version
        headers.setdefault('Content-Type', 'application/json')
        return headers

    def encode_data(self, data):
        if isinstance(data, (dict, list)) and 'file' not in data:
            return json.dumps(data)
        return data
