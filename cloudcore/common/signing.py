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
Building blocks shared by the request signers: the credentials value object,
path and body canonicalization and the string-to-sign used by the header
auth scheme.
"""

import re
import hashlib
import logging
from collections import namedtuple

from cloudcore.utils.py3 import b
from cloudcore.utils.py3 import base64_encode_string
from cloudcore.common.types import InvalidArgumentError

__all__ = [
    'EMPTY_BODY_HASH',
    'Credentials',
    'BaseRequestSigner',

    'canonical_path',
    'create_string_to_sign',
    'hash_body',
    'hash_path',
    'unescape_query_marker'
]

_logger = logging.getLogger(__name__)

# SHA-1 of zero bytes, Base64 encoded
EMPTY_BODY_HASH = '2jmj7l5rSw0yVb/vlWAYkK/YBwk='

READ_CHUNK_SIZE = 64 * 1024

_SLASHES_RE = re.compile(r'/+')


class Credentials(namedtuple('Credentials', ['identity', 'credential'])):
    """
    Identity (user id, client email, account name, ...) and the matching
    secret (shared key or PEM encoded private key).
    """

    __slots__ = ()

    def __repr__(self):
        return '<Credentials identity=%s>' % (self.identity)

    __str__ = __repr__


class BaseRequestSigner(object):
    """
    Turns an unsigned :class:`cloudcore.common.base.Request` into a signed
    one.

    Implementations return a new request and keep no per-request state, so a
    single instance can be shared between threads.
    """

    def sign_request(self, request):
        """
        :param request: Request to sign.
        :type request: :class:`cloudcore.common.base.Request`

        :rtype: :class:`cloudcore.common.base.Request`
        """
        raise NotImplementedError('sign_request not implemented for this '
                                  'signer')


def canonical_path(path):
    """
    Collapse runs of ``/`` and drop the trailing slash (unless the whole path
    is ``/``).

    :rtype: ``str``
    """
    path = _SLASHES_RE.sub('/', path)
    if len(path) > 1 and path.endswith('/'):
        path = path[:-1]
    return path


def create_string_to_sign(method, hashed_path, hashed_body, timestamp,
                          user_id):
    """
    Lines are joined with a newline and there is no trailing newline.

    :rtype: ``str``
    """
    return '\n'.join([
        'Method:%s' % (method),
        'Hashed Path:%s' % (hashed_path),
        'X-Ops-Content-Hash:%s' % (hashed_body),
        'X-Ops-Timestamp:%s' % (timestamp),
        'X-Ops-UserId:%s' % (user_id),
    ])


def hash_body(data):
    """
    SHA-1 digest of a request body, Base64 encoded.

    ``data`` can be ``None``, ``str``, ``bytes``, a seekable file-like object
    (read then rewound to where it was) or a multipart ``dict`` whose
    ``file`` part is hashed.

    :rtype: ``str``
    """
    if data is None:
        return EMPTY_BODY_HASH

    if isinstance(data, dict):
        if 'file' not in data:
            raise InvalidArgumentError('Multipart payload has no "file" part')
        return hash_body(data['file'])

    digest = hashlib.sha1()

    if isinstance(data, (str, bytes, bytearray)):
        digest.update(b(data))
    elif hasattr(data, 'read'):
        _hash_stream(data, digest)
    else:
        raise InvalidArgumentError('Payload of type %s must be repeatable to '
                                   'be signed' % (type(data).__name__))

    return base64_encode_string(digest.digest())


def _hash_stream(stream, digest):
    seekable = getattr(stream, 'seekable', None)
    if not hasattr(stream, 'seek') or (seekable is not None and
                                       not seekable()):
        raise InvalidArgumentError('Payload stream must be seekable to be '
                                   'signed')

    position = stream.tell()
    while True:
        chunk = stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        digest.update(b(chunk))
    stream.seek(position)


def hash_path(path):
    return hash_body(canonical_path(path))


def unescape_query_marker(url):
    """
    Turn an encoded ``%3F`` back into ``?``.

    Chef servers sign and route on the decoded form, other providers must
    not get this treatment.
    """
    return url.replace('%3F', '?')
