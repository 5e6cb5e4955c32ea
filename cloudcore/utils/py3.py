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
Bytes / text helpers shared by the signing code.
"""

import base64
import http.client as httplib
import urllib.parse as urlparse
from urllib.parse import urlencode as urlencode

__all__ = [
    'httplib',
    'urlparse',
    'urlencode',
    'parse_qs',

    'b',
    'ensure_string',
    'base64_encode_string',
    'base64url_encode',
    'base64url_decode'
]

parse_qs = urlparse.parse_qs


def b(s):
    if isinstance(s, str):
        return s.encode('utf-8')
    elif isinstance(s, (bytes, bytearray)):
        return bytes(s)
    elif isinstance(s, int):
        return bytes([s])
    else:
        raise TypeError("Invalid argument %r for b()" % (s,))


def ensure_string(s, errors='strict'):
    if isinstance(s, str):
        return s
    elif isinstance(s, (bytes, bytearray)):
        return bytes(s).decode('utf-8', errors)
    else:
        raise TypeError("Invalid argument %r for ensure_string()" % (s,))


def base64_encode_string(s):
    """
    Standard Base64 of ``s``, returned as ``str`` without newlines.
    """
    return base64.b64encode(b(s)).decode('utf-8')


def base64url_encode(s):
    """
    URL safe Base64 of ``s`` with the ``=`` padding removed, as used in
    JWT compact serialization.
    """
    return base64.urlsafe_b64encode(b(s)).rstrip(b'=').decode('utf-8')


def base64url_decode(s):
    s = b(s)
    return base64.urlsafe_b64decode(s + b'=' * (-len(s) % 4))
