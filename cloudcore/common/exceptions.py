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

import time

from email.utils import parsedate_tz, mktime_tz

__all__ = [
    'BaseHTTPError',
    'RateLimitReachedError',

    'exception_from_message'
]


class BaseHTTPError(Exception):
    """
    The base exception class for all HTTP related exceptions raised by the
    transport.
    """

    def __init__(self, code, message, headers=None):
        self.code = code
        self.message = message
        self.headers = headers or {}
        super(BaseHTTPError, self).__init__(message)

    def __str__(self):
        return self.message


class RateLimitReachedError(BaseHTTPError):
    """
    HTTP 429 - Rate limit: you've sent too many requests for this time period.

    ``retry_after`` holds the number of seconds the provider asked us to back
    off for (0 when the response had no usable ``Retry-After`` header).
    """
    code = 429
    message = '%s Rate limit exceeded' % (code)

    def __init__(self, *args, **kwargs):
        headers = kwargs.pop('headers', None)
        super(RateLimitReachedError, self).__init__(self.code,
                                                    self.message,
                                                    headers)
        self.retry_after = _parse_retry_after(self.headers)


_error_classes = [RateLimitReachedError]
_code_map = dict((c.code, c) for c in _error_classes)


def _parse_retry_after(headers):
    """
    ``Retry-After`` is either delta-seconds or an HTTP-date (RFC 7231), the
    latter is turned into a non-negative delay.
    """
    value = None
    for key in headers:
        if key.lower() == 'retry-after':
            value = headers[key]
            break

    if value is None:
        return 0

    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        pass

    http_date = parsedate_tz(value)
    if http_date is None:
        return 0
    return max(0, int(mktime_tz(http_date) - time.time()))


def exception_from_message(code, message, headers=None):
    """
    Return an instance of BaseHTTPError or subclass based on response code.

    Usage::
        raise exception_from_message(code=response.status,
                                     message=response.parse_error(),
                                     headers=response.headers)
    """
    kwargs = {
        'code': code,
        'message': message,
        'headers': headers
    }

    cls = _code_map.get(code, BaseHTTPError)
    return cls(**kwargs)
