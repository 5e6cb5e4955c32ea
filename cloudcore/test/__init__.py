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

import unittest  # NOQA
import threading

import requests_mock

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from cloudcore.http import CloudConnection
from cloudcore.utils.py3 import httplib
from cloudcore.utils.py3 import urlparse
from cloudcore.utils.py3 import parse_qs


JSON_HEADERS = {'content-type': 'application/json'}


class CloudCoreTestCase(unittest.TestCase):
    def __init__(self, *args, **kwargs):
        self._visited_urls = []
        self._executed_mock_methods = []
        super(CloudCoreTestCase, self).__init__(*args, **kwargs)

    def setUp(self):
        self._visited_urls = []
        self._executed_mock_methods = []

    def _add_visited_url(self, url):
        self._visited_urls.append(url)

    def _add_executed_mock_method(self, method_name):
        self._executed_mock_methods.append(method_name)

    def assertExecutedMethodCount(self, expected):
        actual = len(self._executed_mock_methods)
        self.assertEqual(actual, expected,
                         'expected %d, but %d mock methods were executed'
                         % (expected, actual))


class MockHttp(CloudConnection):
    """
    A mock HTTP client/server suitable for testing purposes. This replaces
    the transport by returning a mock response.

    Define methods by request path, replacing slashes (/) with underscores (_).
    Each of these mock methods should return a tuple of:

        (int status, str body, dict headers, str reason)

    The last request handed to the transport is kept in ``last_request`` as
    ``(method, url, body, headers)``.
    """
    type = None
    use_param = None  # will use this param to namespace the request function
    test = None  # TestCase instance which is using this mock
    proxy_url = None
    last_request = None

    def _get_request(self, method, url, body=None, headers=None):
        # Find a method we can use for this request
        parsed = urlparse.urlparse(url)
        _, _, path, _, query, _ = parsed
        qs = parse_qs(query)
        if path.endswith('/'):
            path = path[:-1]
        meth_name = self._get_method_name(type=self.type,
                                          use_param=self.use_param,
                                          qs=qs, path=path)
        meth = getattr(self, meth_name.replace('%', '_'))

        if self.test and isinstance(self.test, CloudCoreTestCase):
            self.test._add_visited_url(url=url)
            self.test._add_executed_mock_method(method_name=meth_name)
        return meth(method, url, body, headers)

    def request(self, method, url, body=None, headers=None, stream=False):
        headers = self._normalize_headers(headers=headers)
        MockHttp.last_request = (method, url, body, headers)

        r_status, r_body, r_headers, r_reason = self._get_request(
            method, url, body, headers)
        if r_body is None:
            r_body = ''

        full_url = urlparse.urljoin(self.host, url)
        with requests_mock.mock() as m:
            m.register_uri(method, full_url, text=r_body, reason=r_reason,
                           headers=r_headers, status_code=r_status)
            try:
                return super(MockHttp, self).request(
                    method=method, url=url, body=body, headers=headers,
                    stream=stream)
            except requests_mock.exceptions.NoMockAddress as nma:
                raise AttributeError("Failed to mock out URL {0} - {1}".format(
                    url, nma.request.url
                ))

    def _get_method_name(self, type, use_param, qs, path):
        path = path.split('?')[0]
        meth_name = (
            path
            .replace('/', '_')
            .replace('.', '_')
            .replace('-', '_')
            .replace('~', '%7E'))

        if type:
            meth_name = '%s_%s' % (meth_name, self.type)

        if use_param and use_param in qs:
            param = qs[use_param][0].replace('.', '_').replace('-', '_')
            meth_name = '%s_%s' % (meth_name, param)

        if meth_name == '':
            meth_name = 'root'

        return meth_name


class FakeTime(object):
    """
    Stand-in for ``time.monotonic`` and ``time.sleep``: sleeping moves the
    clock forward and is recorded in ``sleeps``.
    """

    def __init__(self, start=0.0):
        self.now = start
        self.sleeps = []
        self._lock = threading.Lock()

    def time(self):
        return self.now

    def sleep(self, seconds):
        with self._lock:
            self.sleeps.append(seconds)
            self.now += seconds


_RSA_KEYS = {}


def generate_rsa_key_pem(key_size=2048):
    """
    PEM encoded RSA private key, generated once per size for the whole test
    run.

    :rtype: ``str``
    """
    if key_size not in _RSA_KEYS:
        key = rsa.generate_private_key(public_exponent=65537,
                                       key_size=key_size)
        _RSA_KEYS[key_size] = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption()
        ).decode('utf-8')
    return _RSA_KEYS[key_size]


if __name__ == "__main__":
    import doctest
    doctest.testmod()
