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
Transport used by :class:`cloudcore.common.base.Connection` to put signed
requests on the wire, built on top of a ``requests`` session. Honours the
settings in :mod:`cloudcore.security`.
"""

import os
import warnings

import requests

import cloudcore.security
from cloudcore.utils.py3 import urlparse


__all__ = [
    'CloudBaseConnection',
    'CloudConnection',
    'TransportResponse'
]

ALLOW_REDIRECTS = 1

HTTP_PROXY_ENV_VARIABLE_NAME = 'http_proxy'
HTTPS_PROXY_ENV_VARIABLE_NAME = 'https_proxy'


class TransportResponse(object):
    """
    What the transport hands back: status code, headers and raw body.
    """

    def __init__(self, status, headers, body, reason=None):
        self.status = status
        self.headers = headers
        self.body = body
        self.reason = reason

    def __repr__(self):
        return '<TransportResponse status=%s, reason=%s>' % (self.status,
                                                            self.reason)


class CloudBaseConnection(object):
    """
    Base connection class to inherit from.

    Note: This class should not be instantiated directly.
    """

    session = None

    proxy_scheme = None
    proxy_host = None
    proxy_port = None

    proxy_username = None
    proxy_password = None

    http_proxy_used = False

    ca_cert = None

    def __init__(self):
        self.session = requests.Session()

    def set_http_proxy(self, proxy_url):
        """
        Set a HTTP proxy which will be used with this connection.

        :param proxy_url: Proxy URL (e.g. http://<hostname>:<port> without
                          authentication and
                          http://<username>:<password>@<hostname>:<port> for
                          basic auth authentication information.
        :type proxy_url: ``str``
        """
        (scheme, host, port, username,
         password) = self._parse_proxy_url(proxy_url=proxy_url)

        self.proxy_scheme = scheme
        self.proxy_host = host
        self.proxy_port = port
        self.proxy_username = username
        self.proxy_password = password
        self.http_proxy_used = True

        self.session.proxies = {
            'http': proxy_url,
            'https': proxy_url,
        }

    def _parse_proxy_url(self, proxy_url):
        """
        Parse and validate a proxy URL.

        :param proxy_url: Proxy URL (e.g. http://hostname:3128)
        :type proxy_url: ``str``

        :rtype: ``tuple`` (``scheme``, ``hostname``, ``port``, ``username``,
                ``password``)
        """
        parsed = urlparse.urlparse(proxy_url)

        if parsed.scheme not in ('http', 'https'):
            raise ValueError('Only http and https proxies are supported')

        if not parsed.hostname or not parsed.port:
            raise ValueError('proxy_url must be in the following format: '
                             '<scheme>://<proxy host>:<proxy port>')

        return (parsed.scheme, parsed.hostname, parsed.port,
                parsed.username, parsed.password)

    def _setup_verify(self):
        self.verify = cloudcore.security.VERIFY_SSL_CERT

        if not self.verify:
            warnings.warn(cloudcore.security.VERIFY_SSL_DISABLED_MSG)

    def _setup_ca_cert(self, ca_cert=None):
        ca_certs_path = ca_cert or cloudcore.security.CA_CERTS_PATH

        if self.verify is not False:
            self.ca_cert = ca_certs_path


class CloudConnection(CloudBaseConnection):
    timeout = None
    host = None
    response = None

    def __init__(self, host, port, secure=None, **kwargs):
        scheme = 'https' if secure is not None and secure else 'http'
        self.host = '{0}://{1}{2}'.format(
            'https' if port == 443 else scheme,
            host,
            ':{0}'.format(port) if port not in (80, 443) else ''
        )

        # Support for HTTP(s) proxy
        # NOTE: We always only use a single proxy (either HTTP or HTTPS)
        https_proxy_url_env = os.environ.get(HTTPS_PROXY_ENV_VARIABLE_NAME,
                                             None)
        http_proxy_url_env = os.environ.get(HTTP_PROXY_ENV_VARIABLE_NAME,
                                            https_proxy_url_env)

        # Connection argument has precedence over environment variables
        proxy_url = kwargs.pop('proxy_url', None) or http_proxy_url_env

        self._setup_verify()
        self._setup_ca_cert(ca_cert=kwargs.pop('ca_cert', None))

        CloudBaseConnection.__init__(self)

        self.timeout = kwargs.pop('timeout', None) or 60

        if proxy_url:
            self.set_http_proxy(proxy_url=proxy_url)

    @property
    def verification(self):
        """
        The option for SSL verification given to underlying requests
        """
        return self.ca_cert if self.ca_cert is not None else self.verify

    def request(self, method, url, body=None, headers=None, stream=False):
        url = urlparse.urljoin(self.host, url)
        headers = self._normalize_headers(headers=headers)

        self.response = self.session.request(
            method=method.lower(),
            url=url,
            data=body,
            headers=headers,
            allow_redirects=ALLOW_REDIRECTS,
            stream=stream,
            verify=self.verification,
            timeout=self.timeout
        )
        return self.response

    def send(self, request):
        """
        Send a :class:`cloudcore.common.base.Request` and return a
        :class:`TransportResponse`.
        """
        self.request(method=request.method, url=request.url,
                     body=request.body, headers=dict(request.headers))
        return self.getresponse()

    def getresponse(self):
        return TransportResponse(status=self.response.status_code,
                                 headers=dict(self.response.headers),
                                 body=self.response.content,
                                 reason=self.response.reason)

    def close(self):  # pragma: no cover
        # return connection back to pool
        if self.response is not None:
            self.response.close()

    def _normalize_headers(self, headers):
        headers = dict(headers or {})

        # all headers should be strings
        for key, value in headers.items():
            if isinstance(value, (int, float)):
                headers[key] = str(value)

        return headers
