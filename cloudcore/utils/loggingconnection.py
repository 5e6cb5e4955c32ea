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

import os
import json
from shlex import quote as pquote
from xml.dom.minidom import parseString
from xml.parsers.expat import ExpatError

from cloudcore.http import CloudConnection
from cloudcore.utils.py3 import ensure_string
from cloudcore.utils.misc import lowercase_keys

__all__ = [
    'LoggingConnection',
    'REDACTED',
    'redact_headers'
]

REDACTED = '<redacted>'

# Headers which carry credentials or signatures
SENSITIVE_HEADERS = [
    'authorization',
    'x-auth-token',
    'x-account-meta-temp-url-key',
]
SENSITIVE_HEADER_PREFIXES = [
    'x-ops-authorization-',
]


def redact_headers(headers):
    """
    Return a copy of ``headers`` with credential bearing values replaced.

    :rtype: ``dict``
    """
    result = {}
    for name, value in headers.items():
        lower = name.lower()
        if lower in SENSITIVE_HEADERS or \
                any(lower.startswith(p) for p in SENSITIVE_HEADER_PREFIXES):
            value = REDACTED
        result[name] = value
    return result


class LoggingConnection(CloudConnection):
    """
    Debug class to log all HTTP(s) requests as they could be made
    with the curl command. Credentials and signatures are never written.

    :cvar log: file-like object that logs entries are written to.
    """

    protocol = 'https'

    log = None

    def _log_response(self, r):
        rv = "# -------- begin %d:%d response ----------\n" % (id(self), id(r))
        ht = "HTTP/1.1 %s %s\r\n" % (r.status, r.reason)
        for name, value in redact_headers(r.headers).items():
            ht += "%s: %s\r\n" % (name.title(), value)
        ht += "\r\n"

        headers = lowercase_keys(r.headers)
        content_type = headers.get('content-type', '').split(';')[0]

        pretty_print = os.environ.get(
            'CLOUDCORE_DEBUG_PRETTY_PRINT_RESPONSE', False)

        body = r.body or b''
        body = ensure_string(body, errors='replace')

        if pretty_print and content_type == 'application/json':
            try:
                body = json.loads(body)
                body = json.dumps(body, sort_keys=True, indent=4)
            except ValueError:
                # Invalid JSON or server is lying about content-type
                pass
        elif pretty_print and content_type in ['text/xml', 'application/xml']:
            try:
                elem = parseString(body)
                body = elem.toprettyxml()
            except ExpatError:
                # Invalid XML
                pass

        ht += body

        rv += ht
        rv += ("\n# -------- end %d:%d response ----------\n"
               % (id(self), id(r)))

        return rv

    def _log_curl(self, method, url, body, headers):
        cmd = ["curl"]

        if self.http_proxy_used:
            if self.proxy_username and self.proxy_password:
                proxy_url = '%s://%s:%s@%s:%s' % (self.proxy_scheme,
                                                  self.proxy_username,
                                                  REDACTED,
                                                  self.proxy_host,
                                                  self.proxy_port)
            else:
                proxy_url = '%s://%s:%s' % (self.proxy_scheme,
                                            self.proxy_host,
                                            self.proxy_port)
            proxy_url = pquote(proxy_url)
            cmd.extend(['--proxy', proxy_url])

        cmd.extend(['-i'])

        if method.lower() == 'head':
            # HEAD method need special handling
            cmd.extend(["--head"])
        else:
            cmd.extend(["-X", pquote(method)])

        for name, value in redact_headers(headers).items():
            cmd.extend(["-H", pquote("%s: %s" % (name, value))])

        if isinstance(body, (bytearray, bytes)):
            body = body.decode('utf-8', 'replace')

        if isinstance(body, str) and len(body) > 0:
            cmd.extend(["--data-binary", pquote(body)])
        elif body is not None and hasattr(body, 'read'):
            cmd.extend(["--data-binary", pquote('@<stream>')])

        cmd.extend(["--compress"])
        cmd.extend([pquote(url if '://' in url else
                           "%s%s" % (self.host, url))])
        return " ".join(cmd)

    def getresponse(self):
        response = CloudConnection.getresponse(self)
        if self.log is not None:
            rv = self._log_response(response)
            self.log.write(rv + "\n")
            self.log.flush()
        return response

    def request(self, method, url, body=None, headers=None, stream=False):
        headers = dict(headers or {})
        headers.update({'X-CC-Request-ID': str(id(self))})
        if self.log is not None:
            pre = "# -------- begin %d request ----------\n" % id(self)
            self.log.write(pre +
                           self._log_curl(method, url, body, headers) +
                           "\n")
            self.log.flush()
        return CloudConnection.request(self, method, url, body, headers,
                                       stream=stream)
