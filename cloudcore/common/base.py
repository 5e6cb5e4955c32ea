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
import logging

from requests.structures import CaseInsensitiveDict

import cloudcore

from cloudcore.utils.py3 import httplib
from cloudcore.utils.py3 import urlparse
from cloudcore.utils.py3 import urlencode
from cloudcore.utils.py3 import b

from cloudcore.utils.misc import lowercase_keys
from cloudcore.utils.retry import Retry
from cloudcore.utils.retry import retry
from cloudcore.common.exceptions import exception_from_message
from cloudcore.common.signing import Credentials
from cloudcore.common.types import CloudCoreError
from cloudcore.common.types import IllegalStateError
from cloudcore.common.types import InvalidCredsError
from cloudcore.common.types import MalformedResponseError
from cloudcore.common.types import ServiceUnavailableError
from cloudcore.http import CloudConnection

__all__ = [
    'RETRY_FAILED_HTTP_REQUESTS',

    'Request',
    'Response',
    'JsonResponse',

    'Connection',
    'PollingConnection',
    'ConnectionKey',
    'ConnectionUserAndKey'
]

_logger = logging.getLogger(__name__)

# Module level variable indicates if the failed HTTP requests should be retried
RETRY_FAILED_HTTP_REQUESTS = False


class Request(object):
    """
    An HTTP request on its way to the transport.

    Signers never modify a request in place, they derive a new one with
    :meth:`copy` or :meth:`with_headers`.
    """

    def __init__(self, method, url, headers=None, body=None):
        self.method = method.upper()
        self.url = url
        self.headers = CaseInsensitiveDict(headers or {})
        self.body = body

    @property
    def path(self):
        return urlparse.urlparse(self.url).path

    @property
    def query(self):
        return urlparse.urlparse(self.url).query

    def copy(self, **kwargs):
        """
        Return a new request, with ``method``, ``url``, ``headers`` or
        ``body`` replaced by the given values.

        :rtype: :class:`Request`
        """
        values = {
            'method': self.method,
            'url': self.url,
            'headers': self.headers.copy(),
            'body': self.body
        }
        values.update(kwargs)
        return self.__class__(**values)

    def with_headers(self, headers, remove=None):
        """
        Return a new request with ``headers`` added (replacing existing ones
        with the same name) and every header for which ``remove(name)`` is
        True dropped first.

        :rtype: :class:`Request`
        """
        new_headers = CaseInsensitiveDict()
        for name, value in self.headers.items():
            if remove is not None and remove(name):
                continue
            new_headers[name] = value
        new_headers.update(headers)
        return self.copy(headers=new_headers)

    def __repr__(self):
        return '<Request method=%s, url=%s>' % (self.method, self.url)


class Response(object):
    """
    A base Response class to derive from.
    """

    status = httplib.OK  # Response status code
    headers = {}  # type: dict
    body = None  # Raw response body
    object = None  # Parsed response body

    error = None  # Reason returned by the server.
    connection = None  # Parent connection class
    parse_zero_length_body = False

    def __init__(self, response, connection):
        """
        :param response: Response returned by the transport.
        :type response: :class:`cloudcore.http.TransportResponse`

        :param connection: Parent connection object.
        :type connection: :class:`.Connection`
        """
        self.connection = connection

        # http.client doesn't lowercase the header names, requests uses a
        # case insensitive dict; we always want a plain lowercase dict
        self.headers = lowercase_keys(dict(response.headers))
        self.status = response.status
        self.error = response.reason
        self.request = connection.request_object if connection else None

        body = response.body if response.body is not None else b''
        self.body = b(body).decode('utf-8', 'replace').strip()

        if not self.success():
            if self.status == httplib.UNAUTHORIZED:
                raise InvalidCredsError(self.parse_error())
            if self.status == httplib.SERVICE_UNAVAILABLE:
                raise ServiceUnavailableError(
                    self.parse_error(),
                    driver=connection.driver if connection else None)
            raise exception_from_message(code=self.status,
                                         message=self.parse_error(),
                                         headers=self.headers)

        if not self.body and not self.parse_zero_length_body:
            self.object = self.body
        else:
            self.object = self.parse_body()

    def parse_body(self):
        """
        Parse response body.

        Override in a provider's subclass.

        :return: Parsed body.
        :rtype: ``str``
        """
        return self.body

    def parse_error(self):
        """
        Parse the error messages.

        Override in a provider's subclass.

        :return: Parsed error.
        :rtype: ``str``
        """
        return self.body

    def success(self):
        """
        Determine if our request was successful.

        :rtype: ``bool``
        :return: ``True`` or ``False``
        """
        return self.status in (httplib.OK, httplib.CREATED,
                               httplib.ACCEPTED, httplib.NO_CONTENT)


class JsonResponse(Response):
    """
    A Base JSON Response class to derive from.
    """

    def parse_body(self):
        if len(self.body) == 0 and not self.parse_zero_length_body:
            return self.body

        try:
            body = json.loads(self.body)
        except ValueError as e:
            raise MalformedResponseError(
                'Failed to parse JSON: %s' % (e),
                body=self.body,
                driver=self.connection.driver if self.connection else None)
        return body

    parse_error = parse_body


class Connection(object):
    """
    A base connection class to derive from.

    Requests built here go through the optional ``signer`` (any
    :class:`cloudcore.common.signing.BaseRequestSigner`) right before they
    are handed to the transport.
    """

    conn_class = CloudConnection

    responseCls = Response
    connection = None
    host = '127.0.0.1'  # type: str
    port = 443
    timeout = None
    secure = 1
    driver = None
    action = None
    signer = None
    request_object = None
    proxy_url = None
    retry_delay = None
    backoff = None

    def __init__(self, secure=True, host=None, port=None, url=None,
                 timeout=None, proxy_url=None, retry_delay=None,
                 backoff=None, signer=None):
        self.secure = secure and 1 or 0
        self.ua = []

        self.request_path = ''

        if host:
            self.host = host

        if port is not None:
            self.port = port
        else:
            if self.secure == 1:
                self.port = 443
            else:
                self.port = 80

        if url:
            (self.host, self.port, self.secure,
             self.request_path) = self._tuple_from_url(url)

        self.timeout = timeout or self.timeout
        self.retry_delay = retry_delay
        self.backoff = backoff
        self.proxy_url = proxy_url

        if signer is not None:
            self.signer = signer

    def _tuple_from_url(self, url):
        secure = 1
        port = None
        (scheme, netloc, request_path, param,
         query, fragment) = urlparse.urlparse(url)

        if scheme not in ['http', 'https']:
            raise CloudCoreError('Invalid scheme: %s in url %s' % (scheme,
                                                                    url))

        if scheme == "http":
            secure = 0

        if ":" in netloc:
            netloc, port = netloc.rsplit(":")
            port = int(port)

        if not port:
            if scheme == "http":
                port = 80
            else:
                port = 443

        host = netloc
        port = int(port)

        return (host, port, secure, request_path)

    def connect(self, host=None, port=None, base_url=None, **kwargs):
        """
        Establish a connection with the API server.

        :type host: ``str``
        :param host: Optional host to override our default

        :type port: ``int``
        :param port: Optional port to override our default

        :returns: A connection
        """
        # prefer the attribute base_url if its set or sent
        secure = self.secure

        if getattr(self, 'base_url', None) and base_url is None:
            (host, port,
             secure, request_path) = self._tuple_from_url(self.base_url)
        elif base_url is not None:
            (host, port,
             secure, request_path) = self._tuple_from_url(base_url)
        else:
            host = host or self.host
            port = port or self.port

        # Make sure port is an int
        port = int(port)

        kwargs.update({'host': host, 'port': port, 'secure': secure})

        if self.timeout:
            kwargs.update({'timeout': self.timeout})

        if self.proxy_url:
            kwargs.update({'proxy_url': self.proxy_url})

        self.connection = self.conn_class(**kwargs)

    def _user_agent(self):
        user_agent_suffix = ' '.join(['(%s)' % x for x in self.ua])

        if self.driver:
            user_agent = 'cloudcore/%s (%s) %s' % (
                cloudcore.__version__,
                self.driver.name, user_agent_suffix)
        else:
            user_agent = 'cloudcore/%s %s' % (
                cloudcore.__version__, user_agent_suffix)

        return user_agent.strip()

    def user_agent_append(self, token):
        """
        Append a token to a user agent string.

        Users of the library should call this to uniquely identify their
        requests to a provider.

        :type token: ``str``
        :param token: Token to add to the user agent.
        """
        self.ua.append(token)

    def request(self, action, params=None, data=None, headers=None,
                method='GET', retry_failed=None):
        """
        Request a given `action`.

        Basically a wrapper around the transport's `send` that builds the
        URL, applies the hooks and signs the request.

        :type action: ``str``
        :param action: A path. This can include arguments. If included,
            any extra parameters are appended to the existing ones.

        :type params: ``dict``
        :param params: Optional mapping of additional parameters to send. If
            None, leave as an empty ``dict``.

        :type data: ``str``, ``bytes``, file-like or ``dict``
        :param data: A body of data to send with the request.

        :type headers: ``dict``
        :param headers: Extra headers to add to the request
            None, leave as an empty ``dict``.

        :type method: ``str``
        :param method: An HTTP method such as "GET" or "POST".

        :type retry_failed: ``bool``
        :param retry_failed: True if failed requests should be retried. This
                             argument can override module level constant and
                             environment variable value on per-request basis.

        :return: An :class:`Response` instance.
        :rtype: :class:`Response` instance
        """
        if params is None:
            params = {}
        else:
            params = dict(params)

        if headers is None:
            headers = {}
        else:
            headers = dict(headers)

        action = self.morph_action_hook(action)
        self.action = action
        self.method = method

        # Extend default parameters
        params = self.add_default_params(params)

        # Extend default headers
        headers = self.add_default_headers(headers)

        # We always send a user-agent header
        headers.update({'User-Agent': self._user_agent()})

        # Encode data if necessary
        if data is not None and data != '':
            data = self.encode_data(data)

        params, headers = self.pre_connect_hook(params, headers)

        if params:
            if '?' in action:
                url = '&'.join((action, urlencode(params, doseq=True)))
            else:
                url = '?'.join((action, urlencode(params, doseq=True)))
        else:
            url = action

        if self.connection is None:
            self.connect()

        request = Request(method=method, url=self._absolute_url(url),
                          headers=headers, body=data)

        if retry_failed is None:
            retry_failed = self._retry_enabled()

        if retry_failed:
            retry_request = Retry(timeout=self.timeout,
                                  retry_delay=self.retry_delay,
                                  backoff=self.backoff)
            return retry_request(self._send)(request)

        return self._send(request)

    def _send(self, request):
        if self.signer is not None:
            request = self.signer.sign_request(request)

        self.request_object = request
        response = self.connection.send(request)
        return self.responseCls(response=response, connection=self)

    def _absolute_url(self, url):
        scheme = 'https' if self.secure else 'http'
        port = int(self.port)
        if (scheme, port) in (('https', 443), ('http', 80)):
            netloc = self.host
        else:
            netloc = '%s:%s' % (self.host, port)

        if not url.startswith('/'):
            url = '/' + url

        return '%s://%s%s' % (scheme, netloc, url)

    def _retry_enabled(self):
        env = str(os.environ.get('CLOUDCORE_RETRY_FAILED_HTTP_REQUESTS', ''))
        return (RETRY_FAILED_HTTP_REQUESTS or
                env.lower() in ['true', '1'] or
                self.retry_delay is not None)

    def morph_action_hook(self, action):
        if not action:
            return self.request_path or '/'

        url = urlparse.urljoin(self.request_path.lstrip('/').rstrip('/') +
                               '/', action.lstrip('/'))

        if not url.startswith('/'):
            return '/' + url
        else:
            return url

    def add_default_params(self, params):
        """
        Adds default parameters (such as API key, version, etc.)
        to the passed `params`

        Should return a dictionary.
        """
        return params

    def add_default_headers(self, headers):
        """
        Adds default headers (such as Authorization, X-Foo-Bar)
        to the passed `headers`

        Should return a dictionary.
        """
        return headers

    def pre_connect_hook(self, params, headers):
        """
        A hook which is called before connecting to the remote server.
        This hook can perform a final manipulation on the params, headers and
        url parameters.

        :type params: ``dict``
        :param params: Request parameters.

        :type headers: ``dict``
        :param headers: Request headers.
        """
        return params, headers

    def encode_data(self, data):
        """
        Encode body data.

        Override in a provider's subclass.
        """
        return data


class PollingConnection(Connection):
    """
    Connection class which can also work with the async APIs.

    After initial requests, this class periodically polls for jobs status and
    waits until the job has finished.
    If job doesn't finish in timeout seconds, an IllegalStateError is thrown.
    """
    poll_interval = 0.5
    max_poll_interval = None
    timeout = 200
    request_method = 'request'

    def async_request(self, action, params=None, data=None, headers=None,
                      method='GET', context=None):
        """
        Perform an 'async' request to the specified path. Keep in mind that
        this function is *blocking* and 'async' in this case means that the
        hit URL only returns a job ID which is the periodically polled until
        the job has completed.

        This function works like this:

        - Perform a request to the specified path. Response should contain a
          'job_id'.

        - Returned 'job_id' is then used to construct a URL which is used for
          retrieving job status. Constructed URL is then polled with a
          growing interval (starting at 'self.poll_interval') until the
          response indicates that the job has completed or the timeout of
          'self.timeout' seconds has been reached.

        :type action: ``str``
        :param action: A path

        :type params: ``dict``
        :param params: Optional mapping of additional parameters to send. If
            None, leave as an empty ``dict``.

        :type data: ``str``
        :param data: A body of data to send with the request.

        :type headers: ``dict``
        :param headers: Extra headers to add to the request
            None, leave as an empty ``dict``.

        :type method: ``str``
        :param method: An HTTP method such as "GET" or "POST".

        :type context: ``dict``
        :param context: Context dictionary which is passed to the functions
                        which construct initial and poll URL.

        :return: An :class:`Response` instance.
        :rtype: :class:`Response` instance
        """

        request = getattr(self, self.request_method)
        kwargs = self.get_request_kwargs(action=action, params=params,
                                         data=data, headers=headers,
                                         method=method,
                                         context=context)
        response = request(**kwargs)
        kwargs = self.get_poll_request_kwargs(response=response,
                                              context=context,
                                              request_kwargs=kwargs)

        last = {'response': response}

        def job_completed():
            last['response'] = request(**kwargs)
            return self.has_completed(response=last['response'])

        completed = retry(job_completed, timeout=self.timeout,
                          period=self.poll_interval,
                          max_period=self.max_poll_interval)()

        if not completed:
            raise IllegalStateError('Job did not complete in %s seconds' %
                                    (self.timeout), driver=self.driver)

        return last['response']

    def get_request_kwargs(self, action, params=None, data=None,
                           headers=None, method='GET', context=None):
        """
        Arguments which are passed to the initial request() call inside
        async_request.
        """
        kwargs = {'action': action, 'params': params, 'data': data,
                  'headers': headers, 'method': method}
        return kwargs

    def get_poll_request_kwargs(self, response, context, request_kwargs):
        """
        Return keyword arguments which are passed to the request() method when
        polling for the job status.

        :param response: Response object returned by poll request.
        :type response: :class:`Response`

        :param request_kwargs: Kwargs previously used to initiate the
                                  poll request.
        :type response: ``dict``

        :return ``dict`` Keyword arguments
        """
        raise NotImplementedError('get_poll_request_kwargs not implemented')

    def has_completed(self, response):
        """
        Return job completion status.

        :param response: Response object returned by poll request.
        :type response: :class:`Response`

        :return ``bool`` True if the job has completed, False otherwise.
        """
        raise NotImplementedError('has_completed not implemented')


class ConnectionKey(Connection):
    """
    Base connection which accepts a single ``key`` argument.
    """

    def __init__(self, key, secure=True, host=None, port=None, url=None,
                 timeout=None, proxy_url=None, retry_delay=None,
                 backoff=None, signer=None):
        """
        Initialize `key`; set `secure` to an ``int`` based on
        passed value.
        """
        super(ConnectionKey, self).__init__(secure=secure, host=host,
                                            port=port, url=url,
                                            timeout=timeout,
                                            proxy_url=proxy_url,
                                            retry_delay=retry_delay,
                                            backoff=backoff, signer=signer)
        self.key = key


class ConnectionUserAndKey(ConnectionKey):
    """
    Base connection which accepts a ``user_id`` and ``key`` argument.
    """

    user_id = None  # type: str

    def __init__(self, user_id, key, secure=True, host=None, port=None,
                 url=None, timeout=None, proxy_url=None, retry_delay=None,
                 backoff=None, signer=None):
        super(ConnectionUserAndKey, self).__init__(key, secure=secure,
                                                   host=host, port=port,
                                                   url=url, timeout=timeout,
                                                   proxy_url=proxy_url,
                                                   retry_delay=retry_delay,
                                                   backoff=backoff,
                                                   signer=signer)
        self.user_id = user_id

    @property
    def credentials(self):
        """
        :rtype: :class:`cloudcore.common.signing.Credentials`
        """
        return Credentials(identity=self.user_id, credential=self.key)
