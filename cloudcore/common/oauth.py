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
OAuth 2.0 JWT bearer flow (RFC 7523) as used by service accounts.

A :class:`JWTBearerSigner` builds and signs the assertion, the
:class:`OAuth2TokenConnection` trades it for an access token,
:class:`OAuth2Credential` keeps that token until shortly before it expires
and :class:`BearerTokenAuth` puts it on outgoing requests.
"""

import json
import logging
from collections import OrderedDict
from collections import namedtuple

from cloudcore.utils.py3 import httplib
from cloudcore.utils.py3 import urlencode
from cloudcore.utils.py3 import base64url_encode
from cloudcore.utils.cache import CachedToken
from cloudcore.utils.cache import TokenCache
from cloudcore.utils.clock import SYSTEM_CLOCK
from cloudcore.utils.crypto import default_registry
from cloudcore.common.base import Connection
from cloudcore.common.base import JsonResponse
from cloudcore.common.signing import BaseRequestSigner
from cloudcore.common.types import InvalidCredsError
from cloudcore.common.types import MalformedResponseError

__all__ = [
    'GOOGLE_TOKEN_AUDIENCE',
    'JWT_BEARER_GRANT_TYPE',
    'CLIENT_ASSERTION_TYPE',
    'AUTH_TOKEN_EXPIRES_GRACE_SECONDS',
    'DEFAULT_TOKEN_TTL',

    'JWTClaims',
    'ClientCredentialsClaims',
    'OAuth2Token',
    'JWTBearerSigner',
    'OAuth2TokenResponse',
    'OAuth2TokenConnection',
    'OAuth2Credential',
    'BearerTokenAuth',

    'encode_json'
]

_logger = logging.getLogger(__name__)

GOOGLE_TOKEN_AUDIENCE = 'https://accounts.google.com/o/oauth2/token'
JWT_BEARER_GRANT_TYPE = 'urn:ietf:params:oauth:grant-type:jwt-bearer'
CLIENT_ASSERTION_TYPE = ('urn:ietf:params:oauth:client-assertion-type:'
                         'jwt-bearer')

DEFAULT_TOKEN_TTL = 3600

# Tokens are considered expired this many seconds before the server says so
AUTH_TOKEN_EXPIRES_GRACE_SECONDS = 5


class JWTClaims(namedtuple('JWTClaims',
                           ['iss', 'scope', 'aud', 'exp', 'iat'])):
    """
    Claim set of a service account assertion. Field order is the
    serialization order.
    """

    __slots__ = ()

    def as_dict(self):
        return OrderedDict(zip(self._fields, self))


class ClientCredentialsClaims(namedtuple('ClientCredentialsClaims',
                                         ['iss', 'sub', 'aud', 'exp', 'nbf',
                                          'jti'])):
    """
    Claim set of a client credentials assertion (``client_assertion``).
    """

    __slots__ = ()

    def as_dict(self):
        return OrderedDict(zip(self._fields, self))


class OAuth2Token(namedtuple('OAuth2Token',
                             ['access_token', 'token_type', 'expires_in'])):
    __slots__ = ()

    def __repr__(self):
        return '<OAuth2Token token_type=%s, expires_in=%s>' % (
            self.token_type, self.expires_in)


def encode_json(value):
    """
    Compact JSON (no whitespace), keys in insertion order.

    :rtype: ``str``
    """
    return json.dumps(value, separators=(',', ':'))


class JWTBearerSigner(object):
    """
    Creates signed JWT assertions.

    :param credentials: Service account e-mail (``identity``) and PEM private
                        key (``credential``).
    :type credentials: :class:`cloudcore.common.signing.Credentials`

    :param scopes: OAuth scopes, joined with a space in the ``scope`` claim.
    :type scopes: ``list`` of ``str`` or ``str``

    :param audience: ``aud`` claim, the token endpoint.
    :type audience: ``str``

    :param ttl: Lifetime of the assertion in seconds.
    :type ttl: ``int``

    :param algorithm: JWS algorithm name (``RS256``, ``RS1``, ``none``...).
    :type algorithm: ``str``

    :param certificate_thumbprint: Base64 SHA-1 thumbprint of the signing
                                   certificate, sent as ``x5t``.
    :type certificate_thumbprint: ``str``
    """

    def __init__(self, credentials, scopes=None,
                 audience=GOOGLE_TOKEN_AUDIENCE, ttl=DEFAULT_TOKEN_TTL,
                 algorithm='RS256', clock=None, registry=None,
                 certificate_thumbprint=None):
        if isinstance(scopes, str):
            scopes = [scopes]

        self.credentials = credentials
        self.scopes = list(scopes or [])
        self.audience = audience
        self.ttl = ttl
        self.algorithm = algorithm
        self.clock = clock or SYSTEM_CLOCK
        self.registry = registry or default_registry()
        self.certificate_thumbprint = certificate_thumbprint

        self.registry.get(algorithm)

    def header(self):
        header = OrderedDict([('alg', self.algorithm), ('typ', 'JWT')])
        if self.certificate_thumbprint:
            header['x5t'] = self.certificate_thumbprint
        return header

    def claims(self):
        """
        Claims for a new assertion, issued now and valid for ``ttl``.

        :rtype: :class:`JWTClaims`
        """
        now = int(self.clock.time())
        return JWTClaims(iss=self.credentials.identity,
                         scope=' '.join(self.scopes),
                         aud=self.audience,
                         exp=now + self.ttl,
                         iat=now)

    def client_credentials_claims(self, jti, subject=None):
        """
        :param jti: Unique identifier of the assertion.
        :type jti: ``str``

        :rtype: :class:`ClientCredentialsClaims`
        """
        now = int(self.clock.time())
        return ClientCredentialsClaims(
            iss=self.credentials.identity,
            sub=subject or self.credentials.identity,
            aud=self.audience,
            exp=now + self.ttl,
            nbf=now,
            jti=jti)

    def create_assertion(self, claims=None):
        """
        Compact serialization ``header.claims.signature``, every part
        Base64url encoded without padding.

        :param claims: Claims to sign, :meth:`claims` when not given.
        :type claims: :class:`JWTClaims` or :class:`ClientCredentialsClaims`

        :rtype: ``str``
        """
        if claims is None:
            claims = self.claims()

        payload = '.'.join([
            base64url_encode(encode_json(self.header())),
            base64url_encode(encode_json(claims.as_dict())),
        ])
        signature = self.registry.sign(payload, self.credentials.credential,
                                       self.algorithm)
        return '%s.%s' % (payload, base64url_encode(signature))

    def __repr__(self):
        return '<JWTBearerSigner iss=%s, algorithm=%s>' % (
            self.credentials.identity, self.algorithm)


class OAuth2TokenResponse(JsonResponse):
    def success(self):
        if httplib.BAD_REQUEST <= self.status < httplib.INTERNAL_SERVER_ERROR:
            raise InvalidCredsError(self.parse_error())
        return super(OAuth2TokenResponse, self).success()

    def parse_error(self):
        try:
            body = json.loads(self.body)
        except ValueError:
            return self.body or self.error

        if isinstance(body, dict) and 'error' in body:
            description = body.get('error_description')
            if description:
                return '%s: %s' % (body['error'], description)
            return body['error']
        return self.body


class OAuth2TokenConnection(Connection):
    """
    Token endpoint of an OAuth 2.0 authorization server.
    """

    responseCls = OAuth2TokenResponse
    token_path = '/o/oauth2/token'

    def __init__(self, url=None, token_path=None, **kwargs):
        super(OAuth2TokenConnection, self).__init__(url=url, **kwargs)
        if token_path is not None:
            self.token_path = token_path

    def add_default_headers(self, headers):
        headers['Content-Type'] = 'application/x-www-form-urlencoded'
        headers['Accept'] = 'application/json'
        return headers

    def request_token(self, assertion):
        """
        Exchange a JWT bearer assertion for an access token.

        :rtype: :class:`OAuth2Token`
        """
        return self._token_request([
            ('grant_type', JWT_BEARER_GRANT_TYPE),
            ('assertion', assertion),
        ])

    def request_client_credentials_token(self, client_id, assertion,
                                         resource=None):
        """
        ``client_credentials`` grant authenticated with a signed
        ``client_assertion``.

        :rtype: :class:`OAuth2Token`
        """
        body = [
            ('grant_type', 'client_credentials'),
            ('client_assertion_type', CLIENT_ASSERTION_TYPE),
            ('client_id', client_id),
            ('client_assertion', assertion),
        ]
        if resource:
            body.append(('resource', resource))
        return self._token_request(body)

    def _token_request(self, request_body):
        response = self.request(self.token_path, method='POST',
                                data=urlencode(request_body))
        token_info = response.object

        if not isinstance(token_info, dict) or \
                'access_token' not in token_info:
            raise MalformedResponseError('Token response has no access_token',
                                         body=response.body)

        expires_in = token_info.get('expires_in')
        return OAuth2Token(access_token=token_info['access_token'],
                           token_type=token_info.get('token_type', 'Bearer'),
                           expires_in=int(expires_in) if expires_in else None)


class OAuth2Credential(object):
    """
    Access token for a service account, renewed ``grace`` seconds before it
    expires. Concurrent callers share a single token request.

    :param signer: Produces the assertions.
    :type signer: :class:`JWTBearerSigner`

    :param connection: Token endpoint.
    :type connection: :class:`OAuth2TokenConnection`
    """

    def __init__(self, signer, connection,
                 grace=AUTH_TOKEN_EXPIRES_GRACE_SECONDS, clock=None):
        self.signer = signer
        self.connection = connection
        self.grace = grace
        self.clock = clock or signer.clock
        self.token = None

        self._cache = TokenCache(loader=self._get_new_token,
                                 expiry_seconds=signer.ttl - grace,
                                 clock=self.clock,
                                 name='OAuth2 access token')

    @property
    def access_token(self):
        return self._cache.get()

    def __call__(self):
        return self.access_token

    def invalidate(self):
        self._cache.invalidate()

    def _get_new_token(self):
        _logger.debug('Requesting new access token for %s',
                      self.signer.credentials.identity)
        token = self.connection.request_token(self.signer.create_assertion())
        self.token = token

        if token.expires_in is None:
            return token.access_token

        expires_at = self.clock.time() + token.expires_in - self.grace
        return CachedToken(token.access_token, expires_at)


class BearerTokenAuth(BaseRequestSigner):
    """
    Adds ``Authorization: Bearer <token>``.

    :param token_source: Zero-argument callable returning the current token,
                         e.g. an :class:`OAuth2Credential`.
    :type token_source: ``callable``
    """

    def __init__(self, token_source):
        self.token_source = token_source

    def sign_request(self, request):
        return request.with_headers(
            {'Authorization': 'Bearer %s' % (self.token_source())})
