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

import sys
import json
import hmac
import base64
import hashlib
import threading

import pytest

from cloudcore.test import unittest
from cloudcore.test import MockHttp
from cloudcore.test import CloudCoreTestCase
from cloudcore.test import generate_rsa_key_pem
from cloudcore.utils.py3 import httplib
from cloudcore.utils.clock import FixedClock
from cloudcore.utils.crypto import RSAPrivateEncryptAlgorithm
from cloudcore.common.base import Request
from cloudcore.common.chef import ChefConnection
from cloudcore.common.chef import SignedHeaderAuth
from cloudcore.common.signing import EMPTY_BODY_HASH
from cloudcore.common.signing import Credentials
from cloudcore.common.signing import create_string_to_sign
from cloudcore.common.types import InvalidCredsError
from cloudcore.common.types import InvalidKeyError
from cloudcore.common.types import SigningError
from cloudcore.common.types import UnsupportedAlgorithmError

TIMESTAMP = '2009-01-01T12:00:00Z'
USER_ID = 'ops-user'
BODY = 'Spec Body'
BODY_HASH = 'DFteJZPVv6WKdQmMqZUQUumUyRs='
PATH = '/organizations/clownco'
PATH_HASH = 'YtBWDn1blGGuFIuKksdwXzHU9oE='

EXPECTED_STRING_TO_SIGN = '\n'.join([
    'Method:POST',
    'Hashed Path:%s' % (PATH_HASH),
    'X-Ops-Content-Hash:%s' % (BODY_HASH),
    'X-Ops-Timestamp:%s' % (TIMESTAMP),
    'X-Ops-UserId:%s' % (USER_ID),
])


def hash_of(value):
    return base64.b64encode(
        hashlib.sha1(value.encode('utf-8')).digest()).decode('utf-8')


def authorization_lines(headers):
    lines = []
    index = 1
    while 'X-Ops-Authorization-%d' % (index) in headers:
        lines.append(headers['X-Ops-Authorization-%d' % (index)])
        index += 1
    return lines


class SignedHeaderAuthTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.private_key = generate_rsa_key_pem()

    def setUp(self):
        self.clock = FixedClock(TIMESTAMP)
        self.signer = SignedHeaderAuth(Credentials(USER_ID, self.private_key),
                                       clock=self.clock)

    def _request(self, method='POST', path=PATH, body=BODY, headers=None):
        return Request(method, 'https://api.opscode.com%s' % (path),
                       headers=headers, body=body)

    def _recover(self, headers):
        signature = base64.b64decode(''.join(authorization_lines(headers)))
        return RSAPrivateEncryptAlgorithm().recover(signature,
                                                    self.private_key)

    def test_signed_headers(self):
        signed = self.signer.sign_request(self._request())

        self.assertEqual(signed.headers['X-Ops-Content-Hash'], BODY_HASH)
        self.assertEqual(signed.headers['X-Ops-Userid'], USER_ID)
        self.assertEqual(signed.headers['X-Ops-Sign'], 'version=1.0')
        self.assertEqual(signed.headers['X-Ops-Timestamp'], TIMESTAMP)
        self.assertEqual(self.signer.algorithm, 'rsa-private-encrypt')

    def test_signature_lines(self):
        signed = self.signer.sign_request(self._request())
        lines = authorization_lines(signed.headers)

        # 2048 bit key -> 256 bytes -> 344 Base64 characters
        self.assertEqual(len(lines), 6)
        self.assertTrue(all([len(line) == 60 for line in lines[:-1]]))
        self.assertEqual(len(lines[-1]), 344 - 5 * 60)
        self.assertNotIn('X-Ops-Authorization-7', signed.headers)

    def test_signature_covers_string_to_sign(self):
        signed = self.signer.sign_request(self._request())
        self.assertEqual(self._recover(signed.headers),
                         EXPECTED_STRING_TO_SIGN.encode('utf-8'))

    def test_signing_is_deterministic(self):
        first = self.signer.sign_request(self._request())
        second = self.signer.sign_request(self._request())

        self.assertEqual(authorization_lines(first.headers),
                         authorization_lines(second.headers))

    def test_original_request_is_not_modified(self):
        request = self._request()
        self.signer.sign_request(request)
        self.assertNotIn('X-Ops-Sign', request.headers)

    def test_empty_body(self):
        signed = self.signer.sign_request(self._request(method='GET',
                                                        body=None))
        self.assertEqual(signed.headers['X-Ops-Content-Hash'],
                         EMPTY_BODY_HASH)
        expected = create_string_to_sign('GET', PATH_HASH, EMPTY_BODY_HASH,
                                         TIMESTAMP, USER_ID)
        self.assertEqual(self._recover(signed.headers),
                         expected.encode('utf-8'))

    def test_encoded_query_marker_is_restored(self):
        request = self._request(method='GET', path='/search/node%3Fq=name:web',
                                body=None)
        signed = self.signer.sign_request(request)

        self.assertEqual(signed.url,
                         'https://api.opscode.com/search/node?q=name:web')
        expected = create_string_to_sign('GET', hash_of('/search/node'),
                                         EMPTY_BODY_HASH, TIMESTAMP, USER_ID)
        self.assertEqual(self._recover(signed.headers),
                         expected.encode('utf-8'))

    def test_stale_authorization_headers_are_replaced(self):
        stale = dict(('X-Ops-Authorization-%d' % (i), 'stale')
                     for i in range(1, 10))
        signed = self.signer.sign_request(self._request(headers=stale))

        self.assertEqual(len(authorization_lines(signed.headers)), 6)
        self.assertNotIn('X-Ops-Authorization-9', signed.headers)
        self.assertNotIn('stale', authorization_lines(signed.headers))

    def test_long_user_id(self):
        long_name = 'u' * 90
        signer = SignedHeaderAuth(Credentials(long_name, self.private_key),
                                  clock=self.clock)
        signed = signer.sign_request(self._request())
        self.assertEqual(signed.headers['X-Ops-Userid'], long_name)
        self.assertTrue(self._recover(signed.headers).endswith(
            long_name.encode('utf-8')))

        too_long = SignedHeaderAuth(Credentials('u' * 100, self.private_key),
                                    clock=self.clock)
        self.assertRaises(SigningError, too_long.sign_request,
                          self._request())

    def test_concurrent_signing(self):
        errors = []
        barrier = threading.Barrier(8)

        def worker(index):
            barrier.wait()
            body = 'body-%d' % (index)
            for _ in range(5):
                signed = self.signer.sign_request(self._request(body=body))
                recovered = self._recover(signed.headers).decode('utf-8')
                if 'X-Ops-Content-Hash:%s' % (hash_of(body)) not in recovered:
                    errors.append(index)

        threads = [threading.Thread(target=worker, args=(i,))
                   for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])

    def test_session_interval_reuses_timestamp(self):
        signer = SignedHeaderAuth(Credentials(USER_ID, self.private_key),
                                  clock=self.clock, session_interval=10)

        first = signer.sign_request(self._request())
        self.clock.advance(5)
        second = signer.sign_request(self._request())
        self.clock.advance(5)
        third = signer.sign_request(self._request())

        self.assertEqual(first.headers['X-Ops-Timestamp'], TIMESTAMP)
        self.assertEqual(second.headers['X-Ops-Timestamp'], TIMESTAMP)
        self.assertEqual(third.headers['X-Ops-Timestamp'],
                         '2009-01-01T12:00:10Z')

    def test_fresh_timestamp_by_default(self):
        self.clock.advance(61)
        signed = self.signer.sign_request(self._request())
        self.assertEqual(signed.headers['X-Ops-Timestamp'],
                         '2009-01-01T12:01:01Z')

    def test_hmac_secret(self):
        signer = SignedHeaderAuth(Credentials(USER_ID, 'shared-secret'),
                                  clock=self.clock)
        signed = signer.sign_request(self._request())

        expected = base64.b64encode(hmac.new(
            b'shared-secret', EXPECTED_STRING_TO_SIGN.encode('utf-8'),
            hashlib.sha1).digest()).decode('utf-8')
        self.assertEqual(signer.algorithm, 'hmac-sha1')
        self.assertEqual(authorization_lines(signed.headers), [expected])

    def test_unsupported_algorithm(self):
        self.assertRaises(UnsupportedAlgorithmError, SignedHeaderAuth,
                          Credentials(USER_ID, 'secret'), algorithm='md5')

    def test_invalid_private_key(self):
        signer = SignedHeaderAuth(Credentials(USER_ID, 'not a key'),
                                  clock=self.clock,
                                  algorithm='rsa-private-encrypt')
        self.assertRaises(InvalidKeyError, signer.sign_request,
                          self._request())

    def test_custom_chunk_width(self):
        signer = SignedHeaderAuth(Credentials(USER_ID, self.private_key),
                                  clock=self.clock, chunk_width=100)
        signed = signer.sign_request(self._request())
        self.assertEqual(len(authorization_lines(signed.headers)), 4)


class ChefConnectionTestCase(CloudCoreTestCase):
    @classmethod
    def setUpClass(cls):
        cls.private_key = generate_rsa_key_pem()

    def setUp(self):
        super(ChefConnectionTestCase, self).setUp()
        ChefMockHttp.type = None
        ChefMockHttp.test = self
        self.connection = ChefConnection(USER_ID, self.private_key,
                                         host='api.opscode.com',
                                         clock=FixedClock(TIMESTAMP))
        self.connection.conn_class = ChefMockHttp

    def test_request_is_signed(self):
        response = self.connection.request(PATH)

        self.assertEqual(response.object, {'name': 'clownco'})
        method, url, body, headers = ChefMockHttp.last_request
        self.assertEqual(url, 'https://api.opscode.com%s' % (PATH))
        self.assertEqual(headers['X-Ops-Userid'], USER_ID)
        self.assertEqual(headers['X-Ops-Content-Hash'], EMPTY_BODY_HASH)
        self.assertEqual(headers['X-Chef-Version'], '0.10.8')
        self.assertExecutedMethodCount(1)

    def test_json_body_is_hashed(self):
        self.connection.request(PATH, method='POST', data={'name': 'web'})

        method, url, body, headers = ChefMockHttp.last_request
        self.assertEqual(json.loads(body), {'name': 'web'})
        self.assertEqual(headers['X-Ops-Content-Hash'], hash_of(body))

    def test_invalid_credentials(self):
        ChefMockHttp.type = 'UNAUTHORIZED'
        with pytest.raises(InvalidCredsError) as e:
            self.connection.request(PATH)
        self.assertIn('Failed to authenticate', str(e.value))


class ChefMockHttp(MockHttp):
    def _organizations_clownco(self, method, url, body, headers):
        assert len(authorization_lines(headers)) == 6
        return (httplib.OK, json.dumps({'name': 'clownco'}),
                {'content-type': 'application/json'},
                httplib.responses[httplib.OK])

    def _organizations_clownco_UNAUTHORIZED(self, method, url, body,
                                            headers):
        body = json.dumps({'error': ['Failed to authenticate as ops-user']})
        return (httplib.UNAUTHORIZED, body,
                {'content-type': 'application/json'},
                httplib.responses[httplib.UNAUTHORIZED])


if __name__ == '__main__':
    sys.exit(unittest.main())
