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
import time
import threading

from cloudcore.test import unittest
from cloudcore.utils.cache import CachedToken
from cloudcore.utils.cache import TokenCache
from cloudcore.utils.cache import memoize_with_expiration
from cloudcore.utils.clock import FixedClock
from cloudcore.common.types import MissingKeyError


class CountingLoader(object):
    def __init__(self, values=None, delay=0):
        self.values = list(values or ['secret-1', 'secret-2', 'secret-3'])
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
            index = min(self.calls, len(self.values)) - 1
        if self.delay:
            time.sleep(self.delay)
        value = self.values[index]
        if isinstance(value, Exception):
            raise value
        return value


class TokenCacheTestCase(unittest.TestCase):
    def setUp(self):
        self.clock = FixedClock(1000)

    def test_value_is_cached_until_expiry(self):
        loader = CountingLoader()
        cache = TokenCache(loader, expiry_seconds=60, clock=self.clock)

        self.assertEqual(cache.get(), 'secret-1')
        self.clock.advance(59)
        self.assertEqual(cache(), 'secret-1')
        self.assertEqual(loader.calls, 1)

        self.clock.advance(1)
        self.assertEqual(cache.get(), 'secret-2')
        self.assertEqual(loader.calls, 2)
        self.assertEqual(cache.cached.expires_at, 1060 + 60)

    def test_invalidate_forces_reload(self):
        loader = CountingLoader()
        cache = TokenCache(loader, expiry_seconds=60, clock=self.clock)

        self.assertEqual(cache.get(), 'secret-1')
        cache.invalidate()
        self.assertIsNone(cache.cached)
        self.assertEqual(cache.get(), 'secret-2')

    def test_missing_value_raises_and_is_not_cached(self):
        for empty in [None, '', b'']:
            loader = CountingLoader([empty, 'secret'])
            cache = TokenCache(loader, expiry_seconds=60, clock=self.clock)

            self.assertRaises(MissingKeyError, cache.get)
            self.assertIsNone(cache.cached)
            self.assertEqual(cache.get(), 'secret')
            self.assertEqual(loader.calls, 2)

    def test_loader_error_is_not_cached(self):
        loader = CountingLoader([RuntimeError('down'), 'secret'])
        cache = TokenCache(loader, expiry_seconds=60, clock=self.clock)

        self.assertRaises(RuntimeError, cache.get)
        self.assertEqual(cache.get(), 'secret')

    def test_loader_can_set_its_own_expiry(self):
        tokens = [CachedToken('token-1', 1010), CachedToken('token-2', 2000)]
        loader = CountingLoader(tokens)
        cache = TokenCache(loader, expiry_seconds=600, clock=self.clock)

        self.assertEqual(cache.get(), 'token-1')
        self.clock.advance(10)
        self.assertEqual(cache.get(), 'token-2')
        self.assertEqual(cache.cached.expires_at, 2000)

    def test_non_positive_expiry_disables_caching(self):
        loader = CountingLoader()
        cache = TokenCache(loader, expiry_seconds=0, clock=self.clock)

        self.assertEqual(cache.get(), 'secret-1')
        self.assertEqual(cache.get(), 'secret-2')
        self.assertIsNone(cache.cached)

    def test_single_flight_under_concurrency(self):
        loader = CountingLoader(delay=0.05)
        cache = TokenCache(loader, expiry_seconds=60, clock=self.clock)

        results = []
        barrier = threading.Barrier(16)

        def worker():
            barrier.wait()
            results.append(cache.get())

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(loader.calls, 1)
        self.assertEqual(results, ['secret-1'] * 16)

    def test_single_flight_after_expiry(self):
        loader = CountingLoader(delay=0.05)
        cache = TokenCache(loader, expiry_seconds=60, clock=self.clock)

        self.assertEqual(cache.get(), 'secret-1')
        self.clock.advance(61)

        results = []
        barrier = threading.Barrier(16)

        def worker():
            barrier.wait()
            results.append(cache.get())

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(loader.calls, 2)
        self.assertEqual(results, ['secret-2'] * 16)

    def test_cached_token_repr_hides_value(self):
        token = CachedToken('super-secret', 10)
        self.assertNotIn('super-secret', repr(token))
        self.assertTrue(token.is_valid(9))
        self.assertFalse(token.is_valid(10))

    def test_memoize_with_expiration(self):
        loader = CountingLoader()
        memoized = memoize_with_expiration(loader, 5, clock=self.clock)

        self.assertEqual(memoized(), 'secret-1')
        self.assertEqual(memoized(), 'secret-1')
        self.clock.advance(5)
        self.assertEqual(memoized(), 'secret-2')


if __name__ == '__main__':
    sys.exit(unittest.main())
