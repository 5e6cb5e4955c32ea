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
import threading
from collections import namedtuple
from functools import partial

from mock import Mock

from cloudcore.test import unittest
from cloudcore.test import FakeTime
from cloudcore.common.types import IllegalStateError
from cloudcore.common.types import ResourceFailedError
from cloudcore.compute.base import PollingAdapter
from cloudcore.compute.types import NodeState
from cloudcore.compute.types import ImageState
from cloudcore.compute.types import NetworkState
from cloudcore.compute.types import OperationState

Resource = namedtuple('Resource', ['id', 'state'])


def fetcher(*states):
    """
    Mock fetch function returning a resource per state, ``None`` for a
    missing resource.
    """
    return Mock(side_effect=[Resource('r-1', state) if state is not None
                             else None for state in states])


class PollingAdapterTestCase(unittest.TestCase):
    def setUp(self):
        self.time = FakeTime()
        self.adapter = PollingAdapter(timeout=10, period=0.05, max_period=1,
                                      timer=self.time.time,
                                      sleep=self.time.sleep)

    def test_await_node_running(self):
        fetch = fetcher(NodeState.PENDING, NodeState.STARTING,
                        NodeState.RUNNING)

        state = self.adapter.await_node_running(fetch)

        self.assertEqual(state, NodeState.RUNNING)
        self.assertEqual(fetch.call_count, 3)
        self.assertEqual(len(self.time.sleeps), 2)
        self.assertAlmostEqual(self.time.sleeps[0], 0.05)
        self.assertAlmostEqual(self.time.sleeps[1], 0.075)

    def test_first_wait_is_the_configured_period(self):
        adapter = PollingAdapter(timeout=30, period=5, timer=self.time.time,
                                 sleep=self.time.sleep)
        fetch = fetcher(NodeState.PENDING, NodeState.PENDING,
                        NodeState.RUNNING)

        self.assertEqual(adapter.await_node_running(fetch), NodeState.RUNNING)
        self.assertEqual(self.time.sleeps, [5, 7.5])

    def test_max_period_defaults_to_ten_periods(self):
        adapter = PollingAdapter(timeout=100, period=2, timer=self.time.time,
                                 sleep=self.time.sleep)
        fetch = Mock(return_value=Resource('r-1', NodeState.PENDING))

        self.assertRaises(IllegalStateError, adapter.await_node_running,
                          fetch)
        self.assertEqual(max(self.time.sleeps), 20)

    def test_await_node_running_not_found_yet(self):
        fetch = fetcher(None, None, NodeState.RUNNING)

        self.assertEqual(self.adapter.await_node_running(fetch),
                         NodeState.RUNNING)
        self.assertEqual(fetch.call_count, 3)

    def test_await_node_running_error_state(self):
        fetch = fetcher(NodeState.PENDING, NodeState.ERROR)

        with self.assertRaises(ResourceFailedError) as e:
            self.adapter.await_node_running(fetch, name='web-1')

        self.assertEqual(e.exception.state, NodeState.ERROR)
        self.assertEqual(e.exception.resource, 'web-1')
        self.assertEqual(fetch.call_count, 2)

    def test_await_node_running_timeout(self):
        fetch = Mock(return_value=Resource('r-1', NodeState.PENDING))

        with self.assertRaises(IllegalStateError) as e:
            self.adapter.await_node_running(fetch, name='web-1', timeout=1)

        self.assertIn('Timed out after 1 seconds waiting for web-1 to be '
                      'running (last state: pending)', str(e.exception))
        self.assertAlmostEqual(sum(self.time.sleeps), 1)
        self.assertTrue(all(s <= 1 for s in self.time.sleeps))

    def test_zero_timeout_probes_once(self):
        fetch = Mock(return_value=Resource('r-1', NodeState.PENDING))

        self.assertRaises(IllegalStateError, self.adapter.await_node_running,
                          fetch, timeout=0)
        self.assertEqual(fetch.call_count, 1)
        self.assertEqual(self.time.sleeps, [])

    def test_await_node_terminated(self):
        fetch = fetcher(NodeState.STOPPING, NodeState.TERMINATED)
        self.assertEqual(self.adapter.await_node_terminated(fetch),
                         NodeState.TERMINATED)

    def test_await_node_terminated_when_node_is_gone(self):
        fetch = fetcher(NodeState.STOPPING, None)
        self.assertEqual(self.adapter.await_node_terminated(fetch),
                         NodeState.TERMINATED)
        self.assertEqual(fetch.call_count, 2)

    def test_await_image_available(self):
        fetch = fetcher(ImageState.PENDING, ImageState.AVAILABLE)
        self.assertEqual(self.adapter.await_image_available(fetch),
                         ImageState.AVAILABLE)

    def test_await_image_deleted(self):
        fetch = fetcher(ImageState.PENDING, ImageState.DELETED)
        self.assertRaises(ResourceFailedError,
                          self.adapter.await_image_available, fetch)

    def test_await_network_available(self):
        fetch = fetcher(NetworkState.CREATING, NetworkState.AVAILABLE)
        self.assertEqual(self.adapter.await_network_available(fetch),
                         NetworkState.AVAILABLE)

    def test_await_operation_done(self):
        fetch = fetcher(OperationState.PENDING, OperationState.RUNNING,
                        OperationState.DONE)
        self.assertEqual(self.adapter.await_operation_done(fetch),
                         OperationState.DONE)

    def test_await_operation_error(self):
        fetch = fetcher(OperationState.RUNNING, OperationState.ERROR)

        with self.assertRaises(ResourceFailedError) as e:
            self.adapter.await_operation_done(fetch, name='operation-42')
        self.assertIn('operation-42 entered state error', str(e.exception))

    def test_unexpected_error_is_raised(self):
        fetch = Mock(side_effect=KeyError('boom'))

        self.assertRaises(KeyError, self.adapter.await_node_running, fetch)
        self.assertEqual(fetch.call_count, 1)

    def test_await_state_with_plain_states(self):
        fetch_state = Mock(side_effect=['building', 'building', 'ready'])

        state = self.adapter.await_state(fetch_state, ['ready'],
                                         failure_states=['failed'],
                                         resource='volume')
        self.assertEqual(state, 'ready')

    def test_cancelled(self):
        cancel_event = threading.Event()
        cancel_event.set()
        adapter = PollingAdapter(timeout=10, cancel_event=cancel_event)
        fetch = Mock(return_value=Resource('r-1', NodeState.PENDING))

        with self.assertRaises(IllegalStateError) as e:
            adapter.await_node_running(fetch)
        self.assertIn('Cancelled', str(e.exception))
        self.assertEqual(fetch.call_count, 0)

    def test_await_all(self):
        node = fetcher(NodeState.PENDING, NodeState.RUNNING)
        image = fetcher(ImageState.AVAILABLE)

        result = self.adapter.await_all([
            partial(self.adapter.await_node_running, node),
            partial(self.adapter.await_image_available, image),
        ])

        self.assertEqual(result, [NodeState.RUNNING, ImageState.AVAILABLE])

    def test_await_all_raises_first_error(self):
        node = fetcher(NodeState.ERROR)
        image = fetcher(ImageState.AVAILABLE)

        self.assertRaises(ResourceFailedError, self.adapter.await_all, [
            partial(self.adapter.await_node_running, node),
            partial(self.adapter.await_image_available, image),
        ])
        self.assertEqual(image.call_count, 1)

    def test_await_all_no_waits(self):
        self.assertEqual(self.adapter.await_all([]), [])


if __name__ == '__main__':
    sys.exit(unittest.main())
