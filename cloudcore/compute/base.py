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
Waiting for compute resources (nodes, images, networks, provider
operations) to reach a state, on top of :func:`cloudcore.utils.retry.retry`.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

from cloudcore.utils.retry import DEFAULT_PERIOD
from cloudcore.utils.retry import PollOutcome
from cloudcore.utils.retry import retry
from cloudcore.common.types import IllegalStateError
from cloudcore.common.types import ResourceFailedError
from cloudcore.compute.types import NodeState
from cloudcore.compute.types import ImageState
from cloudcore.compute.types import NetworkState
from cloudcore.compute.types import OperationState

__all__ = [
    'DEFAULT_AWAIT_TIMEOUT',
    'PollingAdapter'
]

_logger = logging.getLogger(__name__)

DEFAULT_AWAIT_TIMEOUT = 600


class PollingAdapter(object):
    """
    Blocks the calling thread until a resource reaches one of the target
    states.

    Every ``await_*`` method takes a zero-argument ``fetch`` callable which
    returns the current resource (anything with a ``state`` attribute), or
    ``None`` if the provider does not know about it (yet, or anymore).

    :param timeout: Default time to wait, in seconds.
    :type timeout: ``float``

    :param period: First wait between two polls.
    :type period: ``float``

    :param max_period: Longest wait between two polls, ten times
                       ``period`` when not given.
    :type max_period: ``float``

    :param executor_workers: Threads used by :meth:`await_all`.
    :type executor_workers: ``int``

    :param cancel_event: Set it to stop every wait started by this adapter.
    :type cancel_event: ``threading.Event``
    """

    def __init__(self, timeout=DEFAULT_AWAIT_TIMEOUT, period=DEFAULT_PERIOD,
                 max_period=None, executor_workers=4,
                 cancel_event=None, timer=None, sleep=None):
        self.timeout = timeout
        self.period = period
        self.max_period = max_period
        self.executor_workers = executor_workers
        self.cancel_event = cancel_event
        self.timer = timer
        self.sleep = sleep

    def await_state(self, fetch_state, target_states, failure_states=None,
                    resource='resource', action=None, timeout=None):
        """
        Poll ``fetch_state`` until it returns one of ``target_states``.

        :param fetch_state: Zero-argument callable returning the state.
        :type fetch_state: ``callable``

        :param target_states: States which end the wait successfully.
        :type target_states: ``list``

        :param failure_states: States from which the resource can't recover.
        :type failure_states: ``list``

        :param resource: Name of the resource, used in error messages.
        :type resource: ``str``

        :param action: What we are waiting for, used in error messages.
        :type action: ``str``

        :return: The state which ended the wait.

        :raises: :class:`ResourceFailedError` when a failure state is seen,
                 :class:`IllegalStateError` on timeout or cancellation.
        """
        target_states = list(target_states)
        failure_states = list(failure_states or [])
        timeout = self.timeout if timeout is None else timeout
        action = action or 'reach %s' % (
            ', '.join([str(state) for state in target_states]))
        last = {'state': None}

        def reached_state():
            state = fetch_state()
            last['state'] = state

            if state in failure_states:
                raise ResourceFailedError(
                    '%s entered state %s while waiting to %s' %
                    (resource, state, action),
                    resource=resource, state=state)

            return state in target_states

        result = retry(reached_state, timeout=timeout, period=self.period,
                       max_period=self.max_period,
                       cancel_event=self.cancel_event, timer=self.timer,
                       sleep=self.sleep).poll()

        if result.outcome == PollOutcome.SUCCESS:
            _logger.debug('%s reached %s after %s attempt(s)', resource,
                          last['state'], result.attempts)
            return last['state']

        if result.outcome == PollOutcome.FAILED:
            raise result.cause

        if result.outcome == PollOutcome.CANCELLED:
            raise IllegalStateError('Cancelled while waiting for %s to %s' %
                                    (resource, action))

        raise IllegalStateError('Timed out after %s seconds waiting for %s '
                                'to %s (last state: %s)' %
                                (timeout, resource, action, last['state']))

    def await_node_running(self, fetch_node, name='node', timeout=None):
        return self.await_state(
            self._state_of(fetch_node, name),
            target_states=[NodeState.RUNNING],
            failure_states=[NodeState.ERROR, NodeState.TERMINATED],
            resource=name, action='be running', timeout=timeout)

    def await_node_terminated(self, fetch_node, name='node', timeout=None):
        """
        A node the provider no longer returns counts as terminated.
        """
        return self.await_state(
            self._state_of(fetch_node, name, missing=NodeState.TERMINATED),
            target_states=[NodeState.TERMINATED],
            failure_states=[NodeState.ERROR],
            resource=name, action='be terminated', timeout=timeout)

    def await_image_available(self, fetch_image, name='image', timeout=None):
        return self.await_state(
            self._state_of(fetch_image, name),
            target_states=[ImageState.AVAILABLE],
            failure_states=[ImageState.ERROR, ImageState.DELETED],
            resource=name, action='become available', timeout=timeout)

    def await_network_available(self, fetch_network, name='network',
                                timeout=None):
        return self.await_state(
            self._state_of(fetch_network, name),
            target_states=[NetworkState.AVAILABLE],
            failure_states=[NetworkState.ERROR],
            resource=name, action='become available', timeout=timeout)

    def await_operation_done(self, fetch_operation, name='operation',
                             timeout=None):
        return self.await_state(
            self._state_of(fetch_operation, name),
            target_states=[OperationState.DONE],
            failure_states=[OperationState.ERROR],
            resource=name, action='complete', timeout=timeout)

    def await_all(self, waits):
        """
        Run several waits in parallel and return their results in order.

        Each wait is a zero-argument callable, e.g.
        ``functools.partial(adapter.await_node_running, fetch_node)``. The
        first error (in order) is re-raised once every wait has finished.

        :rtype: ``list``
        """
        waits = list(waits)
        if not waits:
            return []

        workers = min(self.executor_workers, len(waits))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(wait) for wait in waits]
        return [future.result() for future in futures]

    @staticmethod
    def _state_of(fetch, name, missing=None):
        def fetch_state():
            resource = fetch()
            if resource is None:
                if missing is not None:
                    return missing
                raise IllegalStateError('%s not found' % (name))
            return resource.state

        return fetch_state
