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
Bounded retry primitives.

:func:`retry` wraps a boolean probe ("has the resource reached the state I
want yet?") and re-invokes it on a growing schedule until it returns True,
the timeout elapses or the probe raises an error which is not a "not yet"
signal. :class:`Retry` is the decorator flavour used around transport calls
which should be retried on transient network errors and rate limiting.

All time values (timeout, period, delay, backoff) are in seconds.
"""

import ssl
import time
import socket
import logging
from collections import namedtuple
from concurrent import futures
from functools import wraps

import requests

from cloudcore.common.types import Type
from cloudcore.common.types import IllegalStateError
from cloudcore.common.types import ExecutionError
from cloudcore.common.exceptions import RateLimitReachedError

__all__ = [
    'DEFAULT_PERIOD',
    'BACKOFF_FACTOR',
    'MAX_PERIOD_MULTIPLIER',
    'TRANSIENT_PROBE_EXCEPTIONS',

    'PollOutcome',
    'PollResult',
    'RetryState',
    'RetryablePredicate',
    'retry',
    'next_interval',

    'MinimalRetry',
    'Retry',
    'TransientSSLError'
]

_logger = logging.getLogger(__name__)

# Polling defaults, see ``retry``
DEFAULT_PERIOD = 0.05  # first wait between two probes
BACKOFF_FACTOR = 1.5  # growth of the wait after every probe
MAX_PERIOD_MULTIPLIER = 10  # max_period = period * 10 when not given

# Exceptions which only mean "the resource is not there yet". They are
# looked up along the ``__cause__`` chain so wrapped errors count as well.
TRANSIENT_PROBE_EXCEPTIONS = (
    IllegalStateError,
    ExecutionError,
    TimeoutError,
    futures.TimeoutError,
    futures.CancelledError,
)

# Error message which indicates a transient SSL error upon which request
# can be retried
TRANSIENT_SSL_ERROR = 'The read operation timed out'

# Constants used by the ``Retry`` decorator
DEFAULT_TIMEOUT = 30  # default retry timeout
DEFAULT_DELAY = 1  # default sleep delay used in each iterator
DEFAULT_BACKOFF = 1  # retry backup multiplier


class TransientSSLError(ssl.SSLError):
    """Represent transient SSL errors, e.g. timeouts"""
    pass


RETRY_EXCEPTIONS = (
    RateLimitReachedError,
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    socket.gaierror,
    TransientSSLError,
)


class PollOutcome(Type):
    """
    How a polling loop ended.

    :cvar SUCCESS: The probe returned True.
    :cvar TIMEOUT: The timeout elapsed before the probe returned True.
    :cvar FAILED: The probe raised an unrecoverable error (see ``cause``).
    :cvar CANCELLED: The cancel event was set before the probe succeeded.
    """
    SUCCESS = 'success'
    TIMEOUT = 'timeout'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class PollResult(namedtuple('PollResult',
                            ['outcome', 'cause', 'attempts', 'elapsed'])):
    """
    Immutable result of a polling loop. Truthy only on success.
    """

    __slots__ = ()

    def __bool__(self):
        return self.outcome == PollOutcome.SUCCESS

    @property
    def succeeded(self):
        return self.outcome == PollOutcome.SUCCESS

    @property
    def timed_out(self):
        return self.outcome == PollOutcome.TIMEOUT


class RetryState(object):
    """
    Book keeping for a single polling call.
    """

    __slots__ = ('attempt', 'elapsed', 'next_wait')

    def __init__(self, next_wait):
        self.attempt = 0
        self.elapsed = 0.0
        self.next_wait = next_wait

    def __repr__(self):
        return ('<RetryState attempt=%s, elapsed=%.3f, next_wait=%.3f>' %
                (self.attempt, self.elapsed, self.next_wait))


def next_interval(attempt, period, max_period, backoff=BACKOFF_FACTOR):
    """
    Wait before retry ``attempt`` (1 for the first retry):
    ``period * backoff ** (attempt - 1)`` capped at ``max_period``.

    :rtype: ``float``
    """
    interval = period * (backoff ** (attempt - 1))
    return min(interval, max_period)


def _find_exception(exc, types):
    seen = set()
    while exc is not None and id(exc) not in seen:
        if isinstance(exc, types):
            return exc
        seen.add(id(exc))
        exc = exc.__cause__
    return None


class RetryablePredicate(object):
    """
    Call ``probe`` until it returns True, the timeout elapses or it raises
    an unrecoverable error.

    The probe runs immediately, then after waits of ``period``,
    ``period * 1.5``, ``period * 1.5 ** 2``, ... each capped at
    ``max_period`` and at the time left before the deadline. Once the
    deadline is reached the probe runs one last time, so a timeout of zero
    or less means exactly one call and no waiting.

    :param probe: Callable returning a boolean.
    :type probe: ``callable``

    :param timeout: Maximum time to wait.
    :type timeout: ``float``

    :param period: First wait between two calls. Must be positive unless
                   ``timeout`` is zero or less.
    :type period: ``float``

    :param max_period: Upper bound of a single wait
                       (default ``period * MAX_PERIOD_MULTIPLIER``).
    :type max_period: ``float``

    :param backoff: Growth factor of the wait.
    :type backoff: ``float``

    :param transient_exceptions: Errors which count as "not yet".
    :type transient_exceptions: ``tuple``

    :param cancel_event: Optional event; once set the loop stops waiting and
                         ends with ``PollOutcome.CANCELLED``.
    :type cancel_event: ``threading.Event``

    :param timer: Monotonic time source (tests).
    :param sleep: Sleep function (tests).
    """

    def __init__(self, probe, timeout, period=DEFAULT_PERIOD, max_period=None,
                 backoff=BACKOFF_FACTOR,
                 transient_exceptions=TRANSIENT_PROBE_EXCEPTIONS,
                 cancel_event=None, timer=None, sleep=None):
        if period is None:
            period = DEFAULT_PERIOD
        if max_period is None:
            max_period = period * MAX_PERIOD_MULTIPLIER
        if period < 0 or max_period < 0:
            raise ValueError('period and max_period must not be negative')
        if timeout > 0 and (period == 0 or max_period == 0):
            raise ValueError('period and max_period must be positive when '
                             'waiting')
        if backoff < 1:
            raise ValueError('backoff must be greater or equal to 1')

        self.probe = probe
        self.timeout = timeout
        self.period = period
        self.max_period = max_period
        self.backoff = backoff
        self.transient_exceptions = tuple(transient_exceptions)
        self.cancel_event = cancel_event
        self.timer = timer or time.monotonic
        self.sleep = sleep or time.sleep

    def __call__(self, *args, **kwargs):
        """
        Run the polling loop and return True on success, False on timeout.

        Unrecoverable probe errors are re-raised.

        :rtype: ``bool``
        """
        result = self.poll(*args, **kwargs)
        if result.outcome == PollOutcome.FAILED:
            raise result.cause
        return result.succeeded

    def poll(self, *args, **kwargs):
        """
        Run the polling loop and return a :class:`PollResult`.

        Arguments are passed through to every probe call.

        :rtype: :class:`PollResult`
        """
        start = self.timer()
        end = start + self.timeout
        state = RetryState(next_wait=self.period)

        def result(outcome, cause=None):
            state.elapsed = self.timer() - start
            return PollResult(outcome=outcome, cause=cause,
                              attempts=state.attempt, elapsed=state.elapsed)

        try:
            now = start
            while now < end:
                if self._cancelled():
                    return result(PollOutcome.CANCELLED)

                if self._apply(state, *args, **kwargs):
                    return result(PollOutcome.SUCCESS)

                state.next_wait = next_interval(state.attempt, self.period,
                                                self.max_period, self.backoff)
                sleep_time = min(state.next_wait, end - self.timer())
                if sleep_time > 0 and self._wait(sleep_time):
                    return result(PollOutcome.CANCELLED)
                now = self.timer()

            if self._cancelled():
                return result(PollOutcome.CANCELLED)
            if self._apply(state, *args, **kwargs):
                return result(PollOutcome.SUCCESS)
        except Exception as e:
            _logger.debug('Probe %r failed after %s attempt(s): %r',
                          self.probe, state.attempt, e)
            return result(PollOutcome.FAILED, cause=e)

        _logger.debug('Probe %r did not succeed within %s seconds (%s '
                      'attempts)', self.probe, self.timeout, state.attempt)
        return result(PollOutcome.TIMEOUT)

    def _apply(self, state, *args, **kwargs):
        state.attempt += 1
        try:
            return bool(self.probe(*args, **kwargs))
        except Exception as e:
            if _find_exception(e, self.transient_exceptions) is None:
                raise
            _logger.warning('Probe %r on attempt %s is not ready [%s], '
                            'retrying', self.probe, state.attempt, e)
            return False

    def _cancelled(self):
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _wait(self, seconds):
        """
        Sleep for ``seconds``; return True if the wait was cancelled.
        """
        if self.cancel_event is not None:
            return self.cancel_event.wait(seconds)
        self.sleep(seconds)
        return False

    def __repr__(self):
        return ('<RetryablePredicate probe=%r, timeout=%s, period=%s, '
                'max_period=%s>' % (self.probe, self.timeout, self.period,
                                    self.max_period))


def retry(probe, timeout, period=DEFAULT_PERIOD, max_period=None, **kwargs):
    """
    Return a :class:`RetryablePredicate` for ``probe``.

    ``max_period`` defaults to ten times ``period``.

    :Example:

    node_running = retry(lambda: get_node().state == 'running', timeout=600,
                         period=1)
    if not node_running():
        raise IllegalStateError('node did not start in time')
    """
    return RetryablePredicate(probe=probe, timeout=timeout, period=period,
                              max_period=max_period, **kwargs)


class MinimalRetry(object):
    def __init__(self, retry_delay=DEFAULT_DELAY, timeout=DEFAULT_TIMEOUT,
                 backoff=DEFAULT_BACKOFF, sleep=None):
        """
        Wrapper around retrying that helps to handle common transient
        exceptions.

        This minimalistic version only retries SSL errors and rate limiting.

        :param retry_delay: retry delay between the attempts.
        :param timeout: maximum time to wait.
        :param backoff: multiplier added to delay between attempts.

        :Example:

        retry_request = MinimalRetry(timeout=1, retry_delay=1, backoff=1)
        retry_request(transport.send)(request)
        """
        if retry_delay is None:
            retry_delay = DEFAULT_DELAY
        if timeout is None:
            timeout = DEFAULT_TIMEOUT
        if backoff is None:
            backoff = DEFAULT_BACKOFF

        self.retry_delay = retry_delay
        self.timeout = max(timeout, 0)
        self.backoff = backoff
        self.sleep = sleep or time.sleep

    def __call__(self, func):
        def transform_ssl_error(function, *args, **kwargs):
            try:
                return function(*args, **kwargs)
            except ssl.SSLError as exc:
                if TRANSIENT_SSL_ERROR in str(exc):
                    raise TransientSSLError(*exc.args)
                raise

        @wraps(func)
        def retry_loop(*args, **kwargs):
            current_delay = self.retry_delay
            end = time.monotonic() + self.timeout

            while True:
                try:
                    return transform_ssl_error(func, *args, **kwargs)
                except Exception as exc:
                    if time.monotonic() >= end:
                        raise

                    if isinstance(exc, RateLimitReachedError):
                        _logger.debug('You are being rate limited, backing '
                                      'off...')

                        # Retry-After defaults to 0, use a more reasonable
                        # default to prevent busy waiting
                        retry_after = exc.retry_after if exc.retry_after else 2
                        self.sleep(retry_after)

                        # Reset delay if we're told to wait due to rate
                        # limiting
                        current_delay = self.retry_delay
                    elif self.should_retry(exc):
                        _logger.debug('Retrying %s in %s seconds after %r',
                                      getattr(func, '__name__', func),
                                      current_delay, exc)
                        self.sleep(current_delay)
                        current_delay *= self.backoff
                    else:
                        raise

        return retry_loop

    def should_retry(self, exception):
        return False


class Retry(MinimalRetry):
    def __init__(self, retry_exceptions=RETRY_EXCEPTIONS,
                 retry_delay=DEFAULT_DELAY, timeout=DEFAULT_TIMEOUT,
                 backoff=DEFAULT_BACKOFF, sleep=None):
        """
        Wrapper around retrying that helps to handle common transient
        exceptions.

        This version retries the errors that :class:`MinimalRetry` retries
        and all errors of the exception types that are given.

        :param retry_exceptions: types of exceptions to retry on.
        :param retry_delay: retry delay between the attempts.
        :param timeout: maximum time to wait.
        :param backoff: multiplier added to delay between attempts.
        """
        super(Retry, self).__init__(retry_delay=retry_delay, timeout=timeout,
                                    backoff=backoff, sleep=sleep)
        if retry_exceptions is None:
            retry_exceptions = RETRY_EXCEPTIONS
        self.retry_exceptions = retry_exceptions

    def should_retry(self, exception):
        return isinstance(exception, tuple(self.retry_exceptions))
