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
Clock collaborator used by the signers and the token cache.

Everything that needs "now" takes a clock argument so tests can pin the time
(e.g. to ``2009-01-01T12:00:00Z``) without patching the ``time`` module.
"""

import time
import datetime

__all__ = [
    'UTC_TIMESTAMP_FORMAT',
    'Clock',
    'SystemClock',
    'FixedClock',
    'SYSTEM_CLOCK'
]

UTC_TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%SZ'


class Clock(object):
    """
    Supplies the current time in epoch seconds and as an ISO-8601 string.
    """

    def time(self):
        raise NotImplementedError('time not implemented for this clock')

    def iso8601(self):
        """
        Current time as ``YYYY-MM-DDTHH:MM:SSZ`` (UTC, second precision).

        :rtype: ``str``
        """
        value = datetime.datetime.fromtimestamp(int(self.time()),
                                                tz=datetime.timezone.utc)
        return value.strftime(UTC_TIMESTAMP_FORMAT)


class SystemClock(Clock):
    def time(self):
        return time.time()


class FixedClock(Clock):
    """
    Clock which only moves when told to.

    :param now: Epoch seconds or an ISO-8601 timestamp string.
    """

    def __init__(self, now=0):
        if isinstance(now, str):
            now = self.parse_iso8601(now)
        self.now = float(now)

    def time(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds

    @staticmethod
    def parse_iso8601(timestamp):
        value = datetime.datetime.strptime(timestamp, UTC_TIMESTAMP_FORMAT)
        return value.replace(tzinfo=datetime.timezone.utc).timestamp()


SYSTEM_CLOCK = SystemClock()
