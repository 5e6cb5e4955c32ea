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

__all__ = [
    'lowercase_keys',
    'chunk_string'
]


def lowercase_keys(dictionary):
    return dict(((k.lower(), v) for k, v in dictionary.items()))


def chunk_string(value, width):
    """
    Split ``value`` into consecutive pieces of at most ``width`` characters.

    The last piece holds the remainder. An empty string yields an empty list.

    :param value: String to split.
    :type value: ``str``

    :param width: Maximum piece length.
    :type width: ``int``

    :rtype: ``list`` of ``str``
    """
    if width <= 0:
        raise ValueError('width must be a positive integer')

    return [value[i:i + width] for i in range(0, len(value), width)]
