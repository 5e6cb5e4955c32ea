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

from typing import Optional
from typing import Union
from typing import cast

from enum import Enum

__all__ = [
    'Type',
    'CloudCoreError',
    'InvalidArgumentError',
    'SigningError',
    'UnsupportedAlgorithmError',
    'InvalidKeyError',
    'MissingKeyError',
    'IllegalStateError',
    'ExecutionError',
    'ResourceFailedError',
    'MalformedResponseError',
    'ProviderError',
    'InvalidCredsError',
    'ServiceUnavailableError'
]


class Type(str, Enum):
    @classmethod
    def tostring(cls, value):
        # type: (Union[Enum, str]) -> str
        """Return the string representation of the state object attribute
        :param str value: the state object to turn into string
        :return: the uppercase string that represents the state object
        :rtype: str
        """
        value = cast(Enum, value)
        return str(value._value_).upper()

    @classmethod
    def fromstring(cls, value):
        # type: (str) -> str
        """Return the state object attribute that matches the string
        :param str value: the string to look up
        :return: the state object attribute that matches the string
        :rtype: str
        """
        return getattr(cls, value.upper(), None)

    def __eq__(self, other):
        if isinstance(other, Type):
            return other.value == self.value
        elif isinstance(other, str):
            return self.value == other

        return super(Type, self).__eq__(other)

    def __ne__(self, other):
        return not self.__eq__(other)

    def __str__(self):
        return str(self.value)

    def __repr__(self):
        return self.value

    def __hash__(self):
        return hash(self.value)


class CloudCoreError(Exception):
    """The base class for other cloudcore exceptions"""

    def __init__(self, value, driver=None):
        # type: (str, Optional[object]) -> None
        super(CloudCoreError, self).__init__(value)
        self.value = value
        self.driver = driver

    def __str__(self):
        return self.__repr__()

    def __repr__(self):
        return ('<' + self.__class__.__name__ + ' in ' +
                repr(self.driver) +
                ' ' +
                repr(self.value) + '>')


class InvalidArgumentError(CloudCoreError, ValueError):
    """
    Malformed input to a signing operation (e.g. a non-positive expiration).

    Raised before any network or crypto work is done.
    """
    pass


class SigningError(CloudCoreError):
    """Base class for errors raised while producing a signature."""
    pass


class UnsupportedAlgorithmError(SigningError):
    """The requested signature algorithm is not registered."""

    def __init__(self, algorithm, driver=None):
        # type: (str, Optional[object]) -> None
        super(UnsupportedAlgorithmError, self).__init__(
            value='Unsupported signature algorithm: %s' % (algorithm),
            driver=driver)
        self.algorithm = algorithm


class InvalidKeyError(SigningError):
    """The key could not be parsed or has the wrong type for the algorithm."""
    pass


class MissingKeyError(SigningError):
    """
    A required signing secret could not be obtained.

    Never cached, a later call may succeed once the secret is available.
    """
    pass


class IllegalStateError(CloudCoreError):
    """
    A resource is not (yet) in the state an operation expects.

    Treated as a "not yet" signal by the retry engine, and raised by the
    polling adapter when a resource does not reach its target state in time.
    """
    pass


class ExecutionError(CloudCoreError):
    """
    An asynchronous task failed; the real error is available as
    ``__cause__``. Treated as a "not yet" signal by the retry engine.
    """
    pass


class ResourceFailedError(CloudCoreError):
    """A polled resource entered a terminal error state."""

    def __init__(self, value, resource=None, state=None, driver=None):
        super(ResourceFailedError, self).__init__(value=value, driver=driver)
        self.resource = resource
        self.state = state


class MalformedResponseError(CloudCoreError):
    """Exception for the cases when a provider returns a malformed
    response, e.g. you request JSON and provider returns
    '<h3>something</h3>' due to some error on their side."""

    def __init__(self, value, body=None, driver=None):
        # type: (str, Optional[str], Optional[object]) -> None
        super(MalformedResponseError, self).__init__(value=value,
                                                     driver=driver)
        self.body = body

    def __repr__(self):
        return ('<MalformedResponseException in ' +
                repr(self.driver) +
                ' ' +
                repr(self.value) +
                '>: ' +
                repr(self.body))


class ProviderError(CloudCoreError):
    """
    Exception used when provider gives back
    error response (HTTP 4xx, 5xx) for a request.

    Specific sub types can be derived for errors like
    HTTP 401 : InvalidCredsError
    HTTP 503 : ServiceUnavailableError
    """

    def __init__(self, value, http_code, driver=None):
        # type: (str, int, Optional[object]) -> None
        super(ProviderError, self).__init__(value=value, driver=driver)
        self.http_code = http_code

    def __repr__(self):
        return repr(self.value)


class InvalidCredsError(ProviderError):
    """Exception used when invalid credentials are used on a provider."""

    def __init__(self, value='Invalid credentials with the provider',
                 driver=None):
        # type: (str, Optional[object]) -> None
        super(InvalidCredsError, self).__init__(value,
                                                http_code=401,
                                                driver=driver)


class ServiceUnavailableError(ProviderError):
    """Exception used when a provider returns 503 Service Unavailable."""

    def __init__(self, value='Service unavailable at provider', driver=None):
        # type: (str, Optional[object]) -> None
        super(ServiceUnavailableError, self).__init__(
            value,
            http_code=503,
            driver=driver
        )
