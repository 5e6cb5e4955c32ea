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
Signature algorithms and the registry the request signers look them up in.

A registry is an explicit object: build one with :func:`default_registry`
(or register your own algorithms on an empty :class:`SignatureRegistry`) and
hand it to the signers which need it.
"""

import hmac
import hashlib
import logging

from cryptography.exceptions import InvalidSignature
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.asymmetric import rsa

from cloudcore.utils.py3 import b
from cloudcore.common.types import InvalidKeyError
from cloudcore.common.types import SigningError
from cloudcore.common.types import UnsupportedAlgorithmError

__all__ = [
    'SignatureAlgorithm',
    'HMACAlgorithm',
    'RSAPKCS1Algorithm',
    'RSAPrivateEncryptAlgorithm',
    'NoneAlgorithm',
    'SignatureRegistry',

    'default_registry',
    'load_private_key',
    'load_public_key',
    'is_pem_private_key'
]

_logger = logging.getLogger(__name__)


def is_pem_private_key(key):
    """
    Return True if ``key`` looks like a PEM encoded private key (or is an
    already loaded RSA private key).
    """
    if isinstance(key, rsa.RSAPrivateKey):
        return True
    if isinstance(key, (str, bytes)):
        return b'PRIVATE KEY-----' in b(key)
    return False


def load_private_key(key, password=None):
    """
    Load an RSA private key.

    :param key: PEM encoded key or an already loaded key object.
    :type key: ``str``, ``bytes`` or ``RSAPrivateKey``

    :rtype: ``RSAPrivateKey``
    """
    if isinstance(key, rsa.RSAPrivateKey):
        return key

    if not isinstance(key, (str, bytes)) or not key:
        raise InvalidKeyError('An RSA private key in PEM format is required')

    try:
        loaded = serialization.load_pem_private_key(
            b(key), password=b(password) if password else None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise InvalidKeyError('Unable to load private key: %s' % (e))

    if not isinstance(loaded, rsa.RSAPrivateKey):
        raise InvalidKeyError('Private key is not an RSA key')

    return loaded


def load_public_key(key):
    """
    Load an RSA public key from PEM, or derive it from a private key.

    :rtype: ``RSAPublicKey``
    """
    if isinstance(key, rsa.RSAPublicKey):
        return key
    if is_pem_private_key(key):
        return load_private_key(key).public_key()

    if not isinstance(key, (str, bytes)) or not key:
        raise InvalidKeyError('An RSA public key in PEM format is required')

    try:
        loaded = serialization.load_pem_public_key(b(key))
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise InvalidKeyError('Unable to load public key: %s' % (e))

    if not isinstance(loaded, rsa.RSAPublicKey):
        raise InvalidKeyError('Public key is not an RSA key')

    return loaded


class SignatureAlgorithm(object):
    """
    Base class for a named signature algorithm.

    ``sign`` returns the raw signature bytes; rendering (Base64, hex, ...) is
    the business of the request signer.
    """

    name = None  # type: str

    def sign(self, data, key):
        raise NotImplementedError('sign not implemented for this algorithm')

    def verify(self, data, signature, key):
        raise NotImplementedError('verify not implemented for this algorithm')

    def __repr__(self):
        return '<%s name=%s>' % (self.__class__.__name__, self.name)


class HMACAlgorithm(SignatureAlgorithm):
    def __init__(self, name, digestmod):
        self.name = name
        self.digestmod = digestmod

    def _key(self, key):
        if isinstance(key, (rsa.RSAPrivateKey, rsa.RSAPublicKey)):
            raise InvalidKeyError('%s requires a shared secret, not an RSA '
                                  'key' % (self.name))
        if not isinstance(key, (str, bytes, bytearray)) or not key:
            raise InvalidKeyError('%s requires a non-empty shared secret' %
                                  (self.name))
        return b(key)

    def sign(self, data, key):
        return hmac.new(self._key(key), b(data),
                        digestmod=self.digestmod).digest()

    def verify(self, data, signature, key):
        return hmac.compare_digest(self.sign(data, key), b(signature))


class RSAPKCS1Algorithm(SignatureAlgorithm):
    """
    RSASSA-PKCS1-v1_5 with the given hash (the JWS ``RS*`` family).
    """

    def __init__(self, name, hash_cls):
        self.name = name
        self.hash_cls = hash_cls

    def sign(self, data, key):
        private_key = load_private_key(key)
        return private_key.sign(b(data), padding.PKCS1v15(), self.hash_cls())

    def verify(self, data, signature, key):
        public_key = load_public_key(key)
        try:
            public_key.verify(b(signature), b(data), padding.PKCS1v15(),
                              self.hash_cls())
        except InvalidSignature:
            return False
        return True


class RSAPrivateEncryptAlgorithm(SignatureAlgorithm):
    """
    "Encrypt" the message itself with the RSA private key using PKCS#1 v1.5
    type 1 padding and no DigestInfo, as done by Chef's signing protocol
    version 1.0. The output is deterministic for a given key and message.
    """

    name = 'rsa-private-encrypt'

    def sign(self, data, key):
        private_key = load_private_key(key)
        numbers = private_key.private_numbers()
        modulus = numbers.public_numbers.n
        size = (modulus.bit_length() + 7) // 8

        data = b(data)
        if len(data) > size - 11:
            raise SigningError('Message of %d bytes is too long for a %d bit '
                               'key' % (len(data), modulus.bit_length()))

        padded = (b'\x00\x01' + b'\xff' * (size - 3 - len(data)) + b'\x00' +
                  data)
        value = pow(int.from_bytes(padded, 'big'), numbers.d, modulus)
        return value.to_bytes(size, 'big')

    def recover(self, signature, key):
        """
        Undo :meth:`sign` with the public key and return the original message.
        """
        public_key = load_public_key(key)
        numbers = public_key.public_numbers()
        size = (numbers.n.bit_length() + 7) // 8

        value = pow(int.from_bytes(b(signature), 'big'), numbers.e, numbers.n)
        padded = value.to_bytes(size, 'big')

        if not padded.startswith(b'\x00\x01'):
            raise InvalidSignature('Invalid PKCS#1 type 1 padding')

        separator = padded.find(b'\x00', 2)
        if separator < 10 or padded[2:separator].strip(b'\xff'):
            raise InvalidSignature('Invalid PKCS#1 type 1 padding')

        return padded[separator + 1:]

    def verify(self, data, signature, key):
        try:
            return hmac.compare_digest(self.recover(signature, key), b(data))
        except InvalidSignature:
            return False


class NoneAlgorithm(SignatureAlgorithm):
    """
    Unsigned JWT (``alg: none``); the signature is empty.
    """

    name = 'none'

    def sign(self, data, key):
        return b''

    def verify(self, data, signature, key):
        return signature in (b'', '')


class SignatureRegistry(object):
    """
    Maps algorithm names to :class:`SignatureAlgorithm` instances.
    """

    def __init__(self, algorithms=None):
        self._algorithms = {}

        for algorithm in algorithms or []:
            self.register(algorithm)

    def register(self, algorithm, name=None):
        name = name or algorithm.name
        if not name:
            raise ValueError('Algorithm %r has no name' % (algorithm))
        self._algorithms[name] = algorithm

    def get(self, name):
        try:
            return self._algorithms[name]
        except (KeyError, TypeError):
            raise UnsupportedAlgorithmError(algorithm=name)

    def names(self):
        return sorted(self._algorithms.keys())

    def __contains__(self, name):
        return name in self._algorithms

    def sign(self, string_to_sign, key, algorithm):
        """
        Sign ``string_to_sign`` with ``key``.

        :param string_to_sign: Data to sign.
        :type string_to_sign: ``str`` or ``bytes``

        :param key: Shared secret or private key, depending on the algorithm.

        :param algorithm: Registered algorithm name.
        :type algorithm: ``str``

        :return: Raw signature.
        :rtype: ``bytes``
        """
        implementation = self.get(algorithm)
        _logger.debug('Signing %d bytes with %s', len(b(string_to_sign)),
                      algorithm)
        return implementation.sign(string_to_sign, key)

    def verify(self, string_to_sign, signature, key, algorithm):
        return self.get(algorithm).verify(string_to_sign, signature, key)


def default_registry():
    """
    Return a new registry holding every built-in algorithm.

    :rtype: :class:`SignatureRegistry`
    """
    return SignatureRegistry([
        HMACAlgorithm('hmac-sha1', hashlib.sha1),
        HMACAlgorithm('hmac-sha256', hashlib.sha256),
        RSAPKCS1Algorithm('RS1', hashes.SHA1),
        RSAPKCS1Algorithm('RS256', hashes.SHA256),
        RSAPKCS1Algorithm('RS384', hashes.SHA384),
        RSAPKCS1Algorithm('RS512', hashes.SHA512),
        RSAPrivateEncryptAlgorithm(),
        NoneAlgorithm(),
    ])
