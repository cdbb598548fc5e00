# Copyright 2022 The Sigstore Authors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Signing and verification keys.

A key comes from exactly one of three sources:

* a local file: either an encrypted private key (`ENCRYPTED COSIGN PRIVATE KEY`)
  or a PEM public key;
* a remote key-management service, referenced by a `scheme://` URI;
* an X.509 certificate, whose subject public key is used for verification only.

All three expose the same `Key` interface, with explicit capability flags.
"""

from __future__ import annotations

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

import pem
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509 import Certificate, load_pem_x509_certificate

from cosign import kms
from cosign._internal import encrypted
from cosign._utils import PublicKey, load_pem_public_key, public_key_pem
from cosign.deadline import Deadline, _or_unbounded
from cosign.errors import (
    ConfigError,
    DecryptError,
    FormatError,
    KeyCapabilityError,
    UnsupportedKeyError,
)

_logger = logging.getLogger(__name__)

PEM_TYPE = "ENCRYPTED COSIGN PRIVATE KEY"
"""
The PEM block type of cosign's password-encrypted private keys.
"""

PassFunc = Callable[[bool], bytes]
"""
A callback returning a passphrase. The argument is `True` when the caller
should ask for confirmation, i.e. when a new key is being created.
"""

_SIGNATURE_ALGORITHM = ec.ECDSA(hashes.SHA256())


class KeyMode(str, enum.Enum):
    """
    The source a key is resolved from.
    """

    KEY = "key"
    KMS = "kms"
    CERTIFICATE = "certificate"


@dataclass(frozen=True)
class KeySelection:
    """
    The key references supplied for a single invocation.

    Exactly one of `key`, `kms` or `cert` must be set.
    """

    key: Optional[str] = None
    """
    A path to a local key file.
    """

    kms: Optional[str] = None
    """
    A `scheme://` reference to a KMS-held key.
    """

    cert: Optional[str] = None
    """
    A path to a PEM-encoded certificate bundle.
    """

    @property
    def mode(self) -> KeyMode:
        """
        The selected `KeyMode`.

        Raises `ConfigError` if none or more than one reference is set. This
        check performs no I/O.
        """
        selected = [
            mode
            for mode, ref in (
                (KeyMode.KEY, self.key),
                (KeyMode.KMS, self.kms),
                (KeyMode.CERTIFICATE, self.cert),
            )
            if ref
        ]
        if not selected:
            raise ConfigError("one of a key, a KMS reference or a certificate is required")
        if len(selected) > 1:
            raise ConfigError(
                "only one of a key, a KMS reference or a certificate may be given, "
                f"got: {', '.join(m.value for m in selected)}"
            )
        return selected[0]


class Key(ABC):
    """
    A signing and/or verification key.
    """

    mode: KeyMode

    @property
    @abstractmethod
    def public_key(self) -> PublicKey:
        """
        The public half of this key.
        """
        pass

    @property
    @abstractmethod
    def can_sign(self) -> bool:
        """
        Whether this key holds (or can reach) private key material.
        """
        pass

    @property
    def can_verify(self) -> bool:
        """
        Whether this key can verify signatures. Always `True` for the key
        kinds supported here.
        """
        return True

    def public_key_pem(self) -> bytes:
        """
        The PEM-encoded public key.
        """
        return public_key_pem(self.public_key)

    def log_public_key_material(self) -> bytes:
        """
        The PEM-encoded public material that identifies this key in a
        transparency log entry.
        """
        return self.public_key_pem()

    def sign(self, payload: bytes, deadline: Optional[Deadline] = None) -> bytes:
        """
        Sign `payload`, returning an ASN.1 DER ECDSA signature over its
        SHA256 digest.

        Raises `KeyCapabilityError` if this key can't sign.
        """
        if not self.can_sign:
            raise KeyCapabilityError(f"a {self.mode.value} key can't be used for signing")
        return self._sign(payload, _or_unbounded(deadline))

    def _sign(self, payload: bytes, deadline: Deadline) -> bytes:
        raise KeyCapabilityError(f"a {self.mode.value} key can't be used for signing")

    def verify(self, payload: bytes, signature: bytes) -> bool:
        """
        Returns `True` if `signature` is a valid signature over `payload`.

        A malformed or mismatched signature is a `False` result, never an
        exception.
        """
        if not self.can_verify:
            raise KeyCapabilityError(
                f"a {self.mode.value} key can't be used for verification"
            )
        try:
            self.public_key.verify(signature, payload, _SIGNATURE_ALGORITHM)
        except (InvalidSignature, ValueError):
            return False
        return True


class LocalKey(Key):
    """
    A key held in a local file.

    Loaded from an encrypted private key it can sign; loaded from a public
    key it can only verify.
    """

    mode = KeyMode.KEY

    def __init__(
        self,
        *,
        private_key: Optional[ec.EllipticCurvePrivateKey] = None,
        public_key: Optional[PublicKey] = None,
    ) -> None:
        """
        Create a new `LocalKey` from either half of a key pair.
        """
        if private_key is not None:
            public_key = private_key.public_key()
        if public_key is None:
            raise ConfigError("a local key needs a private or a public key")

        self._private_key = private_key
        self._public_key = public_key

    @classmethod
    def generate(cls) -> LocalKey:
        """
        Generate a fresh ECDSA P-256 key.
        """
        return cls(private_key=ec.generate_private_key(ec.SECP256R1()))

    @classmethod
    def from_encrypted_pem(cls, data: bytes, password: bytes) -> LocalKey:
        """
        Load an `ENCRYPTED COSIGN PRIVATE KEY` PEM block.
        """
        type_, body = encrypted.decode_pem(data)
        if type_ != PEM_TYPE:
            raise FormatError(f"unsupported pem type: {type_}")

        der = encrypted.decrypt(body, password)

        try:
            key = serialization.load_der_private_key(der, password=None)
        except ValueError as exc:
            raise FormatError("parsing private key") from exc

        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise FormatError("invalid private key: not an elliptic-curve key")

        return cls(private_key=key)

    @classmethod
    def from_public_pem(cls, data: bytes) -> LocalKey:
        """
        Load a PEM-encoded public key, for verification only.
        """
        return cls(public_key=load_pem_public_key(data))

    @property
    def public_key(self) -> PublicKey:
        return self._public_key

    @property
    def can_sign(self) -> bool:
        return self._private_key is not None

    def _sign(self, payload: bytes, deadline: Deadline) -> bytes:
        assert self._private_key is not None
        return self._private_key.sign(payload, _SIGNATURE_ALGORITHM)

    def to_encrypted_pem(
        self,
        password: bytes,
        params: encrypted.ScryptParams = encrypted.ScryptParams(),
    ) -> bytes:
        """
        Serialize the private key as an `ENCRYPTED COSIGN PRIVATE KEY` PEM block.
        """
        if self._private_key is None:
            raise KeyCapabilityError("a public key can't be exported as a private key")

        der = self._private_key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return encrypted.encode_pem(PEM_TYPE, encrypted.encrypt(der, password, params))


class KMSKey(Key):
    """
    A key held by a remote key-management service.

    The public key is fetched once and cached, so verification needs no
    network access.
    """

    mode = KeyMode.KMS

    def __init__(self, provider: kms.KMSProvider, public_key: PublicKey) -> None:
        """
        Create a new `KMSKey`. Use `KMSKey.load` to fetch the public key.
        """
        self._provider = provider
        self._public_key = public_key

    @classmethod
    def load(cls, uri: str, deadline: Optional[Deadline] = None) -> KMSKey:
        """
        Resolve `uri` and fetch the remote key's public half.
        """
        deadline = _or_unbounded(deadline)
        provider = kms.get_provider(uri)

        deadline.check()
        public_key = provider.public_key(deadline)
        if not isinstance(public_key, ec.EllipticCurvePublicKey):
            raise UnsupportedKeyError("KMS key is not an elliptic-curve key")

        return cls(provider, public_key)

    @property
    def uri(self) -> str:
        """
        The reference this key was resolved from.
        """
        return self._provider.uri

    @property
    def public_key(self) -> PublicKey:
        return self._public_key

    @property
    def can_sign(self) -> bool:
        return True

    def _sign(self, payload: bytes, deadline: Deadline) -> bytes:
        deadline.check()
        _logger.debug(f"signing with KMS key {self.uri}")
        return self._provider.sign(payload, deadline)


class CertificateKey(Key):
    """
    The public key of an X.509 certificate. Verification only.
    """

    mode = KeyMode.CERTIFICATE

    def __init__(self, certificate: Certificate) -> None:
        """
        Create a new `CertificateKey` from a leaf certificate.
        """
        public_key = certificate.public_key()
        if not isinstance(public_key, ec.EllipticCurvePublicKey):
            raise UnsupportedKeyError(
                "unsupported certificate key: expected an elliptic-curve key, "
                f"got {type(public_key).__name__}"
            )

        self.certificate = certificate
        self._public_key = public_key

    @classmethod
    def from_pem(cls, data: bytes) -> CertificateKey:
        """
        Load the first certificate of a PEM bundle as the signing leaf.
        """
        certs = [c for c in pem.parse(data) if isinstance(c, pem.Certificate)]
        if not certs:
            raise FormatError("no certs found in pem file")

        try:
            leaf = load_pem_x509_certificate(certs[0].as_bytes())
        except ValueError as exc:
            raise FormatError("invalid certificate") from exc

        return cls(leaf)

    @property
    def public_key(self) -> PublicKey:
        return self._public_key

    @property
    def can_sign(self) -> bool:
        return False

    def log_public_key_material(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.PEM)


def load_local_key(path: Union[str, Path], pass_func: Optional[PassFunc] = None) -> LocalKey:
    """
    Load a local key file, which may hold either an encrypted private key or
    a public key.
    """
    data = Path(path).read_bytes()
    type_, _ = encrypted.decode_pem(data)

    if type_ == "PUBLIC KEY":
        return LocalKey.from_public_pem(data)

    if type_ != PEM_TYPE:
        raise FormatError(f"unsupported pem type: {type_}")
    if pass_func is None:
        raise DecryptError("a passphrase is required to decrypt this key")

    return LocalKey.from_encrypted_pem(data, pass_func(False))


def load_key(
    selection: KeySelection,
    pass_func: Optional[PassFunc] = None,
    deadline: Optional[Deadline] = None,
) -> Key:
    """
    Resolve `selection` to exactly one kind of key.
    """
    mode = selection.mode

    if mode == KeyMode.KEY:
        assert selection.key is not None
        return load_local_key(selection.key, pass_func)
    elif mode == KeyMode.KMS:
        assert selection.kms is not None
        return KMSKey.load(selection.kms, deadline)
    elif mode == KeyMode.CERTIFICATE:
        assert selection.cert is not None
        return CertificateKey.from_pem(Path(selection.cert).read_bytes())
    else:
        raise ConfigError(f"unsupported key mode: {mode}")
