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
Certificate trust checks for certificate-mode verification.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

import pem
from cryptography.x509 import (
    Certificate,
    ExtensionNotFound,
    NameOID,
    RFC822Name,
    SubjectAlternativeName,
    UniformResourceIdentifier,
    load_pem_x509_certificate,
)
from cryptography.x509.oid import ExtendedKeyUsageOID, ExtensionOID
from OpenSSL.crypto import (
    X509,
    X509Store,
    X509StoreContext,
    X509StoreContextError,
    X509StoreFlags,
)

from cosign._utils import cert_is_ca
from cosign.errors import FormatError, TrustError

_logger = logging.getLogger(__name__)


class TrustedRoots:
    """
    An immutable pool of trusted root and intermediate certificates.

    The pool is loaded once and only read afterwards, so a single instance
    may be shared across threads.
    """

    def __init__(self, certificates: Iterable[Certificate]) -> None:
        """
        Create a new `TrustedRoots` from CA certificates.

        Raises `FormatError` if any certificate is not a CA.
        """
        certs = tuple(certificates)
        for cert in certs:
            if not cert_is_ca(cert):
                raise FormatError(
                    f"not a CA certificate: {cert.subject.rfc4514_string()}"
                )
        self._certificates = certs

    @classmethod
    def from_pem(cls, data: bytes) -> TrustedRoots:
        """
        Load every certificate in a PEM bundle.
        """
        certs = [c for c in pem.parse(data) if isinstance(c, pem.Certificate)]
        if not certs:
            raise FormatError("no certs found in pem file")

        try:
            return cls(load_pem_x509_certificate(c.as_bytes()) for c in certs)
        except ValueError as exc:
            raise FormatError("invalid root certificate") from exc

    @classmethod
    def from_files(cls, paths: Sequence[Union[str, Path]]) -> TrustedRoots:
        """
        Load and merge the PEM bundles at `paths`.
        """
        certificates: List[Certificate] = []
        for path in paths:
            certificates.extend(cls.from_pem(Path(path).read_bytes()).certificates)
        return cls(certificates)

    @property
    def certificates(self) -> Sequence[Certificate]:
        """
        The certificates in this pool.
        """
        return self._certificates

    def __len__(self) -> int:
        return len(self._certificates)


def _check_leaf_usage(leaf: Certificate) -> None:
    try:
        if cert_is_ca(leaf):
            raise TrustError("invalid signing certificate: certificate is a CA")
        key_usage = leaf.extensions.get_extension_for_oid(ExtensionOID.KEY_USAGE)
    except FormatError as exc:
        raise TrustError(f"invalid signing certificate: {exc}") from exc
    except ExtensionNotFound:
        raise TrustError("invalid signing certificate: missing KeyUsage")

    if not key_usage.value.digital_signature:  # type: ignore
        raise TrustError(
            "invalid signing certificate: missing digital signature usage"
        )

    try:
        extended_key_usage = leaf.extensions.get_extension_for_oid(
            ExtensionOID.EXTENDED_KEY_USAGE
        )
    except ExtensionNotFound:
        raise TrustError("invalid signing certificate: missing ExtendedKeyUsage")

    if ExtendedKeyUsageOID.CODE_SIGNING not in extended_key_usage.value:  # type: ignore
        raise TrustError("invalid signing certificate: not valid for code signing")


def trusted_cert(
    leaf: Certificate, roots: TrustedRoots, at: Optional[datetime] = None
) -> None:
    """
    Check that `leaf` chains to `roots` and may sign code.

    The chain is built only from the certificates in `roots`, and every
    certificate in it must be valid at `at`. `at` defaults to the leaf's
    `not_valid_before`, i.e. the time a short-lived certificate was issued
    for signing.

    Raises `TrustError` if the check fails in any way.
    """
    if not len(roots):
        raise TrustError("no trusted root certificates configured")

    _check_leaf_usage(leaf)

    if at is None:
        at = leaf.not_valid_before_utc

    # NOTE: The `X509Store` object cannot have its time reset once the `set_time`
    # method been called on it. To get around this, we construct a new one in each
    # call.
    store = X509Store()
    # NOTE: By explicitly setting the flags here, we ensure that OpenSSL's
    # PARTIAL_CHAIN default does not change on us: the chain must end at a
    # self-signed root in the pool.
    store.set_flags(X509StoreFlags.X509_STRICT)
    for parent_cert in roots.certificates:
        store.add_cert(X509.from_cryptography(parent_cert))

    store.set_time(at)

    store_ctx = X509StoreContext(store, X509.from_cryptography(leaf))
    try:
        chain = store_ctx.get_verified_chain()
    except X509StoreContextError as e:
        raise TrustError(f"failed to build chain: {e}")

    _logger.debug(f"certificate chains to a trusted root in {len(chain) - 1} step(s)")


def certificate_identity(cert: Certificate) -> Optional[str]:
    """
    Returns the identity a certificate was issued to: its first email or URI
    Subject Alternative Name, falling back to the subject's common name.
    """
    try:
        san = cert.extensions.get_extension_for_class(SubjectAlternativeName).value
        for kind in (RFC822Name, UniformResourceIdentifier):
            names = san.get_values_for_type(kind)
            if names:
                return names[0]
    except ExtensionNotFound:
        pass

    common_names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if common_names:
        return str(common_names[0].value)
    return None
