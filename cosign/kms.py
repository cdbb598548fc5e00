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
The boundary to remote key-management services.

cosign-python does not ship KMS network clients. Instead, a client registers
a `KMSProvider` factory for a URI scheme (e.g. `gcpkms`, `awskms`,
`hashivault`), and `cosign.keys` resolves `--kms` references through this
registry.

Providers translate their transport failures into `BackendError`, and honor
the `Deadline` passed to every call.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from types import MappingProxyType
from typing import Callable, Dict, Mapping

from cosign._utils import PublicKey
from cosign.deadline import Deadline
from cosign.errors import ConfigError

_logger = logging.getLogger(__name__)

_SCHEME = re.compile(r"^(?P<scheme>[a-z][a-z0-9+.-]*)://(?P<resource>.+)$")


class KMSProvider(ABC):
    """
    A handle to a single key held by a remote key-management service.

    Private key material never leaves the service; `sign` is a network round
    trip.
    """

    def __init__(self, uri: str) -> None:
        """
        Create a new `KMSProvider` for the key identified by `uri`.
        """
        self.uri = uri

    @abstractmethod
    def public_key(self, deadline: Deadline) -> PublicKey:
        """
        Fetch the public half of the remote key.
        """
        pass

    @abstractmethod
    def sign(self, payload: bytes, deadline: Deadline) -> bytes:
        """
        Sign `payload` remotely, returning an ASN.1 DER ECDSA signature over
        its SHA256 digest.
        """
        pass


ProviderFactory = Callable[[str], KMSProvider]

_PROVIDERS: Dict[str, ProviderFactory] = {}


def register_provider(scheme: str, factory: ProviderFactory) -> None:
    """
    Register `factory` as the provider for `scheme://` references.

    Registering a scheme twice replaces the earlier factory.
    """
    if not re.fullmatch(r"[a-z][a-z0-9+.-]*", scheme):
        raise ConfigError(f"invalid KMS scheme: {scheme!r}")
    _PROVIDERS[scheme] = factory


def unregister_provider(scheme: str) -> None:
    """
    Remove the provider registered for `scheme`, if any.
    """
    _PROVIDERS.pop(scheme, None)


def providers() -> Mapping[str, ProviderFactory]:
    """
    A read-only view of the registered providers.
    """
    return MappingProxyType(_PROVIDERS)


def parse_uri(uri: str) -> tuple[str, str]:
    """
    Split a KMS reference into its scheme and provider-specific resource.
    """
    match = _SCHEME.match(uri)
    if match is None:
        raise ConfigError(f"invalid KMS reference: {uri!r}")
    return match.group("scheme"), match.group("resource")


def get_provider(uri: str) -> KMSProvider:
    """
    Build the provider for `uri` from the registry.

    Performs no I/O: remote calls happen only when the returned provider is
    used.
    """
    scheme, _ = parse_uri(uri)
    factory = _PROVIDERS.get(scheme)
    if factory is None:
        raise ConfigError(f"no KMS provider registered for scheme {scheme!r}")

    _logger.debug(f"resolved KMS reference with scheme {scheme}")
    return factory(uri)
