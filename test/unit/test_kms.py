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

import pytest

from cosign import kms
from cosign.errors import ConfigError


@pytest.mark.parametrize(
    ("uri", "scheme", "resource"),
    [
        ("gcpkms://projects/p/locations/l/keyRings/r/cryptoKeys/k", "gcpkms", "projects/p/locations/l/keyRings/r/cryptoKeys/k"),
        ("awskms:///arn:aws:kms:us-east-1:1234:key/abcd", "awskms", "/arn:aws:kms:us-east-1:1234:key/abcd"),
        ("hashivault://cosign", "hashivault", "cosign"),
    ],
)
def test_parse_uri(uri, scheme, resource):
    assert kms.parse_uri(uri) == (scheme, resource)


@pytest.mark.parametrize("uri", ["", "cosign.key", "://nothing", "gcpkms://", "GCP KMS://x"])
def test_parse_uri_invalid(uri):
    with pytest.raises(ConfigError, match="invalid KMS reference"):
        kms.parse_uri(uri)


def test_get_provider_unknown_scheme():
    with pytest.raises(ConfigError, match="no KMS provider registered"):
        kms.get_provider("nosuchkms://key")


def test_register_provider_invalid_scheme():
    with pytest.raises(ConfigError, match="invalid KMS scheme"):
        kms.register_provider("Not A Scheme", lambda uri: None)


def test_get_provider(fake_kms):
    provider = kms.get_provider("fakekms://my-key")
    assert isinstance(provider, fake_kms)
    assert provider.uri == "fakekms://my-key"
    assert "fakekms" in kms.providers()


def test_providers_is_read_only(fake_kms):
    with pytest.raises(TypeError):
        kms.providers()["other"] = fake_kms  # type: ignore[index]


def test_unregister_provider(fake_kms):
    kms.unregister_provider("fakekms")
    with pytest.raises(ConfigError):
        kms.get_provider("fakekms://my-key")

    # Unregistering an unknown scheme is a no-op.
    kms.unregister_provider("fakekms")
