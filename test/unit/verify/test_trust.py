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

import datetime

import pytest
from cryptography.hazmat.primitives import serialization

from cosign.errors import FormatError, TrustError
from cosign.verify.trust import TrustedRoots, certificate_identity, trusted_cert


class TestTrustedRoots:
    def test_from_pem(self, pki):
        roots = TrustedRoots.from_pem(pki.bundle_pem())
        assert len(roots) == 2
        assert list(roots.certificates) == [pki.intermediate, pki.root]

    def test_from_files(self, tmp_path, pki, other_pki):
        first = tmp_path / "first.pem"
        second = tmp_path / "second.pem"
        first.write_bytes(pki.bundle_pem())
        second.write_bytes(other_pki.bundle_pem())

        assert len(TrustedRoots.from_files([first, second])) == 4

    def test_no_certs(self, local_key):
        with pytest.raises(FormatError, match="no certs found"):
            TrustedRoots.from_pem(local_key.public_key_pem())

    def test_rejects_leaf(self, pki):
        leaf_pem = pki.leaf().public_bytes(serialization.Encoding.PEM)
        with pytest.raises(FormatError, match="not a CA certificate"):
            TrustedRoots.from_pem(leaf_pem)


class TestTrustedCert:
    def test_trusted(self, pki):
        trusted_cert(pki.leaf(), pki.trusted_roots())

    def test_untrusted_root(self, pki, other_pki):
        with pytest.raises(TrustError, match="failed to build chain"):
            trusted_cert(other_pki.leaf(), pki.trusted_roots())

    def test_missing_intermediate(self, pki):
        with pytest.raises(TrustError):
            trusted_cert(pki.leaf(), TrustedRoots([pki.root]))

    def test_intermediate_alone_is_not_enough(self, pki):
        # The chain must end at a self-signed root in the pool.
        with pytest.raises(TrustError):
            trusted_cert(pki.leaf(), TrustedRoots([pki.intermediate]))

    def test_empty_pool(self, pki):
        with pytest.raises(TrustError, match="no trusted root"):
            trusted_cert(pki.leaf(), TrustedRoots([]))

    def test_expired_at_verification_time(self, pki):
        leaf = pki.leaf()
        later = leaf.not_valid_after_utc + datetime.timedelta(minutes=1)
        with pytest.raises(TrustError):
            trusted_cert(leaf, pki.trusted_roots(), at=later)

    def test_defaults_to_issuance_time(self, pki):
        # Long expired, but valid when it was issued.
        now = datetime.datetime.now(datetime.timezone.utc)
        leaf = pki.leaf(
            not_before=now - datetime.timedelta(hours=2),
            not_after=now - datetime.timedelta(hours=1),
        )
        trusted_cert(leaf, pki.trusted_roots())

    def test_requires_code_signing(self, pki):
        with pytest.raises(TrustError, match="not valid for code signing"):
            trusted_cert(pki.leaf(code_signing=False), pki.trusted_roots())

    def test_ca_is_not_a_signing_cert(self, pki):
        with pytest.raises(TrustError, match="certificate is a CA"):
            trusted_cert(pki.intermediate, pki.trusted_roots())


def test_certificate_identity(pki):
    assert certificate_identity(pki.leaf(email="jane@example.com")) == "jane@example.com"
    assert certificate_identity(pki.root) == "test-root"
