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

from __future__ import annotations

import base64
import datetime
import hashlib
import json
import time
from typing import List, Optional

import pytest
import rekor_types
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from cosign import kms
from cosign._internal.encrypted import ScryptParams
from cosign._internal.merkle import _hash_children, _hash_leaf
from cosign.deadline import Deadline
from cosign.errors import BackendError
from cosign.keys import LocalKey
from cosign.transparency import LogEntry, LogInclusionProof
from cosign.verify.trust import TrustedRoots

# Cheap scrypt parameters, so that tests don't spend their time deriving keys.
FAST_SCRYPT = ScryptParams(n=1024, r=8, p=1)


@pytest.fixture
def scrypt_params() -> ScryptParams:
    return FAST_SCRYPT


@pytest.fixture
def local_key() -> LocalKey:
    return LocalKey.generate()


@pytest.fixture
def key_files(tmp_path, local_key, scrypt_params):
    """
    Writes an encrypted private key (passphrase `hunter2`) and its public key.
    """
    key_path = tmp_path / "cosign.key"
    pub_path = tmp_path / "cosign.pub"
    key_path.write_bytes(local_key.to_encrypted_pem(b"hunter2", scrypt_params))
    pub_path.write_bytes(local_key.public_key_pem())
    return key_path, pub_path


def _name(cn: str) -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "cosign-python tests"),
            x509.NameAttribute(NameOID.COMMON_NAME, cn),
        ]
    )


class _PKI:
    """
    A throwaway root -> intermediate -> leaf hierarchy.
    """

    def __init__(self, name: str = "test") -> None:
        now = datetime.datetime.now(datetime.timezone.utc)
        self.not_before = now - datetime.timedelta(days=1)
        self.not_after = now + datetime.timedelta(days=365)

        self.root_key = ec.generate_private_key(ec.SECP256R1())
        self.root = self._ca(
            f"{name}-root", self.root_key.public_key(), None, self.root_key, 1
        )

        self.intermediate_key = ec.generate_private_key(ec.SECP256R1())
        self.intermediate = self._ca(
            f"{name}-intermediate",
            self.intermediate_key.public_key(),
            self.root,
            self.root_key,
            0,
        )

    def _ca(self, cn, public_key, issuer, signing_key, path_length):
        builder = (
            x509.CertificateBuilder()
            .subject_name(_name(cn))
            .issuer_name(issuer.subject if issuer is not None else _name(cn))
            .public_key(public_key)
            .serial_number(x509.random_serial_number())
            .not_valid_before(self.not_before)
            .not_valid_after(self.not_after)
            .add_extension(
                x509.BasicConstraints(ca=True, path_length=path_length), critical=True
            )
            .add_extension(
                x509.KeyUsage(
                    digital_signature=False,
                    content_commitment=False,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False
            )
        )
        if issuer is not None:
            builder = builder.add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(
                    issuer.public_key()
                ),
                critical=False,
            )
        return builder.sign(signing_key, hashes.SHA256())

    def leaf(
        self,
        public_key=None,
        *,
        email: str = "signer@example.com",
        not_before: Optional[datetime.datetime] = None,
        not_after: Optional[datetime.datetime] = None,
        code_signing: bool = True,
    ) -> x509.Certificate:
        """
        Issue a short-lived signing certificate from the intermediate.
        """
        now = datetime.datetime.now(datetime.timezone.utc)
        if public_key is None:
            public_key = ec.generate_private_key(ec.SECP256R1()).public_key()

        usages = [ExtendedKeyUsageOID.CODE_SIGNING if code_signing else ExtendedKeyUsageOID.SERVER_AUTH]
        return (
            x509.CertificateBuilder()
            .subject_name(x509.Name([]))
            .issuer_name(self.intermediate.subject)
            .public_key(public_key)
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before or now - datetime.timedelta(minutes=5))
            .not_valid_after(not_after or now + datetime.timedelta(minutes=10))
            .add_extension(
                x509.SubjectAlternativeName([x509.RFC822Name(email)]), critical=True
            )
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.ExtendedKeyUsage(usages), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(
                    self.intermediate_key.public_key()
                ),
                critical=False,
            )
            .sign(self.intermediate_key, hashes.SHA256())
        )

    def trusted_roots(self) -> TrustedRoots:
        return TrustedRoots([self.root, self.intermediate])

    def bundle_pem(self) -> bytes:
        return b"".join(
            c.public_bytes(serialization.Encoding.PEM)
            for c in (self.intermediate, self.root)
        )


@pytest.fixture
def pki() -> _PKI:
    return _PKI()


@pytest.fixture
def other_pki() -> _PKI:
    return _PKI("other")


def _hashedrekord_hash(entry: LogEntry) -> str:
    body = rekor_types.Hashedrekord.model_validate_json(base64.b64decode(entry.body))
    return body.spec.data.hash.value


def _largest_power_of_two_below(n: int) -> int:
    return 1 << ((n - 1).bit_length() - 1)


def _merkle_root(leaves: List[bytes]) -> bytes:
    if len(leaves) == 1:
        return leaves[0]
    k = _largest_power_of_two_below(len(leaves))
    return _hash_children(_merkle_root(leaves[:k]), _merkle_root(leaves[k:]))


def _audit_path(index: int, leaves: List[bytes]) -> List[bytes]:
    # RFC 6962, section 2.1.1: PATH(m, D[n]).
    if len(leaves) == 1:
        return []
    k = _largest_power_of_two_below(len(leaves))
    if index < k:
        return _audit_path(index, leaves[:k]) + [_merkle_root(leaves[k:])]
    return _audit_path(index - k, leaves[k:]) + [_merkle_root(leaves[:k])]


class InMemoryLog:
    """
    A transparency log held in memory.

    Lookups match on the payload hash only, like an index, so callers still
    see entries whose other contents differ from what they asked for.

    With `with_proofs`, each entry carries an inclusion proof against the tree
    as it was when the entry was added, with a checkpoint signed by the log.
    """

    origin = "memory.log - 42"

    def __init__(self, with_proofs: bool = False, with_promises: bool = True) -> None:
        self.key = ec.generate_private_key(ec.SECP256R1())
        self.log_id = hashlib.sha256(
            self.key.public_key().public_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
        ).hexdigest()
        self.with_proofs = with_proofs
        self.with_promises = with_promises
        self.entries: List[LogEntry] = []
        self.find_calls = 0
        self.create_calls = 0
        self.error: Optional[BackendError] = None

    @property
    def public_key(self):
        return self.key.public_key()

    def checkpoint(self, tree_size: int, root_hash: bytes, key=None) -> str:
        """
        A signed checkpoint for the given tree, signed by `key` (the log's own
        key by default).
        """
        key = key or self.key
        note = (
            f"{self.origin}\n{tree_size}\n{base64.b64encode(root_hash).decode()}\n"
        )
        hint = hashlib.sha256(
            key.public_key().public_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
        ).digest()[:4]
        signature = key.sign(note.encode(), ec.ECDSA(hashes.SHA256()))
        line = base64.b64encode(hint + signature).decode()
        return f"{note}\n\u2014 memory.log {line}\n"

    def _proof(self, raw_body: bytes) -> LogInclusionProof:
        leaves = [_hash_leaf(base64.b64decode(e.body)) for e in self.entries]
        leaves.append(_hash_leaf(raw_body))
        root = _merkle_root(leaves)
        return LogInclusionProof(
            log_index=len(leaves) - 1,
            tree_size=len(leaves),
            root_hash=root.hex(),
            hashes=[h.hex() for h in _audit_path(len(leaves) - 1, leaves)],
            checkpoint=self.checkpoint(len(leaves), root),
        )

    def add_body(self, body: dict, integrated_time: Optional[int] = None) -> LogEntry:
        raw_body = json.dumps(body, separators=(",", ":")).encode()
        encoded = base64.b64encode(raw_body).decode()
        log_index = len(self.entries)
        integrated_time = int(time.time()) if integrated_time is None else integrated_time

        proof = self._proof(raw_body) if self.with_proofs else None

        promise = None
        if self.with_promises:
            unsigned = LogEntry(
                uuid=f"{log_index:016x}",
                body=encoded,
                integrated_time=integrated_time,
                log_id=self.log_id,
                log_index=log_index,
                inclusion_proof=proof,
                inclusion_promise="",
            )
            promise = base64.b64encode(
                self.key.sign(unsigned.encode_canonical(), ec.ECDSA(hashes.SHA256()))
            ).decode()

        entry = LogEntry(
            uuid=f"{log_index:016x}",
            body=encoded,
            integrated_time=integrated_time,
            log_id=self.log_id,
            log_index=log_index,
            inclusion_proof=proof,
            inclusion_promise=promise,
        )
        self.entries.append(entry)
        return entry

    def create_entry(self, request, deadline: Optional[Deadline] = None) -> LogEntry:
        self.create_calls += 1
        if self.error is not None:
            raise self.error
        return self.add_body(dict(request))

    def find_entries(self, expected_entry, deadline: Optional[Deadline] = None):
        self.find_calls += 1
        if self.error is not None:
            raise self.error
        wanted = expected_entry.spec.data.hash.value
        return [e for e in self.entries if _hashedrekord_hash(e) == wanted]


@pytest.fixture
def memory_log() -> InMemoryLog:
    return InMemoryLog()


class FakeKMSProvider(kms.KMSProvider):
    """
    A KMS provider backed by a key in memory.
    """

    keys: dict = {}

    def __init__(self, uri: str) -> None:
        super().__init__(uri)
        _, resource = kms.parse_uri(uri)
        self._key = self.keys.setdefault(
            resource, ec.generate_private_key(ec.SECP256R1())
        )
        self.sign_calls = 0

    def public_key(self, deadline: Deadline):
        deadline.check()
        return self._key.public_key()

    def sign(self, payload: bytes, deadline: Deadline) -> bytes:
        deadline.check()
        self.sign_calls += 1
        return self._key.sign(payload, ec.ECDSA(hashes.SHA256()))


@pytest.fixture
def fake_kms():
    """
    Registers `FakeKMSProvider` under the `fakekms://` scheme.
    """
    kms.register_provider("fakekms", FakeKMSProvider)
    yield FakeKMSProvider
    kms.unregister_provider("fakekms")
    FakeKMSProvider.keys.clear()


@pytest.fixture
def log_factory():
    return InMemoryLog
