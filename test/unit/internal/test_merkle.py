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

import base64
import hashlib

import pytest

from cosign._internal.merkle import (
    _hash_children,
    _hash_leaf,
    root_from_inclusion_proof,
    verify_merkle_inclusion,
)
from cosign.errors import InvalidLogEntry
from cosign.transparency import LogEntry, LogInclusionProof

_BODIES = [f"entry {i}".encode() for i in range(3)]


def _entry(body: bytes, proof: LogInclusionProof) -> LogEntry:
    return LogEntry(
        uuid=None,
        body=base64.b64encode(body).decode(),
        integrated_time=0,
        log_id="abcd",
        log_index=proof.log_index,
        inclusion_proof=proof,
        inclusion_promise=None,
    )


def test_hash_leaf_and_children():
    assert _hash_leaf(b"x") == hashlib.sha256(b"\x00x").digest()
    assert _hash_children(b"l", b"r") == hashlib.sha256(b"\x01lr").digest()


def test_single_leaf_tree():
    root = _hash_leaf(_BODIES[0]).hex()
    proof = LogInclusionProof(log_index=0, tree_size=1, root_hash=root, hashes=[])
    verify_merkle_inclusion(_entry(_BODIES[0], proof))


@pytest.mark.parametrize("index", [0, 1, 2])
def test_three_leaf_tree(index):
    # RFC 6962: root = H(H(l0, l1), l2)
    leaves = [_hash_leaf(b) for b in _BODIES]
    left = _hash_children(leaves[0], leaves[1])
    root = _hash_children(left, leaves[2]).hex()

    hashes = {
        0: [leaves[1].hex(), leaves[2].hex()],
        1: [leaves[0].hex(), leaves[2].hex()],
        2: [left.hex()],
    }[index]
    proof = LogInclusionProof(log_index=index, tree_size=3, root_hash=root, hashes=hashes)

    verify_merkle_inclusion(_entry(_BODIES[index], proof))


def test_wrong_leaf():
    leaves = [_hash_leaf(b) for b in _BODIES[:2]]
    root = _hash_children(leaves[0], leaves[1]).hex()
    proof = LogInclusionProof(
        log_index=0, tree_size=2, root_hash=root, hashes=[leaves[1].hex()]
    )

    with pytest.raises(InvalidLogEntry, match="invalid root hash"):
        verify_merkle_inclusion(_entry(b"tampered", proof))


def test_wrong_proof_size():
    proof = LogInclusionProof(log_index=0, tree_size=2, root_hash="00", hashes=[])
    with pytest.raises(InvalidLogEntry, match="wrong size"):
        verify_merkle_inclusion(_entry(_BODIES[0], proof))


def test_malformed_hash():
    proof = LogInclusionProof(log_index=0, tree_size=2, root_hash="00", hashes=["zz"])
    with pytest.raises(InvalidLogEntry, match="malformed hash"):
        verify_merkle_inclusion(_entry(_BODIES[0], proof))


def test_missing_proof():
    entry = LogEntry(
        uuid=None,
        body="Ym9keQ==",
        integrated_time=0,
        log_id="abcd",
        log_index=0,
        inclusion_proof=None,
        inclusion_promise="c2V0",
    )
    with pytest.raises(InvalidLogEntry, match="no inclusion proof"):
        verify_merkle_inclusion(entry)


def test_too_many_hashes():
    leaf = _hash_leaf(_BODIES[0])
    with pytest.raises(InvalidLogEntry, match="too many hashes"):
        root_from_inclusion_proof(leaf, 0, 1, [leaf])


def test_index_outside_tree():
    with pytest.raises(InvalidLogEntry, match="outside a tree of size 2"):
        root_from_inclusion_proof(_hash_leaf(_BODIES[0]), 2, 2, [])


def test_five_leaf_tree_rightmost():
    # RFC 6962: root = H(H(H(l0, l1), H(l2, l3)), l4)
    leaves = [_hash_leaf(f"entry {i}".encode()) for i in range(5)]
    left = _hash_children(
        _hash_children(leaves[0], leaves[1]), _hash_children(leaves[2], leaves[3])
    )
    expected = _hash_children(left, leaves[4])

    assert root_from_inclusion_proof(leaves[4], 4, 5, [left]) == expected
