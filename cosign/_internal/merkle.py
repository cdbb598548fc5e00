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
RFC 6962 Merkle tree hashing, and inclusion proof checking for log entries.

Proofs are evaluated with the iterative algorithm from RFC 9162, section
2.1.3.2. A proof only shows that an entry is part of the tree with the root
hash named in the proof: callers must also authenticate that root, by way of
the log's signed checkpoint.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import typing
from typing import List, Sequence

from cosign._utils import HexStr
from cosign.errors import InvalidLogEntry

if typing.TYPE_CHECKING:
    from cosign.transparency import LogEntry


def _hash_leaf(leaf: bytes) -> bytes:
    return hashlib.sha256(b"\x00" + leaf).digest()


def _hash_children(lhs: bytes, rhs: bytes) -> bytes:
    return hashlib.sha256(b"\x01" + lhs + rhs).digest()


def root_from_inclusion_proof(
    leaf_hash: bytes, index: int, tree_size: int, path: Sequence[bytes]
) -> bytes:
    """
    Returns the root hash implied by an audit `path` for the leaf at `index`
    of a tree with `tree_size` leaves.

    Raises `InvalidLogEntry` if the path has the wrong length for `index`
    and `tree_size`.
    """
    if index >= tree_size:
        raise InvalidLogEntry(
            f"inclusion proof index {index} is outside a tree of size {tree_size}"
        )

    fn, sn = index, tree_size - 1
    root = leaf_hash
    for sibling in path:
        if sn == 0:
            raise InvalidLogEntry("inclusion proof has wrong size: too many hashes")

        if fn & 1 or fn == sn:
            root = _hash_children(sibling, root)
            # Skip the levels where this node is the rightmost one and has
            # no sibling.
            while not fn & 1 and fn != 0:
                fn >>= 1
                sn >>= 1
        else:
            root = _hash_children(root, sibling)

        fn >>= 1
        sn >>= 1

    if sn != 0:
        raise InvalidLogEntry("inclusion proof has wrong size: too few hashes")

    return root


def verify_merkle_inclusion(entry: LogEntry) -> None:
    """
    Check that `entry`'s body is a leaf of the tree its inclusion proof
    names.
    """
    proof = entry.inclusion_proof
    if proof is None:
        raise InvalidLogEntry("log entry has no inclusion proof")

    try:
        leaf = base64.b64decode(entry.body, validate=True)
    except binascii.Error as exc:
        raise InvalidLogEntry("log entry body is not valid base64") from exc

    try:
        path: List[bytes] = [bytes.fromhex(h) for h in proof.hashes]
    except ValueError as exc:
        raise InvalidLogEntry("inclusion proof contains a malformed hash") from exc

    calculated = HexStr(
        root_from_inclusion_proof(
            _hash_leaf(leaf), proof.log_index, proof.tree_size, path
        ).hex()
    )
    if calculated != proof.root_hash.lower():
        raise InvalidLogEntry(
            f"inclusion proof contains invalid root hash: expected {proof.root_hash}, "
            f"calculated {calculated}"
        )
