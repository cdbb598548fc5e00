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
Transparency log data structures, and the client-side checks applied to
entries received from a transparency log.

The log is an untrusted source of content-addressed records: an entry found
for a signature is only accepted once its body has been decoded and compared
against the locally computed signature, payload hash and public key, and once
its inclusion in the log has been proven.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, List, Optional, Protocol

import rekor_types
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.dataclasses import dataclass
from securesystemslib.formats import encode_canonical

from cosign._internal.checkpoint import verify_checkpoint
from cosign._internal.merkle import verify_merkle_inclusion
from cosign._internal.rekor import EntryRequestBody, _hashedrekord_from_parts
from cosign._utils import B64Str, PublicKey, decode_signature, key_id
from cosign.deadline import Deadline, _or_unbounded
from cosign.errors import ConfigError, InvalidLogEntry, NotFoundError

_logger = logging.getLogger(__name__)


class LogInclusionProof(BaseModel):
    """
    Represents an inclusion proof for a transparency log entry.
    """

    model_config = ConfigDict(populate_by_name=True)

    checkpoint: Optional[StrictStr] = Field(None, alias="checkpoint")
    hashes: List[StrictStr] = Field(..., alias="hashes")
    log_index: StrictInt = Field(..., alias="logIndex")
    root_hash: StrictStr = Field(..., alias="rootHash")
    tree_size: StrictInt = Field(..., alias="treeSize")

    @field_validator("log_index")
    def _log_index_positive(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Inclusion proof has invalid log index: {v} < 0")
        return v

    @field_validator("tree_size")
    def _tree_size_positive(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Inclusion proof has invalid tree size: {v} < 0")
        return v

    @field_validator("tree_size")
    def _log_index_within_tree_size(
        cls, v: int, info: ValidationInfo, **kwargs: Any
    ) -> int:
        if "log_index" in info.data and v <= info.data["log_index"]:
            raise ValueError(
                "Inclusion proof has log index greater than or equal to tree size: "
                f"{v} <= {info.data['log_index']}"
            )
        return v


@dataclass(frozen=True)
class LogEntry:
    """
    Represents a transparency log entry.

    This representation allows for either a missing inclusion promise or a missing
    inclusion proof, but not both: attempting to construct a `LogEntry` without
    at least one will fail.
    """

    uuid: Optional[str]
    """
    This entry's unique ID in the log instance it was retrieved from.
    """

    body: B64Str
    """
    The base64-encoded body of the transparency log entry.
    """

    integrated_time: int
    """
    The UNIX time at which this entry was integrated into the transparency log.
    """

    log_id: str
    """
    The log's ID (as the SHA256 hash of the DER-encoded public key for the log
    at the time of entry inclusion).
    """

    log_index: int
    """
    The index of this entry within the log.
    """

    inclusion_proof: Optional[LogInclusionProof]
    """
    An inclusion proof for this log entry, if present.
    """

    inclusion_promise: Optional[B64Str]
    """
    An inclusion promise for this log entry, if present.

    Internally, this is a base64-encoded Signed Entry Timestamp (SET) for this
    log entry.
    """

    @model_validator(mode="after")
    def _consistency(self) -> LogEntry:
        if self.inclusion_proof is None and self.inclusion_promise is None:
            raise ValueError("Log entry must have either inclusion proof or promise")
        return self

    @classmethod
    def _from_response(cls, dict_: dict[str, Any]) -> LogEntry:
        """
        Create a new `LogEntry` from the given API response.
        """

        # Assumes we only get one entry back
        entries = list(dict_.items())
        if len(entries) != 1:
            raise InvalidLogEntry("Received multiple entries in response")

        uuid, entry = entries[0]
        try:
            verification = entry.get("verification") or {}
            proof = verification.get("inclusionProof")
            return LogEntry(
                uuid=uuid,
                body=entry["body"],
                integrated_time=entry["integratedTime"],
                log_id=entry["logID"],
                log_index=entry["logIndex"],
                inclusion_proof=(
                    LogInclusionProof.model_validate(proof) if proof is not None else None
                ),
                inclusion_promise=verification.get("signedEntryTimestamp"),
            )
        except (KeyError, AttributeError, ValidationError) as exc:
            raise InvalidLogEntry(f"malformed log entry {uuid}: {exc}") from exc

    def encode_canonical(self) -> bytes:
        """
        Returns a canonicalized JSON representation of the transparency log entry.

        This encoded representation is suitable for verification against
        the Signed Entry Timestamp.
        """
        payload = {
            "body": self.body,
            "integratedTime": self.integrated_time,
            "logID": self.log_id,
            "logIndex": self.log_index,
        }

        return encode_canonical(payload).encode()  # type: ignore

    def _verify_set(self, rekor_key: PublicKey) -> None:
        """
        Verify the inclusion promise (Signed Entry Timestamp) for this entry
        against the log's public key.

        Fails if the given log entry does not contain an inclusion promise.
        """

        if self.inclusion_promise is None:
            raise InvalidLogEntry("invalid inclusion promise: missing")

        if self.log_id != key_id(rekor_key):
            raise InvalidLogEntry(
                f"invalid inclusion promise: entry was logged by {self.log_id}, "
                "not by the configured transparency log"
            )

        try:
            signed_entry_ts = base64.b64decode(self.inclusion_promise, validate=True)
            rekor_key.verify(
                signed_entry_ts, self.encode_canonical(), ec.ECDSA(hashes.SHA256())
            )
        except (InvalidSignature, binascii.Error, ValueError) as inval_sig:
            raise InvalidLogEntry(
                "invalid inclusion promise: invalid signature"
            ) from inval_sig

    def _verify(self, rekor_key: PublicKey) -> None:
        """
        Verifies this log entry against the log's public key.

        * Verifies the Merkle inclusion proof, if present, and the signed
          checkpoint that commits to its root hash;
        * Verifies the inclusion promise, if present.

        The entry is accepted once either a signed checkpoint or an inclusion
        promise has been verified. A proof without a checkpoint only shows
        inclusion in a tree of the log's choosing, so it isn't enough alone.
        """
        authenticated = False
        if self.inclusion_proof is not None:
            verify_merkle_inclusion(self)
            _logger.debug(f"successfully verified inclusion proof: index={self.log_index}")

            if self.inclusion_proof.checkpoint:
                verify_checkpoint(rekor_key, self)
                authenticated = True

        if self.inclusion_promise is not None:
            self._verify_set(rekor_key)
            _logger.debug(
                f"successfully verified inclusion promise: index={self.log_index}"
            )
            authenticated = True

        if not authenticated:
            raise InvalidLogEntry(
                "log entry has neither a signed checkpoint nor an inclusion promise"
            )


class TransparencyLog(Protocol):
    """
    The operations this client needs from a transparency log service.
    """

    def find_entries(
        self, expected_entry: rekor_types.Hashedrekord, deadline: Optional[Deadline] = None
    ) -> List[LogEntry]:
        """
        Returns the entries the log holds for `expected_entry`, unchecked.
        """
        ...

    def create_entry(
        self, request: EntryRequestBody, deadline: Optional[Deadline] = None
    ) -> LogEntry:
        """
        Submits a new entry.
        """
        ...


def _entry_matches(entry: LogEntry, expected: rekor_types.Hashedrekord) -> bool:
    """
    Returns `True` if `entry`'s body is exactly the expected `hashedrekord`.
    """
    try:
        actual = rekor_types.Hashedrekord.model_validate_json(
            base64.b64decode(entry.body, validate=True)
        )
    except (ValidationError, binascii.Error, ValueError):
        _logger.debug(f"log entry {entry.uuid} is not a hashedrekord entry")
        return False

    return actual == expected


def find_entry(
    client: TransparencyLog,
    b64_signature: str,
    payload: bytes,
    public_key_pem: bytes,
    *,
    deadline: Optional[Deadline] = None,
    rekor_public_key: Optional[PublicKey] = None,
) -> LogEntry:
    """
    Find and validate the log entry for a signature.

    `b64_signature` is the normalized base64 signature, `payload` is the
    signed bytes, and `public_key_pem` is the PEM public key (or certificate)
    that made the signature.

    Returns the oldest entry whose content matches all three inputs and whose
    inclusion in the log is proven. Raises `NotFoundError` if the log has no
    entry, `InvalidLogEntry` if it only has inconsistent or unproven entries,
    and `BackendError` if the log can't be reached.

    Entries are authenticated with `rekor_public_key`, so a `ConfigError` is
    raised up front if it is missing.
    """
    if rekor_public_key is None:
        raise ConfigError(
            "verifying transparency log entries requires the log's public key"
        )

    deadline = _or_unbounded(deadline)
    expected = _hashedrekord_from_parts(
        public_key_pem, decode_signature(b64_signature), payload
    )

    deadline.check()
    entries = client.find_entries(expected, deadline)
    if not entries:
        raise NotFoundError("signature not found in transparency log")

    # A matching lookup key is not proof: every entry's body must carry
    # exactly our signature, payload hash and public key.
    consistent = [entry for entry in entries if _entry_matches(entry, expected)]
    if not consistent:
        raise InvalidLogEntry(
            f"transparency log returned {len(entries)} entries, none consistent "
            "with the signature, payload and public key"
        )

    # A malicious actor could conceivably spam the log with newer duplicate
    # entries, so the oldest one wins.
    entry = min(consistent, key=lambda e: e.integrated_time)
    entry._verify(rekor_public_key)

    _logger.debug(f"tlog entry verified with index: {entry.log_index}")
    return entry


def upload_entry(
    client: TransparencyLog,
    b64_signature: str,
    payload: bytes,
    public_key_pem: bytes,
    *,
    deadline: Optional[Deadline] = None,
) -> LogEntry:
    """
    Record a new signature in the transparency log.
    """
    deadline = _or_unbounded(deadline)
    rekord = _hashedrekord_from_parts(
        public_key_pem, decode_signature(b64_signature), payload
    )

    deadline.check()
    entry = client.create_entry(
        EntryRequestBody(rekord.model_dump(mode="json", by_alias=True)), deadline
    )

    if not _entry_matches(entry, rekord):
        raise InvalidLogEntry("transparency log integrated an unexpected entry")

    _logger.debug(f"Transparency log entry created with index: {entry.log_index}")
    return entry
