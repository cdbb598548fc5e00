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
Signed checkpoints: the log's signed statement of its size and root hash.

A checkpoint is a signed note, as produced by Rekor:

```
rekor.sigstore.dev - 2605736670972794746
21428036
rs1YPY0ydsXd6sXlnYLj2ZLlQGt7jRs5Lk1KQlXG6ig=
Timestamp: 1689748607742585419

\u2014 rekor.sigstore.dev wNI9ajBEAiAJ...
```

The text before the blank line is the note. Each signature line starts with
U+2014 and carries a signer name and the base64 of a 4-byte key hint
followed by an ECDSA signature over the note.
"""

from __future__ import annotations

import base64
import logging
import re
import typing
from typing import List

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import BaseModel, ConfigDict, StrictBytes, StrictInt, StrictStr, field_validator

from cosign._utils import PublicKey, key_id
from cosign.errors import InvalidLogEntry

if typing.TYPE_CHECKING:
    from cosign.transparency import LogEntry

_logger = logging.getLogger(__name__)

_SIGNATURE_LINE = re.compile(r"\u2014 (?P<name>\S+) (?P<signature>\S+)\n")

_KEY_HINT_SIZE = 4


class NoteSignature(BaseModel):
    """
    One signature line of a signed note.
    """

    model_config = ConfigDict(frozen=True)

    name: StrictStr
    key_hint: StrictBytes
    signature: StrictBytes


class SignedNote(BaseModel):
    """
    A note and the signatures over it.
    """

    model_config = ConfigDict(frozen=True)

    note: StrictStr
    signatures: List[NoteSignature]

    @field_validator("signatures")
    def _signatures_nonempty(cls, v: List[NoteSignature]) -> List[NoteSignature]:
        if len(v) == 0:
            raise ValueError("signed note has no signatures")
        return v

    @classmethod
    def from_text(cls, text: str) -> SignedNote:
        """
        Parse a signed note from its text form.
        """
        separator = "\n\n"
        if text.count(separator) != 1:
            raise ValueError(
                "signed note must contain one blank line, between the note and its signatures"
            )

        split = text.index(separator)
        note, data = text[: split + 1], text[split + len(separator) :]
        if not data.endswith("\n"):
            raise ValueError("signed note signatures must end with a newline")

        signatures = []
        for name, signature in _SIGNATURE_LINE.findall(data):
            raw = base64.b64decode(signature, validate=True)
            if len(raw) <= _KEY_HINT_SIZE:
                raise ValueError("signed note signature is too short")
            signatures.append(
                NoteSignature(
                    name=name,
                    key_hint=raw[:_KEY_HINT_SIZE],
                    signature=raw[_KEY_HINT_SIZE:],
                )
            )

        return cls(note=note, signatures=signatures)

    def verify(self, log_key: PublicKey) -> None:
        """
        Check that `log_key` signed this note.

        Signatures whose key hint names a different key are ignored; at least
        one must come from `log_key`, and all of those must be valid.
        """
        hint = bytes.fromhex(key_id(log_key))[:_KEY_HINT_SIZE]
        ours = [s for s in self.signatures if s.key_hint == hint]
        if not ours:
            raise InvalidLogEntry(
                "checkpoint is not signed by the configured transparency log"
            )

        for signature in ours:
            try:
                log_key.verify(
                    signature.signature,
                    self.note.encode(),
                    ec.ECDSA(hashes.SHA256()),
                )
            except InvalidSignature as exc:
                raise InvalidLogEntry("invalid checkpoint signature") from exc


class Checkpoint(BaseModel):
    """
    The body of a checkpoint note.
    """

    model_config = ConfigDict(frozen=True)

    origin: StrictStr
    log_size: StrictInt
    log_hash: StrictStr
    """
    The hex-encoded root hash.
    """

    other_content: List[StrictStr]

    @classmethod
    def from_text(cls, text: str) -> Checkpoint:
        lines = text.strip().split("\n")
        if len(lines) < 3:
            raise ValueError("checkpoint has too few lines")

        origin = lines[0]
        if not origin:
            raise ValueError("checkpoint has an empty origin")

        return cls(
            origin=origin,
            log_size=int(lines[1]),
            log_hash=base64.b64decode(lines[2], validate=True).hex(),
            other_content=lines[3:],
        )


class SignedCheckpoint(BaseModel):
    """
    A checkpoint together with the signed note it was parsed from.
    """

    model_config = ConfigDict(frozen=True)

    signed_note: SignedNote
    checkpoint: Checkpoint

    @classmethod
    def from_text(cls, text: str) -> SignedCheckpoint:
        signed_note = SignedNote.from_text(text)
        return cls(
            signed_note=signed_note, checkpoint=Checkpoint.from_text(signed_note.note)
        )


def verify_checkpoint(log_key: PublicKey, entry: LogEntry) -> None:
    """
    Authenticate the root hash of `entry`'s inclusion proof.

    The proof's checkpoint must be signed by `log_key`, and must commit to
    the same tree size and root hash as the proof.
    """
    proof = entry.inclusion_proof
    if proof is None or not proof.checkpoint:
        raise InvalidLogEntry("inclusion proof has no checkpoint")

    try:
        signed = SignedCheckpoint.from_text(proof.checkpoint)
    except ValueError as exc:
        raise InvalidLogEntry(f"malformed checkpoint: {exc}") from exc

    signed.signed_note.verify(log_key)

    checkpoint = signed.checkpoint
    if checkpoint.log_size != proof.tree_size:
        raise InvalidLogEntry(
            f"checkpoint is for a tree of size {checkpoint.log_size}, but the "
            f"inclusion proof is for size {proof.tree_size}"
        )
    if checkpoint.log_hash != proof.root_hash.lower():
        raise InvalidLogEntry(
            f"checkpoint root hash {checkpoint.log_hash} does not match the "
            f"inclusion proof root hash {proof.root_hash}"
        )

    _logger.debug(f"verified checkpoint from {checkpoint.origin}")
