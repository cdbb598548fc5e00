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
API for signing artifacts.

Example:

```python
from pathlib import Path

from cosign.keys import LocalKey
from cosign.sign import Signer

key = LocalKey.from_encrypted_pem(Path("cosign.key").read_bytes(), b"hunter2")

signer = Signer(key)
result = signer.sign(Path("foo.txt").read_bytes())
print(result.b64_signature)
```
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict

from cosign._utils import B64Str, base64_encode
from cosign.deadline import Deadline, _or_unbounded
from cosign.keys import Key
from cosign.payload import build_payload
from cosign.transparency import LogEntry, TransparencyLog, upload_entry

_logger = logging.getLogger(__name__)


class SigningResult(BaseModel):
    """
    Represents the artifacts of a signing operation.
    """

    model_config = ConfigDict(frozen=True)

    payload: bytes
    """
    The exact bytes that were signed.
    """

    b64_signature: B64Str
    """
    The base64-encoded ASN.1 DER signature over `payload`.
    """

    log_entry: Optional[LogEntry] = None
    """
    The transparency log entry recording this signature, if it was uploaded.
    """


class Signer:
    """
    The primary API for signing operations.
    """

    def __init__(self, key: Key, rekor: Optional[TransparencyLog] = None) -> None:
        """
        Create a new `Signer`.

        `key` must be able to sign. When `rekor` is given, every signature is
        also recorded in that transparency log.
        """
        self._key = key
        self._rekor = rekor

    def sign(self, payload: bytes, deadline: Optional[Deadline] = None) -> SigningResult:
        """
        Sign `payload` and, if a transparency log is configured, record the
        signature in it.
        """
        deadline = _or_unbounded(deadline)

        signature = self._key.sign(payload, deadline)
        b64_signature = base64_encode(signature)
        _logger.debug(f"signed {len(payload)} bytes with a {self._key.mode.value} key")

        log_entry = None
        if self._rekor is not None:
            log_entry = upload_entry(
                self._rekor,
                b64_signature,
                payload,
                self._key.log_public_key_material(),
                deadline=deadline,
            )

        return SigningResult(
            payload=payload, b64_signature=b64_signature, log_entry=log_entry
        )

    def sign_image(
        self,
        reference: str,
        digest: str,
        annotations: Optional[Mapping[str, str]] = None,
        deadline: Optional[Deadline] = None,
    ) -> SigningResult:
        """
        Build the simple signing payload for a container image and sign it.
        """
        payload = build_payload(reference, digest, annotations)
        return self.sign(payload.encode(), deadline)
