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
The "simple signing" payload: the document that is actually signed for a
container image.

```json
{
  "critical": {
    "identity": {"docker-reference": "registry/repo"},
    "image": {"Docker-manifest-digest": "sha256:..."},
    "type": "cosign container image signature"
  },
  "optional": {"key": "value"}
}
```

The signature covers the exact bytes of `SimpleSigningPayload.encode`, so the
encoding is canonical: keys are sorted at every level, there is no
insignificant whitespace, and strings are escaped the same way Go's
`encoding/json` escapes them.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError

from cosign.errors import EncodeError, FormatError

_logger = logging.getLogger(__name__)

IMAGE_SIGNATURE_TYPE = "cosign container image signature"

# Go's encoding/json escapes these even when emitting UTF-8.
_GO_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="forbid")


class Identity(_Model):
    """
    The identity of the signed artifact.
    """

    docker_reference: StrictStr = Field(..., alias="docker-reference")


class Image(_Model):
    """
    The content address of the signed artifact.
    """

    docker_manifest_digest: StrictStr = Field(..., alias="Docker-manifest-digest")


class Critical(_Model):
    """
    The fields a verifier must understand.
    """

    identity: Identity
    image: Image
    type: StrictStr


class SimpleSigningPayload(_Model):
    """
    A signable payload identifying exactly one artifact version.
    """

    critical: Critical
    optional: Optional[Dict[StrictStr, StrictStr]] = None

    @property
    def reference(self) -> str:
        """
        The artifact's logical reference, e.g. `registry/repo:tag`.
        """
        return self.critical.identity.docker_reference

    @property
    def digest(self) -> str:
        """
        The artifact's content digest, e.g. `sha256:...`.
        """
        return self.critical.image.docker_manifest_digest

    def encode(self) -> bytes:
        """
        Returns the canonical serialization of this payload.
        """
        document = self.model_dump(by_alias=True)
        text = json.dumps(
            document, sort_keys=True, separators=(",", ":"), ensure_ascii=False
        )
        for char, escaped in _GO_ESCAPES.items():
            text = text.replace(char, escaped)

        try:
            return text.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise EncodeError("payload contains text that is not valid UTF-8") from exc

    @classmethod
    def decode(cls, data: bytes) -> SimpleSigningPayload:
        """
        Parse an externally supplied payload.

        Raises `FormatError` if `data` is not UTF-8 JSON matching the payload
        schema, or if it repeats a key with different values.
        """
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FormatError("payload is not valid UTF-8") from exc

        try:
            document = json.loads(text, object_pairs_hook=_strict_object)
        except ValueError as exc:
            raise FormatError(f"payload is not valid JSON: {exc}") from exc

        try:
            return cls.model_validate(document)
        except ValidationError as exc:
            raise FormatError(f"payload does not match the expected schema: {exc}") from exc


def _strict_object(pairs: List[Tuple[str, Any]]) -> Dict[str, Any]:
    document: Dict[str, Any] = {}
    for key, value in pairs:
        _reject_lone_surrogates(key)
        _reject_lone_surrogates(value)
        if key in document and document[key] != value:
            raise ValueError(f"duplicate key with conflicting values: {key!r}")
        document[key] = value
    return document


def _reject_lone_surrogates(value: Any) -> None:
    # JSON escapes like "\ud800" decode to strings that aren't valid Unicode.
    # Objects are checked by their own hook, so only strings and arrays remain.
    if isinstance(value, str):
        try:
            value.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise ValueError("string contains an unpaired surrogate escape") from exc
    elif isinstance(value, list):
        for item in value:
            _reject_lone_surrogates(item)


def _as_text(value: Union[str, bytes], what: str) -> str:
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EncodeError(f"{what} is not valid UTF-8") from exc
    if not isinstance(value, str):
        raise EncodeError(f"{what} must be a string, not {type(value).__name__}")
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise EncodeError(f"{what} is not valid UTF-8") from exc
    return value


def build_payload(
    reference: str,
    digest: str,
    annotations: Optional[Mapping[Union[str, bytes], Union[str, bytes]]] = None,
    type_: str = IMAGE_SIGNATURE_TYPE,
) -> SimpleSigningPayload:
    """
    Build the payload for the artifact at `reference` with content `digest`.

    `annotations` become the payload's `optional` map; their order does not
    affect the encoding. `None` (no annotations) and an empty mapping are
    distinct, and encode as `null` and `{}` respectively.
    """
    optional: Optional[Dict[str, str]] = None
    if annotations is not None:
        optional = {
            _as_text(k, "annotation key"): _as_text(v, f"annotation {k!r}")
            for k, v in annotations.items()
        }

    payload = SimpleSigningPayload(
        critical=Critical(
            identity=Identity(docker_reference=_as_text(reference, "reference")),
            image=Image(docker_manifest_digest=_as_text(digest, "digest")),
            type=type_,
        ),
        optional=optional,
    )
    _logger.debug(f"built payload for {payload.reference}@{payload.digest}")
    return payload
