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
APIs for interacting with Rekor.
"""

from __future__ import annotations

import base64
from typing import Any, Dict, NewType

import rekor_types
import requests

from cosign._utils import sha256_digest
from cosign.errors import BackendError, BackendErrorReason

__all__ = [
    "EntryRequestBody",
    "RekorClientError",
    "_hashedrekord_from_parts",
]

EntryRequestBody = NewType("EntryRequestBody", Dict[str, Any])


class RekorClientError(BackendError):
    """
    A generic error in the Rekor client.
    """

    def __init__(self, http_error: requests.HTTPError):
        """
        Create a new `RekorClientError` from the given `requests.HTTPError`.
        """
        reason = BackendErrorReason.UNAVAILABLE
        if http_error.response is not None:
            if http_error.response.status_code in (401, 403):
                reason = BackendErrorReason.DENIED
            try:
                error = rekor_types.Error.model_validate_json(http_error.response.text)
                message = f"{error.code}: {error.message}"
            except Exception:
                message = (
                    "Rekor returned an unknown error with HTTP "
                    f"{http_error.response.status_code}"
                )
        else:
            message = f"Unexpected Rekor error: {http_error}"

        super().__init__(message, reason)


def _hashedrekord_from_parts(
    public_material_pem: bytes, signature: bytes, payload: bytes
) -> rekor_types.Hashedrekord:
    """
    Build the `hashedrekord` body that identifies a signature over `payload`
    made by the key (or certificate) in `public_material_pem`.
    """
    return rekor_types.Hashedrekord(
        spec=rekor_types.hashedrekord.HashedrekordV001Schema(
            signature=rekor_types.hashedrekord.Signature(
                content=base64.b64encode(signature).decode(),
                public_key=rekor_types.hashedrekord.PublicKey(
                    content=base64.b64encode(public_material_pem).decode(),
                ),
            ),
            data=rekor_types.hashedrekord.Data(
                hash=rekor_types.hashedrekord.Hash(
                    algorithm=rekor_types.hashedrekord.Algorithm.SHA256,
                    value=sha256_digest(payload).hex(),
                )
            ),
        )
    )
