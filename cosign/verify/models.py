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
Common (base) models for the verification APIs.
"""

from __future__ import annotations

import enum
import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict

from cosign.errors import Error
from cosign.keys import KeyMode

_logger = logging.getLogger(__name__)


class Step(str, enum.Enum):
    """
    The steps of a verification flow, in the order they run.
    """

    SELECT_MODE = "select-mode"
    LOAD_KEY = "load-key"
    DECODE_INPUTS = "decode-inputs"
    VERIFY = "verify"
    TRUST_CHAIN = "trust-chain"
    TRANSPARENCY = "transparency"
    ACCEPT = "accept"


class VerificationResult(BaseModel):
    """
    Represents the result of a verification operation.

    Results are boolish, and failures contain a reason (and potentially
    some additional context).
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    """
    Represents the status of this result.
    """

    def __bool__(self) -> bool:
        """
        Returns a boolean representation of this result.

        `VerificationSuccess` is always `True`, and `VerificationFailure`
        is always `False`.
        """
        return self.success


class VerificationSuccess(VerificationResult):
    """
    The verification completed successfully.
    """

    success: bool = True
    """
    See `VerificationResult.success`.
    """

    key_mode: KeyMode
    """
    The kind of key the signature was verified with.
    """

    trust_chain_verified: bool = False
    """
    Whether a certificate chain was checked against the trusted roots.
    """

    certificate_identity: Optional[str] = None
    """
    The identity named by the signing certificate, in certificate mode.
    """

    log_index: Optional[int] = None
    """
    The index of the transparency log entry, if one was found and verified.
    """


class VerificationFailure(VerificationResult):
    """
    The verification failed at `step`, due to `reason`.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    success: bool = False
    """
    See `VerificationResult.success`.
    """

    step: Step
    """
    The step that failed.
    """

    reason: str
    """
    A human-readable explanation or description of the verification failure.
    """

    error: Optional[Error] = None
    """
    The error that ended the flow, if the failure was caused by one.
    """


class SignatureMismatch(VerificationFailure):
    """
    The signature is well-formed but does not match the payload and key.

    This is a legitimate negative result, not an error.
    """

    step: Step = Step.VERIFY

    reason: str = "signature mismatch"
