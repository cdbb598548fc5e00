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
Verification configuration.

The engine never reads the environment; everything it needs is passed in
explicitly through a `VerifyConfig`.
"""

from __future__ import annotations

import enum
import typing
from dataclasses import dataclass
from typing import Optional

from cosign._utils import PublicKey

if typing.TYPE_CHECKING:
    from cosign.transparency import TransparencyLog
    from cosign.verify.trust import TrustedRoots


class TransparencyMode(str, enum.Enum):
    """
    Whether verification consults the transparency log, and how strictly.
    """

    DISABLED = "disabled"
    """
    The transparency log is not consulted.
    """

    OPTIONAL = "optional"
    """
    A missing entry, or an unreachable log, is logged and skipped.
    """

    REQUIRED = "required"
    """
    A missing entry, or an unreachable log, fails verification.
    """


@dataclass(frozen=True)
class VerifyConfig:
    """
    Read-only settings shared by every verification flow.

    A single `VerifyConfig` may be shared across threads.
    """

    trusted_roots: Optional[TrustedRoots] = None
    """
    The certificate authorities trusted for certificate-mode verification.
    """

    transparency: TransparencyMode = TransparencyMode.DISABLED
    """
    How the transparency log is consulted.
    """

    rekor: Optional[TransparencyLog] = None
    """
    The transparency log to consult. Required unless `transparency` is
    `DISABLED`.
    """

    rekor_public_key: Optional[PublicKey] = None
    """
    The transparency log's public key, used to check signed checkpoints and
    inclusion promises. Required unless `transparency` is `DISABLED`.
    """

    timeout: Optional[float] = None
    """
    The time budget, in seconds, for the remote calls of a single flow.
    """
