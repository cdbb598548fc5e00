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
API for verifying artifact signatures.

Example:
```python
from pathlib import Path

from cosign.config import VerifyConfig
from cosign.keys import KeySelection
from cosign.verify import BlobVerifier, VerifyBlobRequest

verifier = BlobVerifier(VerifyConfig())
result = verifier.verify(
    VerifyBlobRequest(
        selection=KeySelection(key="cosign.pub"),
        signature="foo.txt.sig",
        artifact="foo.txt",
    )
)
print(result)
```
"""

from cosign.verify.models import (
    SignatureMismatch,
    Step,
    VerificationFailure,
    VerificationResult,
    VerificationSuccess,
)
from cosign.verify.trust import TrustedRoots, certificate_identity, trusted_cert
from cosign.verify.verifier import (
    BlobVerifier,
    VerifyBlobRequest,
    resolve_signature,
    verify_many,
    verify_signature,
)

__all__ = [
    "BlobVerifier",
    "SignatureMismatch",
    "Step",
    "TrustedRoots",
    "VerificationFailure",
    "VerificationResult",
    "VerificationSuccess",
    "VerifyBlobRequest",
    "certificate_identity",
    "resolve_signature",
    "trusted_cert",
    "verify_many",
    "verify_signature",
]
