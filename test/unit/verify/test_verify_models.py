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

from cosign.errors import TrustError
from cosign.keys import KeyMode
from cosign.verify.models import (
    SignatureMismatch,
    Step,
    VerificationFailure,
    VerificationSuccess,
)


def test_success_is_truthy():
    result = VerificationSuccess(key_mode=KeyMode.KEY)
    assert result
    assert result.success
    assert not result.trust_chain_verified
    assert result.log_index is None


def test_failure_is_falsey():
    error = TrustError("untrusted")
    result = VerificationFailure(step=Step.TRUST_CHAIN, reason=str(error), error=error)
    assert not result
    assert result.error is error


def test_signature_mismatch():
    result = SignatureMismatch()
    assert not result
    assert isinstance(result, VerificationFailure)
    assert result.step == Step.VERIFY
    assert result.reason == "signature mismatch"
    assert result.error is None


def test_step_order():
    assert [s.value for s in Step] == [
        "select-mode",
        "load-key",
        "decode-inputs",
        "verify",
        "trust-chain",
        "transparency",
        "accept",
    ]
