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
Verification API machinery.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Callable, List, Optional, Sequence, Tuple, TypeVar, Union

from cosign._utils import (
    B64Str,
    SignatureEncoding,
    decode_signature,
    normalize_signature,
    read_input,
)
from cosign.config import TransparencyMode, VerifyConfig
from cosign.deadline import Deadline
from cosign.errors import (
    BackendError,
    BackendErrorReason,
    ConfigError,
    Error,
    InputError,
    InvalidLogEntry,
    KeyCapabilityError,
    NotFoundError,
    TrustError,
)
from cosign.keys import CertificateKey, Key, KeySelection, PassFunc, load_key
from cosign.transparency import LogEntry, find_entry
from cosign.verify.models import (
    SignatureMismatch,
    Step,
    VerificationFailure,
    VerificationResult,
    VerificationSuccess,
)
from cosign.verify.trust import certificate_identity, trusted_cert

_logger = logging.getLogger(__name__)

_T = TypeVar("_T")

ArtifactLocator = Union[str, Path, bytes, IO[bytes]]
"""
An artifact: a path, `-` for standard input, raw bytes or a binary stream.
"""

SignatureLocator = Union[str, Path, bytes]
"""
A signature: a path to a signature file, a literal base64 string, or the
signature's bytes.
"""


def verify_signature(key: Key, payload: bytes, signature: bytes) -> VerificationResult:
    """
    Verify `signature` over `payload` with `key`.

    An invalid signature is a `SignatureMismatch` result, never an exception.
    Raises `KeyCapabilityError` if `key` can't verify.
    """
    if not key.can_verify:
        raise KeyCapabilityError(f"a {key.mode.value} key can't be used for verification")

    if not key.verify(payload, signature):
        return SignatureMismatch()

    return VerificationSuccess(key_mode=key.mode)


def resolve_signature(
    ref: SignatureLocator, encoding: SignatureEncoding = SignatureEncoding.AUTO
) -> B64Str:
    """
    Resolve a signature locator into its normalized base64 form.

    An existing file is read and normalized according to `encoding`; bytes
    are normalized directly. Any other string is taken as a literal base64
    signature.
    """
    if isinstance(ref, bytes):
        return normalize_signature(ref, encoding)

    path = Path(ref)
    try:
        is_file = path.is_file()
    except OSError:
        # Not a usable path (e.g. too long), so a literal.
        is_file = False

    if is_file:
        _logger.debug(f"reading signature from {path}")
        return normalize_signature(path.read_bytes(), encoding)

    if isinstance(ref, Path):
        raise InputError(f"signature file not found: {ref}")

    return normalize_signature(ref, SignatureEncoding.BASE64)


def _read_artifact(artifact: ArtifactLocator) -> bytes:
    if isinstance(artifact, bytes):
        return artifact
    if isinstance(artifact, (str, Path)):
        return read_input(artifact)
    return artifact.read()


@dataclass(frozen=True)
class VerifyBlobRequest:
    """
    The inputs of a single blob verification.
    """

    selection: KeySelection
    """
    The key references; exactly one must be set.
    """

    signature: SignatureLocator
    """
    Where to find the signature.
    """

    artifact: ArtifactLocator
    """
    Where to find the signed blob.
    """

    signature_encoding: SignatureEncoding = SignatureEncoding.AUTO
    """
    How the signature is encoded.
    """


def _failure(step: Step, error: Error) -> VerificationFailure:
    _logger.debug(f"verification failed at {step.value}: {error}")
    return VerificationFailure(step=step, reason=str(error), error=error)


def _run_step(step: Step, func: Callable[[], _T]) -> Union[_T, VerificationFailure]:
    """
    Run one step, turning its error (if any) into a `VerificationFailure`.
    """
    try:
        return func()
    except Error as exc:
        return _failure(step, exc)
    except OSError as exc:
        error = InputError(f"can't read input: {exc}")
        error.__cause__ = exc
        return _failure(step, error)


class BlobVerifier:
    """
    Verifies signatures over blobs, in key, KMS or certificate mode.
    """

    def __init__(self, config: VerifyConfig) -> None:
        """
        Create a new `BlobVerifier`.

        Raises `ConfigError` if `config` enables the transparency log without
        providing it and its public key.
        """
        if config.transparency != TransparencyMode.DISABLED and config.rekor is None:
            raise ConfigError(
                f"transparency mode {config.transparency.value} needs a transparency log"
            )
        if (
            config.transparency != TransparencyMode.DISABLED
            and config.rekor_public_key is None
        ):
            raise ConfigError(
                f"transparency mode {config.transparency.value} needs the transparency "
                "log's public key"
            )
        self._config = config

    @property
    def config(self) -> VerifyConfig:
        """
        This verifier's read-only configuration.
        """
        return self._config

    def verify(
        self,
        request: VerifyBlobRequest,
        pass_func: Optional[PassFunc] = None,
        deadline: Optional[Deadline] = None,
    ) -> VerificationResult:
        """
        Run one verification flow.

        Steps run in order and the first failing step ends the flow; the
        returned `VerificationFailure` names that step and carries its error.
        """
        if deadline is None:
            deadline = Deadline(self._config.timeout)

        mode = _run_step(Step.SELECT_MODE, lambda: request.selection.mode)
        if isinstance(mode, VerificationFailure):
            return mode

        key = _run_step(
            Step.LOAD_KEY, lambda: load_key(request.selection, pass_func, deadline)
        )
        if isinstance(key, VerificationFailure):
            return key

        inputs = _run_step(Step.DECODE_INPUTS, lambda: self._decode_inputs(request))
        if isinstance(inputs, VerificationFailure):
            return inputs
        b64_signature, signature, artifact = inputs

        result = _run_step(
            Step.VERIFY, lambda: verify_signature(key, artifact, signature)
        )
        if not result:
            return result

        identity = None
        if isinstance(key, CertificateKey):
            identity = _run_step(Step.TRUST_CHAIN, lambda: self._check_trust(key))
            if isinstance(identity, VerificationFailure):
                return identity

        log_index = None
        if self._config.transparency != TransparencyMode.DISABLED:
            entry = self._check_transparency(key, b64_signature, artifact, deadline)
            if isinstance(entry, VerificationFailure):
                return entry
            if entry is not None:
                log_index = entry.log_index

        _logger.debug(f"verification accepted: mode={mode.value}")
        return VerificationSuccess(
            key_mode=mode,
            trust_chain_verified=isinstance(key, CertificateKey),
            certificate_identity=identity,
            log_index=log_index,
        )

    def _decode_inputs(self, request: VerifyBlobRequest) -> Tuple[B64Str, bytes, bytes]:
        b64_signature = resolve_signature(request.signature, request.signature_encoding)
        return b64_signature, decode_signature(b64_signature), _read_artifact(
            request.artifact
        )

    def _check_trust(self, key: CertificateKey) -> Optional[str]:
        if self._config.trusted_roots is None:
            raise TrustError("no trusted root certificates configured")

        trusted_cert(key.certificate, self._config.trusted_roots)
        return certificate_identity(key.certificate)

    def _check_transparency(
        self, key: Key, b64_signature: B64Str, artifact: bytes, deadline: Deadline
    ) -> Union[LogEntry, VerificationFailure, None]:
        assert self._config.rekor is not None

        try:
            entry = find_entry(
                self._config.rekor,
                b64_signature,
                artifact,
                key.log_public_key_material(),
                deadline=deadline,
                rekor_public_key=self._config.rekor_public_key,
            )
        except (NotFoundError, BackendError) as exc:
            cancelled = (
                isinstance(exc, BackendError)
                and exc.reason == BackendErrorReason.CANCELLED
            )
            if self._config.transparency == TransparencyMode.OPTIONAL and not cancelled:
                _logger.warning(f"skipping transparency log check: {exc}")
                return None
            return _failure(Step.TRANSPARENCY, exc)
        except Error as exc:
            return _failure(Step.TRANSPARENCY, exc)

        if isinstance(key, CertificateKey):
            cert = key.certificate
            integrated_time = datetime.fromtimestamp(entry.integrated_time, tz=timezone.utc)
            if not (cert.not_valid_before_utc <= integrated_time <= cert.not_valid_after_utc):
                return _failure(
                    Step.TRANSPARENCY,
                    InvalidLogEntry(
                        "invalid signing cert: expired at time of transparency log entry"
                    ),
                )

        return entry


def verify_many(
    verifier: BlobVerifier,
    requests: Sequence[VerifyBlobRequest],
    *,
    pass_func: Optional[PassFunc] = None,
    deadline: Optional[Deadline] = None,
    max_workers: Optional[int] = None,
) -> List[VerificationResult]:
    """
    Run independent verification flows concurrently.

    Results are returned in the order of `requests`. The flows share only
    the verifier's read-only configuration, and `deadline` if one is given.
    """
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [
            executor.submit(verifier.verify, request, pass_func, deadline)
            for request in requests
        ]
        return [future.result() for future in futures]
