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
Exceptions.
"""

from __future__ import annotations

import enum
import sys
import typing
from logging import Logger
from textwrap import dedent

if typing.TYPE_CHECKING:
    from cosign.verify.models import VerificationFailure


class Error(Exception):
    """Base cosign exception type. Defines helpers for diagnostics."""

    exit_code: int = 1
    """
    The process exit code used when this error terminates the CLI.
    """

    def diagnostics(self) -> str:
        """Returns human-friendly error information."""

        return str(self)

    def log_and_exit(self, logger: Logger, raise_error: bool = False) -> None:
        """Prints all relevant error information to stderr and exits."""

        remind_verbose = (
            "Raising original exception:"
            if raise_error
            else "For detailed error information, run cosign with the `--verbose` flag."
        )

        logger.error(f"{self.diagnostics()}\n{remind_verbose}")

        if raise_error:
            # don't want "during handling another exception"
            self.__suppress_context__ = True
            raise self

        sys.exit(self.exit_code)


class ConfigError(Error):
    """
    Raised when the caller's input selection is invalid or contradictory.

    No I/O is performed before this error is raised.
    """

    exit_code = 2


class FormatError(Error):
    """
    Raised when a PEM block, certificate, key or payload is malformed.
    """


class EncodeError(FormatError):
    """
    Raised when a payload cannot be encoded into its canonical form.
    """


class UnsupportedKeyError(FormatError, TypeError):
    """
    Raised when a key uses an algorithm other than elliptic-curve.
    """


class DecryptError(Error):
    """
    Raised when an encrypted private key can't be decrypted, either because
    the passphrase is wrong or because the ciphertext is corrupt.
    """

    def diagnostics(self) -> str:
        """Returns diagnostics for the error."""
        return f"""\
        {self}.

        Check that the passphrase is correct for this key.
        """


class KeyCapabilityError(Error):
    """
    Raised when a key is asked to do something it can't, e.g. signing with a
    verification-only key.
    """


class BackendErrorReason(str, enum.Enum):
    """
    The reasons a remote collaborator (KMS or transparency log) can fail.
    """

    UNAVAILABLE = "unavailable"
    DENIED = "denied"
    CANCELLED = "cancelled"


class BackendError(Error):
    """Raised when a remote KMS or transparency log can't be used."""

    exit_code = 3

    def __init__(
        self, message: str, reason: BackendErrorReason = BackendErrorReason.UNAVAILABLE
    ):
        """Constructs a `BackendError`."""
        super().__init__(message)
        self.reason = reason

    def diagnostics(self) -> str:
        """Returns diagnostics for the error."""

        cause_ctx = (
            f"""
        Additional context:

        {self.__cause__}
        """
            if self.__cause__
            else ""
        )

        return (
            f"""\
        A remote service could not be used ({self.reason.value}): {self}

        Verification could not be completed; this is not a verdict on the
        signature itself.
        """
            + cause_ctx
        )


class TrustError(Error):
    """
    Raised when a certificate does not chain to a trusted root.
    """


class NotFoundError(Error):
    """
    Raised when the transparency log has no entry for the given materials.
    """


class InvalidLogEntry(Error):
    """
    The transparency log entry is invalid or inconsistent with the
    verification materials.
    """


class VerificationError(Error):
    """
    Raised when a verification flow ends in a `VerificationFailure`.
    """

    def __init__(self, result: VerificationFailure):
        """Constructs a `VerificationError` from a failed result."""
        super().__init__(f"Verification failed: {result.reason}")
        self.result = result

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        """
        The exit code of the underlying error, if the failure carries one.
        """
        if self.result.error is not None:
            return self.result.error.exit_code
        return 1

    def diagnostics(self) -> str:
        """Returns diagnostics specialized to the failed verification step."""
        message = f"Failure reason: {self.result.reason}\n"
        message += f"Failed step: {self.result.step.value}\n"

        if isinstance(self.result.error, TrustError):
            message += dedent(
                """
                The given certificate could not be verified against the
                configured root certificates.
                """
            )
        elif isinstance(self.result.error, NotFoundError):
            message += dedent(
                """
                These signing artifacts could not be matched to an entry
                in the configured transparency log.
                """
            )

        if self.result.error is not None:
            message += dedent(
                f"""
                Additional context:

                {self.result.error.diagnostics()}
                """
            )

        return message


class InputError(Error):
    """
    Raised when a local input (key, certificate, signature or artifact)
    can't be read.
    """
