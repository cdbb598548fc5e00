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
Shared utilities.
"""

from __future__ import annotations

import base64
import binascii
import enum
import hashlib
import sys
from pathlib import Path
from typing import IO, NewType, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509 import Certificate, ExtensionNotFound, Version
from cryptography.x509.oid import ExtensionOID

from cosign.errors import FormatError, UnsupportedKeyError

PublicKey = ec.EllipticCurvePublicKey

HexStr = NewType("HexStr", str)
"""
A newtype for `str` objects that contain hexadecimal strings (e.g. `ffabcd00ff`).
"""
B64Str = NewType("B64Str", str)
"""
A newtype for `str` objects that contain base64 encoded strings.
"""


class SignatureEncoding(str, enum.Enum):
    """
    How a signature input is encoded.

    `AUTO` preserves cosign's heuristic: input that decodes as base64 is
    treated as already encoded. `BASE64` and `RAW` are explicit markers that
    bypass the heuristic.
    """

    AUTO = "auto"
    BASE64 = "base64"
    RAW = "raw"


def load_pem_public_key(key_pem: bytes) -> PublicKey:
    """
    A specialization of `cryptography`'s `serialization.load_pem_public_key`
    with uniform exception types and filtering on elliptic-curve keys.
    """

    try:
        key = serialization.load_pem_public_key(key_pem)
    except Exception as exc:
        raise FormatError("could not load PEM-formatted public key") from exc

    if not isinstance(key, ec.EllipticCurvePublicKey):
        raise UnsupportedKeyError(
            f"invalid key format: expected an elliptic-curve key, got {type(key).__name__}"
        )

    return key


def public_key_pem(key: PublicKey) -> bytes:
    """
    Returns the PEM-encoded SubjectPublicKeyInfo for `key`.
    """
    return key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def key_id(key: PublicKey) -> HexStr:
    """
    Returns the transparency log ID of `key`: the hex-encoded SHA256 of its
    DER-encoded SubjectPublicKeyInfo.
    """
    public_bytes = key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return HexStr(hashlib.sha256(public_bytes).hexdigest())


def base64_encode(data: bytes) -> B64Str:
    """
    Returns `data` as a standard base64 string.
    """
    return B64Str(base64.b64encode(data).decode())


def _unwrap(data: Union[bytes, str]) -> Union[bytes, str]:
    # Like Go's base64 decoder, line breaks are skipped wherever they appear
    # (e.g. in the 76 column output of `base64`).
    if isinstance(data, str):
        return data.replace("\r", "").replace("\n", "").strip()
    return data.replace(b"\r", b"").replace(b"\n", b"").strip()


def is_b64(data: Union[bytes, str]) -> bool:
    """
    Returns `True` if `data` decodes as strict (standard alphabet, padded)
    base64.

    Line breaks, and whitespace surrounding the encoded text, are ignored.
    """
    try:
        base64.b64decode(_unwrap(data), validate=True)
    except (binascii.Error, ValueError):
        return False
    return True


def normalize_signature(
    data: Union[bytes, str], encoding: SignatureEncoding = SignatureEncoding.AUTO
) -> B64Str:
    """
    Normalize a signature input into its base64 form.

    Inputs may be raw signature bytes or text that is already base64; the
    result never double-encodes base64 input.
    """
    if isinstance(data, str):
        try:
            data = data.encode("ascii")
        except UnicodeEncodeError:
            if encoding == SignatureEncoding.BASE64:
                raise FormatError("signature is not valid base64")
            data = data.encode("utf-8")

    if encoding == SignatureEncoding.RAW:
        return base64_encode(data)

    if encoding == SignatureEncoding.BASE64 or is_b64(data):
        if not is_b64(data):
            raise FormatError("signature is not valid base64")
        return B64Str(_unwrap(data).decode("ascii"))

    return base64_encode(data)


def decode_signature(b64_signature: str) -> bytes:
    """
    Decodes a normalized base64 signature into raw bytes.
    """
    try:
        return base64.b64decode(b64_signature, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise FormatError("signature is not valid base64") from exc


def sha256_digest(input_: bytes | IO[bytes]) -> bytes:
    """
    Compute the SHA256 digest of an input stream or buffer.
    """
    # If the input is already buffered into memory, there's no point in
    # going back through an I/O abstraction.
    if isinstance(input_, bytes):
        return hashlib.sha256(input_).digest()

    return _sha256_streaming(input_)


def _sha256_streaming(io: IO[bytes]) -> bytes:
    """
    Compute the SHA256 of a stream.

    This function does its own internal buffering, so an unbuffered stream
    should be supplied for optimal performance.
    """

    sha256 = hashlib.sha256()
    # Per coreutils' ioblksize.h: 128KB performs optimally across a range
    # of systems in terms of minimizing syscall overhead.
    view = memoryview(bytearray(128 * 1024))

    nbytes = io.readinto(view)  # type: ignore
    while nbytes:
        sha256.update(view[:nbytes])
        nbytes = io.readinto(view)  # type: ignore

    return sha256.digest()


def read_input(ref: Union[str, Path]) -> bytes:
    """
    Reads a blob from a file path, or from standard input if `ref` is `-`.
    """
    if str(ref) == "-":
        return sys.stdin.buffer.read()
    return Path(ref).read_bytes()


def cert_is_ca(cert: Certificate) -> bool:
    """
    Returns `True` if and only if the given `Certificate`
    is a CA certificate.

    This function doesn't indicate the trustworthiness of the given
    `Certificate`, only whether it has the appropriate interior state.
    """

    # Only v3 certificates carry the extensions needed to tell a CA apart
    # from a leaf.
    if cert.version != Version.v3:
        raise FormatError(f"invalid X.509 version: {cert.version}")

    try:
        basic_constraints = cert.extensions.get_extension_for_oid(
            ExtensionOID.BASIC_CONSTRAINTS
        )

        # BasicConstraints must be marked as critical, per RFC 5280 4.2.1.9.
        if not basic_constraints.critical:
            raise FormatError(
                "invalid X.509 certificate: non-critical BasicConstraints in CA"
            )

        ca = basic_constraints.value.ca  # type: ignore
    except ExtensionNotFound:
        # No BasicConstrains means that this can't possibly be a CA.
        return False

    key_cert_sign = False
    try:
        key_usage = cert.extensions.get_extension_for_oid(ExtensionOID.KEY_USAGE)
        key_cert_sign = key_usage.value.key_cert_sign  # type: ignore
    except ExtensionNotFound:
        raise FormatError("invalid X.509 certificate: missing KeyUsage")

    # If both states are set, this is a CA.
    if ca and key_cert_sign:
        return True

    if not (ca or key_cert_sign):
        return False

    # Anything else is an invalid state that should never occur.
    raise FormatError(
        f"invalid X.509 certificate states: KeyUsage.keyCertSign={key_cert_sign}"
        f", BasicConstraints.ca={ca}"
    )
