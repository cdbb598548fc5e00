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
Password-based encryption of private key material.

The envelope is the JSON format used by TUF's "encrypted" package, which is
what cosign stores inside its `ENCRYPTED COSIGN PRIVATE KEY` PEM blocks:

```json
{
  "kdf": {"name": "scrypt", "params": {"N": 32768, "r": 8, "p": 1}, "salt": "..."},
  "cipher": {"name": "nacl/secretbox", "nonce": "..."},
  "ciphertext": "..."
}
```

The key is derived from the passphrase with scrypt, and the plaintext is
sealed with NaCl's secretbox (XSalsa20-Poly1305).
"""

from __future__ import annotations

import base64
import binascii
import json
import os
import re

from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from nacl.exceptions import CryptoError
from nacl.secret import SecretBox
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cosign.errors import DecryptError, FormatError

_KDF_NAME = "scrypt"
_CIPHER_NAME = "nacl/secretbox"

_SALT_SIZE = 32

_PEM_BLOCK = re.compile(
    rb"-----BEGIN (?P<type>[A-Z0-9 ]+)-----\r?\n"
    rb"(?P<body>.*?)"
    rb"-----END (?P=type)-----",
    re.DOTALL,
)


class ScryptParams(BaseModel):
    """
    scrypt cost parameters, serialized with Go's field names.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    n: int = Field(32768, alias="N", gt=1)
    r: int = Field(8, gt=0)
    p: int = Field(1, gt=0)


def _derive_key(passphrase: bytes, salt: bytes, params: ScryptParams) -> bytes:
    kdf = Scrypt(salt=salt, length=SecretBox.KEY_SIZE, n=params.n, r=params.r, p=params.p)
    return kdf.derive(passphrase)


def encrypt(
    plaintext: bytes, passphrase: bytes, params: ScryptParams = ScryptParams()
) -> bytes:
    """
    Seal `plaintext` under `passphrase`, returning the JSON envelope.
    """
    salt = os.urandom(_SALT_SIZE)
    nonce = os.urandom(SecretBox.NONCE_SIZE)
    key = _derive_key(passphrase, salt, params)
    sealed = SecretBox(key).encrypt(plaintext, nonce)

    envelope = {
        "kdf": {
            "name": _KDF_NAME,
            "params": params.model_dump(by_alias=True),
            "salt": base64.b64encode(salt).decode(),
        },
        "cipher": {
            "name": _CIPHER_NAME,
            "nonce": base64.b64encode(nonce).decode(),
        },
        "ciphertext": base64.b64encode(sealed.ciphertext).decode(),
    }
    return json.dumps(envelope, separators=(",", ":")).encode()


def decrypt(data: bytes, passphrase: bytes) -> bytes:
    """
    Open a JSON envelope produced by `encrypt` (or by cosign itself).

    Raises `FormatError` if the envelope is malformed, and `DecryptError` if
    the passphrase is wrong or the ciphertext has been tampered with.
    """
    try:
        raw = json.loads(data)
        kdf_name, cipher_name = raw["kdf"]["name"], raw["cipher"]["name"]
        params = ScryptParams.model_validate(raw["kdf"]["params"])
        salt = base64.b64decode(raw["kdf"]["salt"], validate=True)
        nonce = base64.b64decode(raw["cipher"]["nonce"], validate=True)
        ciphertext = base64.b64decode(raw["ciphertext"], validate=True)
    except (ValueError, KeyError, TypeError, binascii.Error, ValidationError) as exc:
        raise FormatError("malformed encrypted key envelope") from exc

    if kdf_name != _KDF_NAME:
        raise FormatError(f"unsupported key derivation function: {kdf_name}")
    if cipher_name != _CIPHER_NAME:
        raise FormatError(f"unsupported cipher: {cipher_name}")
    if len(nonce) != SecretBox.NONCE_SIZE:
        raise FormatError("malformed encrypted key envelope: bad nonce size")

    try:
        key = _derive_key(passphrase, salt, params)
    except ValueError as exc:
        raise FormatError("invalid scrypt parameters") from exc

    try:
        return SecretBox(key).decrypt(ciphertext, nonce)
    except CryptoError as exc:
        raise DecryptError("decryption failed") from exc


def encode_pem(type_: str, body: bytes) -> bytes:
    """
    Armor `body` as a PEM block of the given type.
    """
    b64 = base64.b64encode(body).decode()
    lines = [b64[i : i + 64] for i in range(0, len(b64), 64)]
    return (
        f"-----BEGIN {type_}-----\n" + "\n".join(lines) + f"\n-----END {type_}-----\n"
    ).encode()


def decode_pem(data: bytes) -> tuple[str, bytes]:
    """
    Returns the type and decoded body of the first PEM block in `data`.
    """
    match = _PEM_BLOCK.search(data)
    if match is None:
        raise FormatError("invalid pem block")

    try:
        body = base64.b64decode(b"".join(match.group("body").split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise FormatError("invalid pem block") from exc

    return match.group("type").decode(), body
