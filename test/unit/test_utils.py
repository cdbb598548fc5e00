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

import base64
import hashlib
import io

import pretend
import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa

from cosign import _utils as utils
from cosign.errors import FormatError, UnsupportedKeyError


@pytest.mark.parametrize(
    "size", [0, 1, 2, 4, 8, 32, 128, 1024, 128 * 1024, 1024 * 1024]
)
def test_sha256_streaming(size):
    buf = b"x" * size

    expected_digest = hashlib.sha256(buf).digest()
    actual_digest = utils._sha256_streaming(io.BytesIO(buf))

    assert expected_digest == actual_digest
    assert utils.sha256_digest(buf) == expected_digest


def test_load_pem_public_key_format():
    keybytes = b"-----BEGIN PUBLIC KEY-----\n" b"bleh\n" b"-----END PUBLIC KEY-----"
    with pytest.raises(FormatError, match="could not load PEM-formatted public key"):
        utils.load_pem_public_key(keybytes)


def test_load_pem_public_key_rejects_rsa():
    rsa_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    with pytest.raises(UnsupportedKeyError, match="expected an elliptic-curve key"):
        utils.load_pem_public_key(utils.public_key_pem(rsa_key.public_key()))


def test_load_pem_public_key_roundtrip(local_key):
    pem = local_key.public_key_pem()
    assert utils.public_key_pem(utils.load_pem_public_key(pem)) == pem


@pytest.mark.parametrize(
    ("data", "expected"),
    [
        (b"aGVsbG8=", True),
        (b"aGVsbG8=\n", True),
        ("aGVsbG8=", True),
        (b"aGVsbG8", False),
        (b"\x30\x45\x02\x21", False),
        (b"not base64!", False),
    ],
)
def test_is_b64(data, expected):
    assert utils.is_b64(data) is expected


class TestNormalizeSignature:
    def test_raw_and_encoded_agree(self, local_key):
        raw = local_key.sign(b"payload")
        encoded = base64.b64encode(raw)

        assert utils.normalize_signature(raw) == utils.normalize_signature(encoded)
        assert utils.decode_signature(utils.normalize_signature(raw)) == raw

    def test_strips_surrounding_whitespace(self):
        assert utils.normalize_signature(b"aGVsbG8=\n") == "aGVsbG8="

    def test_does_not_double_encode(self):
        assert utils.normalize_signature("aGVsbG8=") == "aGVsbG8="

    @pytest.mark.parametrize(
        "encoding", [utils.SignatureEncoding.AUTO, utils.SignatureEncoding.BASE64]
    )
    @pytest.mark.parametrize("newline", [b"\n", b"\r\n"])
    def test_unwraps_line_wrapped_base64(self, local_key, encoding, newline):
        raw = local_key.sign(b"payload")
        # `base64` wraps at 76 columns, the way it prints a signature file.
        wrapped = base64.encodebytes(raw + raw).replace(b"\n", newline)
        assert wrapped.count(newline) > 1

        normalized = utils.normalize_signature(wrapped, encoding)

        assert normalized == base64.b64encode(raw + raw).decode()
        assert utils.is_b64(wrapped)

    def test_explicit_raw_bypasses_heuristic(self):
        # Valid base64 text, but declared to be raw signature bytes.
        data = b"aGVsbG8="
        normalized = utils.normalize_signature(data, utils.SignatureEncoding.RAW)
        assert utils.decode_signature(normalized) == data

    def test_explicit_base64_rejects_garbage(self):
        with pytest.raises(FormatError, match="not valid base64"):
            utils.normalize_signature(b"\x30\x45", utils.SignatureEncoding.BASE64)

    def test_explicit_base64_rejects_non_ascii(self):
        with pytest.raises(FormatError, match="not valid base64"):
            utils.normalize_signature("sïg", utils.SignatureEncoding.BASE64)


def test_decode_signature_invalid():
    with pytest.raises(FormatError, match="not valid base64"):
        utils.decode_signature("@@@")


def test_read_input_stdin(monkeypatch):
    monkeypatch.setattr(
        "sys.stdin", pretend.stub(buffer=io.BytesIO(b"from stdin"))
    )
    assert utils.read_input("-") == b"from stdin"


def test_read_input_path(tmp_path):
    path = tmp_path / "blob"
    path.write_bytes(b"from a file")
    assert utils.read_input(path) == b"from a file"
    assert utils.read_input(str(path)) == b"from a file"


def test_cert_is_ca_invalid_version():
    cert = pretend.stub(version=x509.Version.v1)
    with pytest.raises(FormatError, match="invalid X.509 version"):
        utils.cert_is_ca(cert)


def test_cert_is_ca(pki):
    assert utils.cert_is_ca(pki.root)
    assert utils.cert_is_ca(pki.intermediate)
    assert not utils.cert_is_ca(pki.leaf())
