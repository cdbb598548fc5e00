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

from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, NoReturn, Optional

from rich.console import Console
from rich.logging import RichHandler

from cosign import __version__
from cosign._internal.rekor.client import DEFAULT_REKOR_URL, RekorClient
from cosign._utils import SignatureEncoding, load_pem_public_key, read_input
from cosign.config import TransparencyMode, VerifyConfig
from cosign.deadline import Deadline
from cosign.errors import Error, InputError, VerificationError
from cosign.keys import Key, KeySelection, LocalKey, load_key
from cosign.sign import Signer, SigningResult
from cosign.verify import (
    BlobVerifier,
    TrustedRoots,
    VerificationFailure,
    VerificationSuccess,
    VerifyBlobRequest,
)

_console = Console(file=sys.stderr)
logging.basicConfig(
    format="%(message)s", datefmt="[%X]", handlers=[RichHandler(console=_console)]
)
_logger = logging.getLogger(__name__)

# NOTE: We configure the top package logger, rather than the root logger,
# to avoid overly verbose logging in third-party code by default.
_package_logger = logging.getLogger("cosign")
_package_logger.setLevel(os.environ.get("COSIGN_LOGLEVEL", "INFO").upper())


def _fatal(message: str) -> NoReturn:
    """
    Logs a fatal condition and exits.
    """
    _logger.fatal(message)
    sys.exit(1)


def _invalid_arguments(args: argparse.Namespace, message: str) -> NoReturn:
    """
    An `argparse` helper that fixes up the type hints on our use of
    `ArgumentParser.error`.
    """
    args._parser.error(message)
    raise ValueError("unreachable")


def _boolify_env(envvar: str) -> bool:
    """
    An `argparse` helper for turning an environment variable into a boolean.

    The semantics here closely mirror `distutils.util.strtobool`.

    See: <https://docs.python.org/3/distutils/apiref.html#distutils.util.strtobool>
    """
    val = os.getenv(envvar)
    if val is None:
        return False

    val = val.lower()
    if val in {"y", "yes", "true", "t", "on", "1"}:
        return True
    elif val in {"n", "no", "false", "f", "off", "0"}:
        return False
    else:
        raise ValueError(f"can't coerce '{val}' to a boolean")


def _pass_func(confirm: bool) -> bytes:
    """
    Returns the key passphrase, from `COSIGN_PASSWORD` or an interactive prompt.
    """
    env = os.getenv("COSIGN_PASSWORD")
    if env is not None:
        return env.encode()

    password = getpass.getpass("Enter password for private key: ")
    if confirm and getpass.getpass("Enter again: ") != password:
        _fatal("passwords do not match")

    return password.encode()


def _root_certs_from_env() -> List[Path]:
    val = os.getenv("COSIGN_ROOT_CERTS")
    if not val:
        return []
    return [Path(p) for p in val.split(os.pathsep) if p]


def _add_key_options(group: argparse._ArgumentGroup, cert: bool = False) -> None:
    """
    Key selection options, shared between all subcommands that use a key.

    These are deliberately not an `argparse` mutually exclusive group: the
    selection is checked by `KeySelection`, which reports a `ConfigError`.
    """
    group.add_argument(
        "--key",
        metavar="FILE",
        type=str,
        help="Path to a private key (signing) or a public key (verification)",
    )
    group.add_argument(
        "--kms",
        metavar="URI",
        type=str,
        help="A KMS key reference, e.g. `gcpkms://...`",
    )
    if cert:
        group.add_argument(
            "--cert",
            "--certificate",
            metavar="FILE",
            type=str,
            help="Path to a PEM-encoded certificate bundle, signing leaf first",
        )


def _add_rekor_options(group: argparse._ArgumentGroup) -> None:
    group.add_argument(
        "--rekor-url",
        metavar="URL",
        type=str,
        default=os.getenv("REKOR_URL", DEFAULT_REKOR_URL),
        help="The transparency log instance to use",
    )


def _add_signing_options(parser: argparse.ArgumentParser) -> None:
    key_options = parser.add_argument_group("Key options")
    _add_key_options(key_options)

    output_options = parser.add_argument_group("Output options")
    output_options.add_argument(
        "--output-signature",
        metavar="FILE",
        type=Path,
        help="Write the base64 signature to FILE instead of standard output",
    )

    tlog_options = parser.add_argument_group("Transparency log options")
    tlog_options.add_argument(
        "--tlog-upload",
        action="store_true",
        default=_boolify_env("COSIGN_EXPERIMENTAL"),
        help="Record the signature in the transparency log",
    )
    _add_rekor_options(tlog_options)


def _parser() -> argparse.ArgumentParser:
    # Arguments in parent_parser can be used for both commands and subcommands
    parent_parser = argparse.ArgumentParser(add_help=False)
    parent_parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="run with additional debug logging; supply multiple times to increase verbosity",
    )

    parser = argparse.ArgumentParser(
        prog="cosign",
        description="a tool for signing and verifying container images and blobs",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        parents=[parent_parser],
    )
    parser.add_argument(
        "-V", "--version", action="version", version=f"cosign {__version__}"
    )

    subcommands = parser.add_subparsers(
        required=True,
        dest="subcommand",
        metavar="COMMAND",
        help="the operation to perform",
    )

    # `cosign generate-key-pair`
    generate = subcommands.add_parser(
        "generate-key-pair",
        help="generate an encrypted key pair",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        parents=[parent_parser],
    )
    generate.add_argument(
        "--output-prefix",
        metavar="PREFIX",
        type=str,
        default="cosign",
        help="Write the keys to PREFIX.key and PREFIX.pub",
    )
    generate.add_argument(
        "--overwrite",
        action="store_true",
        default=_boolify_env("COSIGN_OVERWRITE"),
        help="Overwrite preexisting key files, if present",
    )

    # `cosign sign-blob`
    sign_blob = subcommands.add_parser(
        "sign-blob",
        help="sign a blob",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        parents=[parent_parser],
    )
    _add_signing_options(sign_blob)
    sign_blob.add_argument(
        "blob",
        metavar="BLOB",
        type=str,
        help="The blob to sign, or `-` for standard input",
    )

    # `cosign sign`
    sign = subcommands.add_parser(
        "sign",
        help="sign a container image's simple signing payload",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        parents=[parent_parser],
    )
    _add_signing_options(sign)
    image_options = sign.add_argument_group("Image options")
    image_options.add_argument(
        "--reference",
        metavar="REF",
        type=str,
        required=True,
        help="The image reference, e.g. `registry.example.com/repo:tag`",
    )
    image_options.add_argument(
        "--digest",
        metavar="DIGEST",
        type=str,
        required=True,
        help="The image manifest digest, e.g. `sha256:...`",
    )
    image_options.add_argument(
        "-a",
        "--annotation",
        metavar="KEY=VALUE",
        type=str,
        action="append",
        default=[],
        help="An annotation to add to the payload; may be given multiple times",
    )
    image_options.add_argument(
        "--output-payload",
        metavar="FILE",
        type=Path,
        help="Write the signed payload to FILE",
    )

    # `cosign verify-blob`
    verify_blob = subcommands.add_parser(
        "verify-blob",
        help="verify a signature over a blob",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        parents=[parent_parser],
    )
    key_options = verify_blob.add_argument_group("Key options")
    _add_key_options(key_options, cert=True)

    input_options = verify_blob.add_argument_group("Verification inputs")
    input_options.add_argument(
        "--signature",
        metavar="SIG",
        type=str,
        required=True,
        help="A signature file, or a literal base64 signature",
    )
    input_options.add_argument(
        "--signature-encoding",
        choices=[e.value for e in SignatureEncoding],
        default=SignatureEncoding.AUTO.value,
        help="How the signature file is encoded; `auto` detects base64",
    )
    input_options.add_argument(
        "blob",
        metavar="BLOB",
        type=str,
        help="The signed blob, or `-` for standard input",
    )

    trust_options = verify_blob.add_argument_group("Trust options")
    trust_options.add_argument(
        "--root-cert",
        metavar="FILE",
        type=Path,
        action="append",
        default=_root_certs_from_env(),
        help="A PEM bundle of trusted CA certificates; may be given multiple times",
    )

    tlog_options = verify_blob.add_argument_group("Transparency log options")
    tlog_options.add_argument(
        "--tlog",
        choices=[m.value for m in TransparencyMode],
        default=(
            TransparencyMode.REQUIRED.value
            if _boolify_env("COSIGN_EXPERIMENTAL")
            else TransparencyMode.DISABLED.value
        ),
        help="Whether a transparency log entry is checked",
    )
    _add_rekor_options(tlog_options)
    tlog_options.add_argument(
        "--rekor-public-key",
        metavar="FILE",
        type=Path,
        help="The transparency log's public key, required with --tlog",
    )
    verify_blob.add_argument(
        "--timeout",
        metavar="SECONDS",
        type=float,
        default=None,
        help="Time budget for remote calls",
    )

    return parser


def main(args: Optional[List[str]] = None) -> None:
    if not args:
        args = sys.argv[1:]

    parser = _parser()
    args = parser.parse_args(args)

    # Configure logging upfront, so that we don't miss anything.
    if args.verbose >= 1:
        _package_logger.setLevel("DEBUG")
    if args.verbose >= 2:
        logging.getLogger().setLevel("DEBUG")

    _logger.debug(f"parsed arguments {args}")

    # Stuff the parser back into our namespace, so that we can use it for
    # error handling later.
    args._parser = parser

    try:
        if args.subcommand == "generate-key-pair":
            _generate_key_pair(args)
        elif args.subcommand == "sign-blob":
            _sign_blob(args)
        elif args.subcommand == "sign":
            _sign(args)
        elif args.subcommand == "verify-blob":
            _verify_blob(args)
        else:
            _invalid_arguments(args, f"Unknown subcommand: {args.subcommand}")
    except Error as e:
        e.log_and_exit(_logger, args.verbose >= 1)


def _generate_key_pair(args: argparse.Namespace) -> None:
    key_path = Path(f"{args.output_prefix}.key")
    pub_path = Path(f"{args.output_prefix}.pub")

    if not args.overwrite:
        extants = [p for p in (key_path, pub_path) if p.exists()]
        if extants:
            _invalid_arguments(
                args,
                "Refusing to overwrite outputs without --overwrite: "
                f"{', '.join(map(str, extants))}",
            )

    key = LocalKey.generate()
    encrypted = key.to_encrypted_pem(_pass_func(True))
    # Created with its final mode. An existing key is replaced, not truncated.
    key_path.unlink(missing_ok=True)
    fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as io:
        io.write(encrypted)
    print(f"Private key written to {key_path}")

    pub_path.write_bytes(key.public_key_pem())
    print(f"Public key written to {pub_path}")


def _load_key(selection: KeySelection) -> Key:
    try:
        return load_key(selection, _pass_func)
    except OSError as exc:
        raise InputError(f"can't read key: {exc}") from exc


def _signer(args: argparse.Namespace) -> Signer:
    selection = KeySelection(key=args.key, kms=args.kms)
    _logger.debug(f"signing in {selection.mode.value} mode")
    key = _load_key(selection)

    rekor = None
    if args.tlog_upload:
        _logger.debug(f"uploading signatures to {args.rekor_url}")
        rekor = RekorClient(args.rekor_url)

    return Signer(key, rekor)


def _emit_signature(args: argparse.Namespace, result: SigningResult) -> None:
    if args.output_signature is not None:
        args.output_signature.write_text(result.b64_signature)
        print(f"Signature written to {args.output_signature}", file=sys.stderr)
    else:
        print(result.b64_signature)

    if result.log_entry is not None:
        print(
            f"tlog entry created with index: {result.log_entry.log_index}",
            file=sys.stderr,
        )


def _sign_blob(args: argparse.Namespace) -> None:
    signer = _signer(args)

    try:
        blob = read_input(args.blob)
    except OSError as exc:
        raise InputError(f"can't read blob: {exc}") from exc

    _emit_signature(args, signer.sign(blob))


def _parse_annotations(args: argparse.Namespace) -> Optional[Dict[str, str]]:
    if not args.annotation:
        return None

    annotations = {}
    for annotation in args.annotation:
        key, sep, value = annotation.partition("=")
        if not sep or not key:
            _invalid_arguments(args, f"invalid annotation, expected KEY=VALUE: {annotation}")
        annotations[key] = value
    return annotations


def _sign(args: argparse.Namespace) -> None:
    annotations = _parse_annotations(args)
    signer = _signer(args)

    result = signer.sign_image(args.reference, args.digest, annotations)

    if args.output_payload is not None:
        args.output_payload.write_bytes(result.payload)
        print(f"Payload written to {args.output_payload}", file=sys.stderr)

    _emit_signature(args, result)


def _verify_blob(args: argparse.Namespace) -> None:
    # Conflicting or missing selectors are reported before any file is read.
    selection = KeySelection(key=args.key, kms=args.kms, cert=args.cert)
    _logger.debug(f"verifying in {selection.mode.value} mode")

    missing = [p for p in args.root_cert if not p.is_file()]
    if args.rekor_public_key is not None and not args.rekor_public_key.is_file():
        missing.append(args.rekor_public_key)
    if missing:
        _invalid_arguments(args, f"Input files not found: {', '.join(map(str, missing))}")

    trusted_roots = TrustedRoots.from_files(args.root_cert) if args.root_cert else None

    transparency = TransparencyMode(args.tlog)
    rekor = None
    rekor_public_key = None
    if transparency != TransparencyMode.DISABLED:
        rekor = RekorClient(args.rekor_url)
        if args.rekor_public_key is not None:
            rekor_public_key = load_pem_public_key(args.rekor_public_key.read_bytes())

    verifier = BlobVerifier(
        VerifyConfig(
            trusted_roots=trusted_roots,
            transparency=transparency,
            rekor=rekor,
            rekor_public_key=rekor_public_key,
            timeout=args.timeout,
        )
    )

    result = verifier.verify(
        VerifyBlobRequest(
            selection=selection,
            signature=args.signature,
            artifact=args.blob,
            signature_encoding=SignatureEncoding(args.signature_encoding),
        ),
        pass_func=_pass_func,
        deadline=Deadline(args.timeout),
    )

    if isinstance(result, VerificationFailure):
        raise VerificationError(result)
    assert isinstance(result, VerificationSuccess)

    print("Verified OK", file=sys.stderr)
    if result.trust_chain_verified:
        print("Certificate is trusted by Fulcio Root CA", file=sys.stderr)
    if result.certificate_identity:
        print(f"Email: {result.certificate_identity}", file=sys.stderr)
    if result.log_index is not None:
        print(f"tlog entry verified with index: {result.log_index}", file=sys.stderr)
