#!/usr/bin/env python3
"""Command-line interface for CA workflows: init, request, sign, revoke, CRL."""

import argparse
import os
import sys
from pathlib import Path

from botocore.exceptions import BotoCoreError, ClientError

from ca_workflows.lib.ca_directory import CADirectory
from ca_workflows.lib.cert_request import CertificateRequest, RequestType
from ca_workflows.lib.config import CAConfig, SubjectOverrides
from ca_workflows.lib.errors import CAError, InputValidationError
from ca_workflows.lib.key_source import SoftwareKeySource
from ca_workflows.lib.logging_config import LOG_LEVEL_ENV, LOGGER, set_level
from ca_workflows.lib.naming import parse_serial
from ca_workflows.lib.revocation import build_crl, revoke, revoke_by_name
from ca_workflows.lib.s3_client import S3Client
from ca_workflows.lib.signing import sign

CA_DIR_ENV = "CA_WORKFLOWS_DIR"

SUBJECT_OPTIONS = ("country", "state", "locality", "organization", "organizational_unit")


def _add_subject_options(parser: argparse.ArgumentParser) -> None:
    for field_name in SUBJECT_OPTIONS:
        parser.add_argument(
            f"--{field_name.replace('_', '-')}",
            dest=field_name,
            default=None,
            help=f"Subject {field_name.replace('_', ' ')}",
        )


def _overrides(args: argparse.Namespace) -> SubjectOverrides:
    return SubjectOverrides(**{f: getattr(args, f) for f in SUBJECT_OPTIONS})


def cmd_init_ca(args: argparse.Namespace) -> int:
    """Initialize a root CA, or a signing CA when --parent is given."""
    if not args.domain:
        raise InputValidationError("no domain supplied (use --domain)")

    config = CAConfig(label=args.label, domain=args.domain)
    for field_name in SUBJECT_OPTIONS:
        value = getattr(args, field_name)
        if value is not None:
            setattr(config, field_name, value)
    if args.key_size:
        config.key_size = args.key_size

    key_source = SoftwareKeySource.from_file(args.key) if args.key else None

    if args.parent:
        parent = CADirectory.open(args.parent)
        LOGGER.info("Initializing signing CA %s under %s...", args.label, parent.config.label)
        ca = CADirectory.initialize_intermediate(args.ca_dir, config, parent, key_source)
    else:
        LOGGER.info("Initializing root CA %s...", args.label)
        ca = CADirectory.initialize(args.ca_dir, config, key_source)

    result = ca.summary()
    LOGGER.info("CA created:")
    LOGGER.info("  Directory: %s", result.ca_dir)
    LOGGER.info("  Cert: %s", result.cert_path)
    LOGGER.info("  Serial: %s", result.serial)
    if result.parent_serial is not None:
        LOGGER.info("  Parent serial: %d", result.parent_serial)
    return 0


def cmd_import_ca(args: argparse.Namespace) -> int:
    """Import an externally issued CA certificate and its key."""
    if not args.domain:
        raise InputValidationError("no domain supplied (use --domain)")
    try:
        cert_pem = args.cert.read_bytes()
        chain_pem = args.chain.read_bytes() if args.chain else None
    except OSError as e:
        raise InputValidationError(f"cannot read certificate: {e}") from e

    ca = CADirectory.import_ca(
        args.ca_dir,
        certificate_pem=cert_pem,
        key_source=SoftwareKeySource.from_file(args.key),
        domain=args.domain,
        label=args.label,
        chain_pem=chain_pem,
    )
    LOGGER.info("Imported CA %s into %s", ca.config.label, ca.path)
    return 0


def cmd_request(args: argparse.Namespace) -> int:
    """Create a client or server request and move it to pending."""
    ca = CADirectory.open(args.ca_dir)
    request = CertificateRequest.draft(
        ca,
        name=args.name,
        kind=args.type,
        email=args.email,
        key_file=args.key,
        overrides=_overrides(args),
        forced_safe_name=args.safe_name,
    )
    result = request.submit()
    LOGGER.info("Request created:")
    LOGGER.info("  Name: %s", result.safe_name)
    LOGGER.info("  CSR: %s", result.csr_path)
    if result.key_path:
        LOGGER.info("  Key: %s", result.key_path)
    LOGGER.info("  SSH public key: %s", result.ssh_public_key_path)
    if args.sign:
        return _sign_request(ca, request)
    return 0


def cmd_sign(args: argparse.Namespace) -> int:
    """Sign a pending request."""
    ca = CADirectory.open(args.ca_dir)
    request = CertificateRequest.load(ca, args.type, args.name)
    return _sign_request(ca, request)


def _sign_request(ca: CADirectory, request: CertificateRequest) -> int:
    result = sign(request, ca)
    LOGGER.info("Certificate signed:")
    LOGGER.info("  Cert: %s", result.cert_path)
    LOGGER.info("  Serial: %s", result.serial_hex)
    LOGGER.info("  Subject: %s", result.subject)
    return 0


def cmd_revoke(args: argparse.Namespace) -> int:
    """Revoke by serial, or by request type and name."""
    ca = CADirectory.open(args.ca_dir)
    if args.serial:
        result = revoke(ca, parse_serial(args.serial))
    elif args.name:
        result = revoke_by_name(ca, args.type, args.name)
    else:
        raise InputValidationError("give --serial or --name")
    LOGGER.info("Revoked serial %s at %s", result.serial_hex, result.revoked_at)
    if args.build_crl:
        return cmd_build_crl(args)
    return 0


def cmd_build_crl(args: argparse.Namespace) -> int:
    """Build and write a new CRL."""
    ca = CADirectory.open(args.ca_dir)
    result = build_crl(ca)
    LOGGER.info("CRL built:")
    LOGGER.info("  Number: %d", result.crl_number)
    LOGGER.info("  Revoked: %s", [f"{s:02X}" for s in result.revoked_serials])
    LOGGER.info("  Path: %s", result.der_path)
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    """Print the Index Store, one certificate per line."""
    ca = CADirectory.open(args.ca_dir)
    for entry in ca.index.entries():
        print(
            f"{entry.serial_hex}\t{entry.status.value}\t{entry.kind}\t"
            f"{entry.not_after.date().isoformat()}\t{entry.subject}"
        )
    return 0


def cmd_publish_crl(args: argparse.Namespace) -> int:
    """Upload the current CRL and CA certificate to S3."""
    ca = CADirectory.open(args.ca_dir)
    crl_path = ca.crl_dir / f"{ca.config.label}.crl"
    if not crl_path.exists():
        raise InputValidationError(f"no CRL built yet: {crl_path}")

    s3_client = S3Client(region=args.region)
    version = s3_client.publish_crl(args.bucket, ca.config.label, crl_path.read_bytes())
    LOGGER.info(
        "Published CRL to s3://%s/crl/%s.crl (version %s)",
        args.bucket,
        ca.config.label,
        version or "-",
    )
    s3_client.publish_ca_certificate(args.bucket, ca.config.label, ca.cert_path.read_bytes())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Certificate authority workflows")
    parser.add_argument(
        "--ca-dir",
        type=Path,
        default=os.environ.get(CA_DIR_ENV),
        help=f"CA directory (default: ${CA_DIR_ENV})",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help=f"Log level (default: ${LOG_LEVEL_ENV} or INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_ca = subparsers.add_parser("init-ca", help="Initialize a new CA directory")
    init_ca.add_argument("--label", required=True, help="Short CA label")
    init_ca.add_argument("--domain", help="Domain serving the CRL distribution point")
    init_ca.add_argument("--parent", type=Path, help="Parent CA directory (signing CA)")
    init_ca.add_argument("--key", type=Path, help="Existing CA private key (PEM)")
    init_ca.add_argument("--key-size", type=int, help="RSA key size for a generated key")
    _add_subject_options(init_ca)
    init_ca.set_defaults(func=cmd_init_ca)

    import_ca = subparsers.add_parser("import-ca", help="Import an externally issued CA")
    import_ca.add_argument("--cert", type=Path, required=True, help="CA certificate (PEM)")
    import_ca.add_argument("--key", type=Path, required=True, help="CA private key (PEM)")
    import_ca.add_argument("--chain", type=Path, help="Issuer chain (PEM)")
    import_ca.add_argument("--domain", help="Domain serving the CRL distribution point")
    import_ca.add_argument("--label", help="CA label (default: certificate CN)")
    import_ca.set_defaults(func=cmd_import_ca)

    request = subparsers.add_parser("request", help="Create a certificate request")
    request.add_argument("type", choices=[t.value for t in RequestType])
    request.add_argument("name", help="Requested identity (subject CN)")
    request.add_argument("--email", help="Email address (required for client requests)")
    request.add_argument("--key", type=Path, help="Existing private key instead of generating one")
    request.add_argument("--safe-name", help="Force the stored safe name")
    request.add_argument("--sign", action="store_true", help="Sign immediately")
    _add_subject_options(request)
    request.set_defaults(func=cmd_request)

    sign_parser = subparsers.add_parser("sign", help="Sign a pending request")
    sign_parser.add_argument("type", choices=[t.value for t in RequestType])
    sign_parser.add_argument("name", help="Request name")
    sign_parser.set_defaults(func=cmd_sign)

    revoke_parser = subparsers.add_parser("revoke", help="Revoke a certificate")
    revoke_parser.add_argument("--serial", help="Serial number (hex)")
    revoke_parser.add_argument("--type", choices=[t.value for t in RequestType], default="client")
    revoke_parser.add_argument("--name", help="Request name to revoke")
    revoke_parser.add_argument("--build-crl", action="store_true", help="Build a CRL afterwards")
    revoke_parser.set_defaults(func=cmd_revoke)

    crl = subparsers.add_parser("build-crl", help="Build a new CRL")
    crl.set_defaults(func=cmd_build_crl)

    list_parser = subparsers.add_parser("list", help="List issued certificates")
    list_parser.set_defaults(func=cmd_list)

    publish = subparsers.add_parser("publish-crl", help="Upload CRL and CA certificate to S3")
    publish.add_argument("--bucket", required=True, help="S3 bucket")
    publish.add_argument("--region", default="eu-west-2", help="AWS region (default: eu-west-2)")
    publish.set_defaults(func=cmd_publish_crl)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run one CA workflow command.

    Returns:
        Exit code (0 success, 1 CA, input, file or S3 error); usage errors exit with 2
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.ca_dir is None:
        parser.error(f"--ca-dir or ${CA_DIR_ENV} is required")
    if args.log_level:
        set_level(args.log_level)

    try:
        return args.func(args)
    except CAError as e:
        LOGGER.error("%s failed: %s", args.command, e)
        return 1
    except TimeoutError as e:
        LOGGER.error("%s failed: CA is locked: %s", args.command, e)
        return 1
    except OSError as e:
        LOGGER.error("%s failed: %s", args.command, e)
        return 1
    except (BotoCoreError, ClientError) as e:
        LOGGER.error("%s failed: S3 error: %s", args.command, e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
