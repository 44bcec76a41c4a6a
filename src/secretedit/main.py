import argparse
import logging
import os
import sys
import textwrap
from typing import Optional

import secretedit
import secretedit.edit
import secretedit.manage
from secretedit._output import TerminalBackend, output
from secretedit.crypto import DEFAULT_REGION, KMSClient
from secretedit.log import DEBUG_LOGGERS, setup_logging


def main(args: Optional[list] = None) -> None:
    parser = argparse.ArgumentParser(
        description=(
            "secretedit v{}: edit KMS encrypted secrets in YAML manifests"
        ).format(secretedit.__version__),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.set_defaults(func=parser.print_usage)

    parser.add_argument(
        "-d", "--debug", action="store_true", help="Enable debug mode."
    )
    parser.add_argument(
        "--region",
        default=os.environ.get("AWS_REGION", DEFAULT_REGION),
        help="AWS region of the KMS keys.",
    )
    parser.add_argument(
        "--profile",
        default=None,
        help="AWS profile to use (default: the AWS credential chain).",
    )

    subparsers = parser.add_subparsers()

    # Edit
    p = subparsers.add_parser(
        "edit",
        help=textwrap.dedent(
            """
            Decrypt the secrets of a manifest, invoke the editor, and
            encrypt what changed again."""
        ),
    )
    p.add_argument(
        "--editor",
        "-e",
        metavar="EDITOR",
        default=os.environ.get("EDITOR", "vi"),
        help="Invoke EDITOR to edit (default: $EDITOR or vi)",
    )
    p.add_argument(
        "-k",
        "--key",
        default="",
        help="KMS key to encrypt with. Default: from .keys.yml or the key "
        "the secret already uses.",
    )
    p.add_argument(
        "-r",
        "--recrypt",
        action="store_true",
        help="Re-encrypt all values, even unchanged ones.",
    )
    p.add_argument("file", help="Manifest to edit.")
    p.set_defaults(func=secretedit.edit.main)

    # Show
    p = subparsers.add_parser(
        "show", help="Print a manifest with all secrets decrypted."
    )
    p.add_argument("file", help="Manifest to show.")
    p.set_defaults(func=secretedit.manage.show)

    # Whole files
    p = subparsers.add_parser(
        "encrypt", help="Encrypt whole files to <file>.encrypted."
    )
    p.add_argument(
        "-k",
        "--key",
        default="",
        help="KMS key to encrypt with. Default: from .keys.yml.",
    )
    p.add_argument(
        "-r",
        "--recrypt",
        action="store_true",
        help="Encrypt even if the encrypted file is up to date.",
    )
    p.add_argument("files", nargs="+", metavar="file")
    p.set_defaults(func=secretedit.manage.encrypt)

    p = subparsers.add_parser(
        "decrypt", help="Decrypt <file>.encrypted files to <file>."
    )
    p.add_argument("files", nargs="+", metavar="file")
    p.set_defaults(func=secretedit.manage.decrypt)

    args = parser.parse_args(args)

    # Consume global arguments
    output.enable_debug = args.debug
    if args.debug:
        setup_logging(DEBUG_LOGGERS, logging.DEBUG)

    # Pass over to function
    if args.func.__name__ == "print_usage":
        args.func()
        sys.exit(1)

    output.backend = TerminalBackend()

    func_args = dict(args._get_kwargs())
    del func_args["func"]
    del func_args["debug"]
    func_args["kms"] = KMSClient.from_session(
        func_args.pop("region"), func_args.pop("profile")
    )
    try:
        return args.func(**func_args)
    except secretedit.ReportingException as e:
        e.report()
        sys.exit(1)
    except OSError as e:
        output.error(str(e))
        sys.exit(1)
