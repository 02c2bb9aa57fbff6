"""
xcrypt - Main Entry Point

Command-line front end for the file transform pipeline.

Usage:
    xcrypt -e -p KEY infile outfile
    xcrypt -d -p KEY infile outfile
    xcrypt --info infile
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .core_crypto.key_verifier import TAG_SIZE, read_tag
from .errors import XcryptError
from .integration.event_logger import EventLogger
from .integration.syscall import XcryptArgs, dispatch, registered


logger = logging.getLogger("xcrypt")


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Configure console logging and, optionally, a log file."""
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.addHandler(console)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        logger.addHandler(file_handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xcrypt",
        description="Encrypt or decrypt a file with AES-CTR; the output is "
                    "only written if the whole operation succeeds.",
    )
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("-e", "--encrypt", action="store_true", help="encrypt infile")
    mode.add_argument("-d", "--decrypt", action="store_true", help="decrypt infile")
    mode.add_argument("--info", action="store_true",
                      help="print the key tag stored in an encrypted infile")
    parser.add_argument("-p", "--passphrase", help="key, at least 16 bytes")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug output")
    parser.add_argument("--log-file", help="also write the log to this file")
    parser.add_argument("infile")
    parser.add_argument("outfile", nargs="?")
    return parser


def _show_info(path: str) -> int:
    try:
        tag = read_tag(path)
    except XcryptError as exc:
        print(f"xcrypt: {exc}", file=sys.stderr)
        return exc.errno
    if len(tag) < TAG_SIZE:
        print(f"{path}: too short to hold a key tag ({len(tag)} bytes)")
        return 1
    print(f"{path}: key tag {tag.hex()}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for xcrypt. Returns the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    if args.info:
        return _show_info(args.infile)
    if args.passphrase is None:
        parser.error("-p/--passphrase is required to encrypt or decrypt")
    if args.outfile is None:
        parser.error("outfile is required to encrypt or decrypt")

    key = args.passphrase.encode("utf-8")
    request = XcryptArgs(
        key=key,
        key_len=len(key),
        direction=1 if args.encrypt else 0,
        source_path=args.infile,
        dest_path=args.outfile,
    )

    audit = EventLogger()
    with registered(event_logger=audit):
        rc = dispatch(request)
    audit.shutdown()

    if rc != 0:
        failures = [e for e in audit.get_all_events() if 'error' in e.details]
        if failures:
            details = failures[-1].details
            reason = f"{details['error']}: {details.get('message', '')}"
        else:
            reason = "error"
        print(f"xcrypt: {reason} (errno {-rc})", file=sys.stderr)
        return -rc
    logger.debug("audit log intact: %s", audit.verify_integrity())
    return 0


if __name__ == "__main__":
    sys.exit(main())
