#!/usr/bin/env python3
import argparse
import sys
from typing import List, Optional

from tsupdate.config import load_credentials
from tsupdate.downloader import DownloadManager, REPORT_NAME
from tsupdate.logger import setup_logging
from tsupdate.models import AccessLevel, Arch, ConfigError, Target

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_REMOTE_UNREACHABLE = 3
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='tsupdate',
        description='Download new update files listed in the remote manifest and record them locally.'
    )
    parser.add_argument(
        'path',
        help='Local update folder holding the manifest and downloaded files'
    )
    parser.add_argument(
        'version',
        help='Version to synchronize (e.g. "2024.1")'
    )
    parser.add_argument(
        '-c', '--cred',
        default='credentials.yaml',
        metavar='FILE',
        help='Credentials file (default: credentials.yaml)'
    )
    parser.add_argument(
        '-r', '--arch',
        default=Arch.X64.text,
        choices=[arch.text for arch in Arch],
        help='Architecture to download (default: x64)'
    )
    parser.add_argument(
        '-a', '--access',
        default=AccessLevel.COM.text,
        choices=[level.text for level in AccessLevel],
        help='Access level (default: Com)'
    )
    parser.add_argument(
        '--timeout',
        type=float,
        default=60,
        help='Per-request timeout in seconds (default: 60)'
    )
    parser.add_argument(
        '--require-digest',
        action='store_true',
        help='Reject downloaded files whose manifest line has no MD5'
    )
    parser.add_argument(
        '--log-file',
        help='Path to a file to save logs'
    )
    parser.add_argument(
        '--list',
        dest='list_only',
        action='store_true',
        help='List missing files instead of downloading'
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        setup_logging(args.log_file)
    except OSError as e:
        print(f"Configuration error: cannot open log file {args.log_file}: {e}", file=sys.stderr)
        return EXIT_CONFIG

    target = Target(
        version=args.version,
        arch=Arch.from_text(args.arch),
        level=AccessLevel.from_text(args.access)
    )

    try:
        credentials = load_credentials(args.cred)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    try:
        print("=" * 70)
        print("Update Downloader")
        print(f"Site: {credentials.website}")
        print(f"Local Path: {args.path}")
        print(f"Version: {target.version} ({target.arch.text}, {target.level.text})")
        print("=" * 70)

        downloader = DownloadManager(
            credentials,
            timeout=args.timeout,
            require_digest=args.require_digest
        )

        if args.list_only:
            missing = downloader.list_missing(args.path, target)
            print(f"\n{len(missing)} file(s) to download:")
            print("-" * 50)
            for item in missing:
                print(f"{item.product}/{item.filename} ({item.size} bytes)")
        else:
            summary = downloader.sync(args.path, target)["summary"]
            print("\nSync Summary:")
            print(f"- Missing files: {summary['missing']}")
            print(f"- Downloaded: {summary['downloaded']}")
            print(f"- Verified: {summary['verified']}")
            print(f"- Added to manifest: {summary['committed']}")
            print(f"- Failed: {summary['failed']}")
            print(f"- Checksum mismatches: {summary['corrupt']}")
            print(f"- Total data transferred: {summary['total_bytes_transferred'] / (1024*1024):.2f} MB")
            print(f"\nDetailed report saved to '{args.path}/{REPORT_NAME}'")

    except KeyboardInterrupt:
        print("\nOperation cancelled by user.", file=sys.stderr)
        return EXIT_INTERRUPTED
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    if downloader.remote_manifest_error:
        print(f"\nRemote manifest unavailable: {downloader.remote_manifest_error}", file=sys.stderr)
        return EXIT_REMOTE_UNREACHABLE

    print("\nOperation completed.")
    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
