"""Command-line interface for tarmover.

Provides argument parsing and the main entry point for uploads, downloads,
single-entry extracts and presigned URLs.
"""

import argparse
import logging
import sys
from typing import Any, Optional

from tarmover.config import (
    ConfigError,
    build_store_config,
    build_transfer_settings,
    load_from_json,
    merge_options,
)
from tarmover.errors import NotFound, TarMoverError
from tarmover.logging_config import setup_logging
from tarmover.manifest import find_entry, load_manifest
from tarmover.models import ManifestEntry, TransferSettings
from tarmover.reporters import ConsoleReporter, JsonReporter, Reporter
from tarmover.retriever import DEFAULT_PRESIGN_EXPIRY
from tarmover.retry import RetryExhausted
from tarmover.runner import TransferRunner
from tarmover.s3_client import build_s3_client

logger = logging.getLogger(__name__)

OPERATIONS = ("upload", "download", "extract", "presign")

DEFAULT_PART_SIZE = TransferSettings().part_size
DEFAULT_CONCURRENCY = TransferSettings().concurrency


class CompositeReporter(Reporter):
    """Reporter that delegates to multiple reporters.

    Allows using both ConsoleReporter and JsonReporter simultaneously.
    """

    def __init__(self, reporters: list[Reporter]):
        self._reporters = reporters

    def on_manifest(self, manifest, total_size) -> None:
        """Delegate to all reporters."""
        for reporter in self._reporters:
            reporter.on_manifest(manifest, total_size)

    def on_range(self, range_spec) -> None:
        """Delegate to all reporters."""
        for reporter in self._reporters:
            reporter.on_range(range_spec)

    def on_transfer_start(self, job) -> None:
        """Delegate to all reporters."""
        for reporter in self._reporters:
            reporter.on_transfer_start(job)

    def on_transfer_complete(self, result) -> None:
        """Delegate to all reporters."""
        for reporter in self._reporters:
            reporter.on_transfer_complete(result)

    def on_transfer_failed(self, job, error) -> None:
        """Delegate to all reporters."""
        for reporter in self._reporters:
            reporter.on_transfer_failed(job, error)

    def on_presigned_url(self, bucket, key, url) -> None:
        """Delegate to all reporters."""
        for reporter in self._reporters:
            reporter.on_presigned_url(bucket, key, url)

    def on_run_complete(self, results) -> None:
        """Delegate to all reporters."""
        for reporter in self._reporters:
            reporter.on_run_complete(results)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="tarmover",
        description="Move files and virtual tar archives to and from S3-compatible storage",
    )

    parser.add_argument("--op", choices=OPERATIONS, default="upload", help="operation to do")
    parser.add_argument("--bucket", help="bucket for target operation")
    parser.add_argument("--object", dest="object_key", help="path for object read/write")
    parser.add_argument("--filepath", help="path for local file to read/write")
    parser.add_argument(
        "--filelist",
        help="comma separated file list; if given, the files are uploaded as one tar archive",
    )
    parser.add_argument("--fileoffset", type=int, help="offset of the entry header in the tar archive")
    parser.add_argument("--filesize", type=int, help="size of the entry at the given offset")
    parser.add_argument("--manifest", metavar="PATH", help="JSON report of an upload, to look up --entry")
    parser.add_argument("--entry", help="name of the archived file to extract")
    parser.add_argument(
        "--verify-header",
        action="store_true",
        help="fetch the entry's tar header too and check it against the manifest",
    )
    parser.add_argument("--url", help="presigned URL of the archive (extract without credentials)")
    parser.add_argument(
        "--expires",
        type=int,
        default=DEFAULT_PRESIGN_EXPIRY,
        help="presigned URL lifetime in seconds (default: 3600)",
    )

    parser.add_argument("--id", dest="access_key", help="access key, or use env AWS_ACCESS_KEY_ID")
    parser.add_argument("--secret", dest="secret_key", help="secret key, or use env AWS_SECRET_ACCESS_KEY")
    parser.add_argument("--endpoint", help="endpoint if different than s3.amazonaws.com, as host:port or URL")
    parser.add_argument("--region", help="region (default: us-west-2)")
    parser.add_argument("--nocsum", action="store_true", help="disable checksums for uploads")
    parser.add_argument("--nossl", action="store_true", help="disable https")
    parser.add_argument("--pathstyle", action="store_true", help="force path style requests")
    parser.add_argument("--v2auth", action="store_true", help="use legacy v2 request signing")
    parser.add_argument("--partsize", help="part size for uploads and downloads (default: 64MiB)")
    parser.add_argument(
        "--concurrency",
        type=int,
        help="parts in flight for multipart uploads and downloads (default: 24)",
    )
    parser.add_argument("--retries", type=int, default=0, help="re-run a job this many times on transient errors")

    parser.add_argument("-c", "--config", metavar="PATH", help="JSON file with option defaults")
    parser.add_argument("-q", "--quiet", action="store_true", help="print results only")
    parser.add_argument("-j", "--json-output", metavar="PATH", help="write JSON results (and manifest) to file")
    parser.add_argument("--debug", action="store_true", help="enable debug output")

    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Map command-line flags onto config option names.

    Flags left unset map to None (or are omitted) so file values survive.
    """
    return {
        "access_key": args.access_key,
        "secret_key": args.secret_key,
        "endpoint": args.endpoint,
        "region": args.region,
        "bucket": args.bucket,
        "part_size": args.partsize,
        "concurrency": args.concurrency,
        "disable_checksum": True if args.nocsum else None,
        "disable_ssl": True if args.nossl else None,
        "path_style": True if args.pathstyle else None,
        "signing_version": "v2" if args.v2auth else None,
    }


def operation(args: argparse.Namespace) -> str:
    """Effective operation; a download with an offset is an extract."""
    if args.op == "download" and args.fileoffset is not None:
        return "extract"
    return args.op


def validate_args(args: argparse.Namespace, options: dict[str, Any]) -> None:
    """Check that the flags required by the operation are present.

    Raises:
        ConfigError: If a required flag is missing.
    """
    op = operation(args)
    url_extract = op == "extract" and args.url

    if not url_extract and not options.get("bucket"):
        raise ConfigError("bucket undefined, must specify bucket for operation")
    if not url_extract and not args.object_key:
        raise ConfigError("object undefined, must specify object name")
    if op != "presign" and not args.filepath and not args.filelist:
        raise ConfigError("local file(s) undefined, must specify either filepath or filelist")
    if op in ("download", "extract") and not args.filepath:
        raise ConfigError("filepath undefined, must specify the local file to write")
    if op == "extract":
        by_offset = args.fileoffset is not None and args.filesize is not None
        by_name = args.manifest and args.entry
        if not by_offset and not by_name:
            raise ConfigError("extract needs --fileoffset and --filesize, or --manifest and --entry")
    if args.retries < 0:
        raise ConfigError("retries must not be negative")


def resolve_entry(args: argparse.Namespace) -> ManifestEntry:
    """Entry to extract, from --manifest/--entry or --fileoffset/--filesize.

    Raises:
        NotFound: The manifest file or the entry does not exist.
        ConfigError: The manifest file is malformed.
    """
    if args.manifest and args.entry:
        return find_entry(load_manifest(args.manifest), args.entry)
    return ManifestEntry(name=args.entry or "", offset=args.fileoffset, size=args.filesize)


def create_reporters(args: argparse.Namespace) -> list[Reporter]:
    """Create reporters based on command-line arguments.

    Args:
        args: Parsed command-line arguments

    Returns:
        List of configured reporters
    """
    reporters: list[Reporter] = [ConsoleReporter(quiet=args.quiet)]

    if args.json_output:
        reporters.append(JsonReporter(output_path=args.json_output))

    return reporters


def run_operation(
    runner: TransferRunner,
    args: argparse.Namespace,
    bucket: Optional[str],
    entry: Optional[ManifestEntry],
) -> None:
    """Dispatch the requested operation to the runner."""
    op = operation(args)

    if op == "upload":
        if args.filelist:
            paths = [p.strip() for p in args.filelist.split(",") if p.strip()]
            runner.upload_files(paths, bucket, args.object_key)
        else:
            runner.upload_file(args.filepath, bucket, args.object_key)
    elif op == "download":
        runner.download(bucket, args.object_key, args.filepath)
    elif op == "extract":
        if args.url:
            runner.extract_from_url(args.url, entry, args.filepath, verify_header=args.verify_header)
        else:
            runner.extract(bucket, args.object_key, entry, args.filepath, verify_header=args.verify_header)
    else:
        runner.presign(bucket, args.object_key, args.expires)


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code: 0 for success, 1 for transfer failures, 2 for errors
        in configuration or input
    """
    args = parse_args(argv)
    setup_logging(debug=args.debug)

    # Load configuration
    try:
        file_options = load_from_json(args.config) if args.config else {}
        options = merge_options(file_options, build_overrides(args))
        validate_args(args, options)
        settings = build_transfer_settings(
            options.get("part_size", DEFAULT_PART_SIZE),
            options.get("concurrency", DEFAULT_CONCURRENCY),
        )
        entry = resolve_entry(args) if operation(args) == "extract" else None

        s3_client = None
        if not args.url:
            store_config = build_store_config(options)
            s3_client = build_s3_client(store_config, max_pool_connections=settings.concurrency)
    except (ConfigError, NotFound) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    # Create reporters
    reporters = create_reporters(args)
    if len(reporters) == 1:
        reporter = reporters[0]
    else:
        reporter = CompositeReporter(reporters)

    runner = TransferRunner(
        s3_client,
        settings,
        reporter=reporter,
        max_attempts=args.retries + 1,
    )

    try:
        run_operation(runner, args, options.get("bucket"), entry)
    except (TarMoverError, RetryExhausted) as e:
        logger.debug("Operation failed", exc_info=True)
        logger.error("%s", e)
        return 1
    except ValueError as e:
        print(f"Invalid input: {e}", file=sys.stderr)
        return 2
    finally:
        runner.finish()

    return 0


if __name__ == "__main__":
    sys.exit(main())
