"""Console reporter using Rich library for formatted CLI output.

Provides formatted output during transfers including:
- The tar manifest (file, offset, size) before an upload starts
- The byte range of a single-entry retrieval
- One result line per transfer with throughput
"""

from rich import box
from rich.console import Console
from rich.table import Table

from tarmover.models import Direction, ManifestEntry, RangeSpec, TransferJob, TransferResult
from tarmover.reporters.base import Reporter

# Verb printed in front of each completed transfer
RESULT_LABELS = {
    Direction.UPLOAD: "Uploaded",
    Direction.DOWNLOAD: "Downloaded",
    Direction.EXTRACT: "Extracted",
}


class ConsoleReporter(Reporter):
    """Rich-based console reporter for CLI output.

    Args:
        quiet: If True, suppress the manifest and range output and print
            only results and errors.
    """

    def __init__(self, quiet: bool = False):
        # Use legacy_windows=True for ASCII-safe output on Windows consoles
        self.console = Console(legacy_windows=True)
        self.quiet = quiet

    def on_manifest(self, manifest: list[ManifestEntry], total_size: int) -> None:
        """Print the manifest as a table."""
        if self.quiet:
            return

        table = Table(
            title="Tar Manifest",
            show_header=True,
            header_style="bold magenta",
            border_style="dim",
            box=box.ASCII,
        )
        table.add_column("File", style="cyan", no_wrap=True)
        table.add_column("Offset", justify="right", no_wrap=True)
        table.add_column("Size", justify="right", no_wrap=True)

        for entry in manifest:
            table.add_row(entry.name, str(entry.offset), str(entry.size))

        self.console.print(table)
        self.console.print(f"[dim]Archive size: {total_size} bytes[/dim]")

    def on_range(self, range_spec: RangeSpec) -> None:
        if self.quiet:
            return
        self.console.print(f"RANGE: {range_spec.header_value}")

    def on_transfer_start(self, job: TransferJob) -> None:
        """Currently a no-op for console reporter."""
        pass

    def on_transfer_complete(self, result: TransferResult) -> None:
        """Print the destination and throughput of a finished transfer."""
        label = RESULT_LABELS[result.direction]
        target = result.location if result.direction == Direction.UPLOAD else result.local_path
        self.console.print(
            f"[green]{label}:[/green] {target} "
            f"[dim]({result.size} bytes, {result.throughput:.2f} MiB/s)[/dim]"
        )

    def on_transfer_failed(self, job: TransferJob, error: Exception) -> None:
        self.console.print(
            f"[bold red]{job.direction.value} failed[/bold red] "
            f"for s3://{job.bucket}/{job.key}: {error}"
        )

    def on_presigned_url(self, bucket: str, key: str, url: str) -> None:
        # Raw print so the URL is never wrapped or marked up
        self.console.print(url, markup=False, soft_wrap=True)

    def on_run_complete(self, results: list[TransferResult]) -> None:
        """Currently a no-op; each result is printed as it completes."""
        pass
