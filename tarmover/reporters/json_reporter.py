"""JSON reporter for structured output.

Writes the results of a run, including the manifest of every uploaded tar
stream, to a JSON file. A report written for an upload can later be passed to
``--manifest`` to extract an entry by name.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from tarmover.models import ManifestEntry, RangeSpec, TransferJob, TransferResult
from tarmover.reporters.base import Reporter


class JsonReporter(Reporter):
    """JSON reporter for structured output.

    Args:
        output_path: Optional file path to write JSON output
    """

    def __init__(self, output_path: Optional[str] = None):
        self.output_path = output_path
        self._errors: list[dict] = []

    def on_manifest(self, manifest: list[ManifestEntry], total_size: int) -> None:
        """No-op - the manifest is carried by the upload result."""
        pass

    def on_range(self, range_spec: RangeSpec) -> None:
        """No-op for JSON reporter."""
        pass

    def on_transfer_start(self, job: TransferJob) -> None:
        """No-op for JSON reporter."""
        pass

    def on_transfer_complete(self, result: TransferResult) -> None:
        """No-op - results are passed to on_run_complete."""
        pass

    def on_transfer_failed(self, job: TransferJob, error: Exception) -> None:
        """Record a failed job for the final output."""
        record = {
            "direction": job.direction.value,
            "bucket": job.bucket,
            "key": job.key,
            "local_path": job.local_path,
            "error_type": type(error).__name__,
            "error": str(error),
        }
        context = getattr(error, "context", None)
        if callable(context):
            record["context"] = context()
        self._errors.append(record)

    def on_presigned_url(self, bucket: str, key: str, url: str) -> None:
        """No-op for JSON reporter."""
        pass

    def on_run_complete(self, results: list[TransferResult]) -> dict:
        """Generate and output the JSON data.

        Args:
            results: Completed transfer results

        Returns:
            The generated JSON data as a dictionary
        """
        output = self._generate_output(results)

        if self.output_path:
            self._write_to_file(output)

        return output

    def _generate_output(self, results: list[TransferResult]) -> dict:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "results": [result.to_dict() for result in results],
            "errors": list(self._errors),
            "summary": {
                "completed": len(results),
                "failed": len(self._errors),
                "bytes": sum(result.size for result in results),
            },
        }

    def _write_to_file(self, output: dict) -> None:
        path = Path(self.output_path)

        # Create parent directories if needed
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.output_path, "w", encoding="utf-8") as f:
            json.dump(output, f, indent=2)
