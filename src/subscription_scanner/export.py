"""Export sync results to CSV or JSON."""

import csv
import json

from .models import SyncResult

FIELDNAMES = ["account_id", "message_id", "service_name", "amount", "date", "confidence"]


def export_sync(sync_result: SyncResult, format: str, output_path: str) -> None:
    """Export the candidates of a sync to a file.

    Args:
        sync_result: The sync result to export.
        format: Output format, either 'csv' or 'json'.
        output_path: Path to write the output file.
    """
    rows = [
        {
            "account_id": sync_result.account_id,
            "message_id": candidate.message_id,
            "service_name": candidate.service_name,
            "amount": candidate.amount,
            "date": candidate.date,
            "confidence": candidate.confidence,
        }
        for candidate in sync_result.candidates
    ]

    if format == "csv":
        with open(output_path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=FIELDNAMES)
            writer.writeheader()
            writer.writerows(rows)
    elif format == "json":
        with open(output_path, "w") as f:
            json.dump(rows, f, indent=2)
    else:
        raise ValueError(f"Unsupported export format: {format}")

    print(f"Results saved to {output_path}")
