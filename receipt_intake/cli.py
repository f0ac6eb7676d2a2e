"""Command-line interface for receipt extraction and CSV export.

Provides subcommands for extracting a single receipt photo to JSON and
for processing a folder of photos into a CSV summary.
"""

import argparse
import csv
import json
import mimetypes
import sys
from pathlib import Path

from receipt_intake.pipeline import ExtractionResult, ReceiptPipeline
from receipt_intake.preprocessing.normalizer import RawImage
from receipt_intake.utils.config import load_config
from receipt_intake.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

_SUPPORTED_EXTENSIONS = ("*.jpg", "*.jpeg", "*.png", "*.webp", "*.tiff", "*.tif")
_CSV_COLUMNS = [
    "filename",
    "status",
    "amount",
    "date",
    "merchant_name",
    "location",
    "confidence",
    "byte_size",
    "degraded_stages",
    "error",
]


def _find_images(input_dir: Path) -> list[Path]:
    """Find all supported receipt images in a directory.

    Args:
        input_dir: Directory to scan.

    Returns:
        Sorted list of image paths.
    """
    files: list[Path] = []
    for ext in _SUPPORTED_EXTENSIONS:
        files.extend(input_dir.glob(ext))
        files.extend(input_dir.glob(ext.upper()))
    return sorted(set(files))


def _read_raw_image(file_path: Path) -> RawImage:
    mime_type, _ = mimetypes.guess_type(file_path.name)
    return RawImage(data=file_path.read_bytes(), mime_type=mime_type or "image/jpeg")


def _summary_row(filename: str, result: ExtractionResult) -> dict[str, object]:
    return {
        "filename": filename,
        "status": "success",
        "amount": str(result.amount) if result.amount is not None else "",
        "date": result.date or "",
        "merchant_name": result.merchant_name or "",
        "location": result.location_name or "",
        "confidence": round(result.recognition.confidence, 1),
        "byte_size": result.image.byte_size,
        "degraded_stages": ";".join(result.degraded_stages),
        "error": "",
    }


def process_folder(
    input_dir: Path,
    output_csv: Path,
    verbose: bool = False,
) -> dict[str, int]:
    """Process all receipt photos in a folder and export a CSV summary.

    Args:
        input_dir: Directory containing receipt photos.
        output_csv: Path for the output CSV file.
        verbose: Whether to print per-file progress.

    Returns:
        Summary dict with total, successful, and failed counts.
    """
    pipeline = ReceiptPipeline(load_config())

    files = _find_images(input_dir)
    if not files:
        logger.warning("No receipt images found in %s", input_dir)
        return {"total": 0, "successful": 0, "failed": 0}

    logger.info("Found %d receipt images to process", len(files))

    rows: list[dict[str, object]] = []
    successful = 0
    failed = 0

    for i, file_path in enumerate(files, 1):
        if verbose:
            print(f"Processing [{i}/{len(files)}]: {file_path.name}")

        try:
            result = pipeline.process_sync(_read_raw_image(file_path))
        except Exception as exc:
            logger.error("Failed to process %s: %s", file_path.name, exc)
            rows.append({"filename": file_path.name, "status": "failed", "error": str(exc)})
            failed += 1
            continue

        rows.append(_summary_row(file_path.name, result))
        successful += 1

    _write_csv(rows, output_csv)
    logger.info("Results written to %s", output_csv)

    summary = {"total": len(files), "successful": successful, "failed": failed}
    _print_summary(summary, output_csv)
    return summary


def _write_csv(rows: list[dict[str, object]], output_path: Path) -> None:
    """Write receipt summary rows to a CSV file.

    Args:
        rows: List of row dictionaries.
        output_path: Path for the output CSV file.
    """
    if not rows:
        return

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=_CSV_COLUMNS, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow({col: row.get(col, "") for col in _CSV_COLUMNS})


def _print_summary(summary: dict[str, int], output_csv: Path) -> None:
    """Print a batch processing summary to stdout.

    Args:
        summary: Counts of total, successful, and failed receipts.
        output_csv: Path to the output CSV.
    """
    print(f"\n{'=' * 50}")
    print("Batch Processing Complete")
    print(f"{'=' * 50}")
    print(f"Total:      {summary['total']}")
    print(f"Successful: {summary['successful']}")
    print(f"Failed:     {summary['failed']}")
    print(f"Output:     {output_csv}")


def extract_single(file_path: Path, save_image: Path | None = None) -> dict[str, object]:
    """Process a single receipt photo and return structured results.

    Args:
        file_path: Path to the receipt photo.
        save_image: Where to write the normalized image, if anywhere.

    Returns:
        Dictionary with the filename and the extraction result.
    """
    pipeline = ReceiptPipeline(
        load_config(),
        progress_callback=lambda stage: logger.info("Stage: %s", stage.value),
    )
    result = pipeline.process_sync(_read_raw_image(file_path))

    if save_image is not None:
        save_image.parent.mkdir(parents=True, exist_ok=True)
        save_image.write_bytes(result.image.data)
        logger.info("Normalized image written to %s", save_image)

    return {"filename": file_path.name, **result.to_dict()}


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate command.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    parser = argparse.ArgumentParser(
        description="Receipt Intake",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    batch_parser = subparsers.add_parser("batch", help="Process a folder of receipt photos")
    batch_parser.add_argument("input_dir", type=Path, help="Input directory with photos")
    batch_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("results.csv"),
        help="Output CSV file (default: results.csv)",
    )
    batch_parser.add_argument(
        "-v", "--verbose", action="store_true", help="Verbose output"
    )

    single_parser = subparsers.add_parser("extract", help="Process a single receipt photo")
    single_parser.add_argument("file", type=Path, help="Receipt photo to process")
    single_parser.add_argument("-o", "--output", type=Path, help="Output JSON file")
    single_parser.add_argument(
        "--save-image", type=Path, help="Write the normalized image to this path"
    )

    args = parser.parse_args(argv)

    setup_logging(load_config().log_level)

    if args.command == "batch":
        if not args.input_dir.is_dir():
            print(f"Error: {args.input_dir} is not a directory", file=sys.stderr)
            sys.exit(1)
        process_folder(args.input_dir, args.output, args.verbose)
    elif args.command == "extract":
        if not args.file.exists():
            print(f"Error: {args.file} does not exist", file=sys.stderr)
            sys.exit(1)
        result = extract_single(args.file, args.save_image)
        output_str = json.dumps(result, indent=2)
        if args.output:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            args.output.write_text(output_str)
            print(f"Output written to {args.output}")
        else:
            print(output_str)
    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
