#!/usr/bin/env python3
"""Convert a persisted govharvest collection to CSV.

The header is taken from the first record's keys; nested values are written
as JSON.

Usage:
    python scripts/json_to_csv.py result/thutuc.dichvucong.gov.vn/p/home/dvc-tthc-quyet-dinh-cong-bo/raw_result.json
    python scripts/json_to_csv.py INPUT.json --output OUTPUT.csv
"""

import argparse
import logging
import sys
from pathlib import Path

from src.govharvest.errors import ConfigurationError
from src.govharvest.storage import read_collection, write_csv

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> int:
    """Main conversion entrypoint."""
    parser = argparse.ArgumentParser(description="Convert a JSON collection to CSV")
    parser.add_argument(
        "input",
        type=Path,
        help="Path to a *raw_result.json or *detailed_result.json file",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        help="CSV output path (default: input path with .csv suffix)",
    )
    args = parser.parse_args()

    try:
        records = read_collection(args.input)
    except ConfigurationError as exc:
        logger.error(str(exc))
        return 1

    logger.info(f"Loaded {len(records)} records from {args.input}")
    output = args.output or args.input.with_suffix(".csv")
    if write_csv(output, records) is None:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
