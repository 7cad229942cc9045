#!/usr/bin/env python3
"""
Precompute the segment overlap table.

Loads the configured audience and census exports, computes Jaccard overlap
for every segment pair and writes the JSON artifact the report controller
reads for instant overlap lookups.
"""

import argparse
import logging
from typing import List, Optional

from config.settings import config_manager
from data.manager import DataManager
from data.exceptions import DataUnavailable
from business_logic.overlap_engine import OverlapEngine, PRECOMPUTE_TOP_ZIPS

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    """Run the overlap precomputation. Returns a process exit code."""
    config = config_manager.load_config()

    parser = argparse.ArgumentParser(description="Precompute pairwise audience segment overlaps.")
    parser.add_argument("--audience", default=config.audience_data_path,
                        help="Audience weight export (CSV or Excel)")
    parser.add_argument("--geo", default=config.geo_data_path,
                        help="Census ZIP export (CSV or Excel)")
    parser.add_argument("--output", default=config.overlap_artifact_path,
                        help="Destination for the overlap JSON artifact")
    parser.add_argument("--top-n", type=int, default=PRECOMPUTE_TOP_ZIPS,
                        help="ZIP codes per segment to compare")
    args = parser.parse_args(argv)

    print("=== Segment Overlap Precomputation ===\n")

    manager = DataManager(geo_data_path=args.geo, audience_data_path=args.audience, cache_dir=config.cache_dir)

    try:
        segment_rows = manager.load_audience_data()
        manager.load_geo_data()
    except DataUnavailable as e:
        logger.error(f"Cannot precompute overlaps: {str(e)}")
        print(f"   ✗ {str(e)}")
        return 1

    print(f"   ✓ Loaded {segment_rows} memberships across {len(manager.audience_index)} segments")

    engine = OverlapEngine(manager.audience_index, manager.geo_store)
    metadata = engine.save_overlap_table(args.output, args.top_n)

    print(f"   ✓ Computed {metadata['totalPairs']} pairs in {metadata['calculationTimeSeconds']}s")
    print(f"   ✓ Saved overlap table to {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
