"""
Durable JSON storage for the current segment baseline snapshot.
"""

import logging
import json
from pathlib import Path
from typing import Optional

from models.data_models import SegmentBaseline

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class BaselineStore:
    """Reads and writes the single current SegmentBaseline as JSON on disk."""

    def __init__(self, cache_dir: str = ".cache", file_name: str = "segment_baseline.json"):
        """
        Initialize the store.

        Args:
            cache_dir: Directory holding the baseline file
            file_name: Name of the baseline file
        """
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.file_path = self.cache_dir / file_name

    def save(self, baseline: SegmentBaseline) -> bool:
        """
        Persist a baseline snapshot, replacing any previous one.

        Args:
            baseline: Baseline to save

        Returns:
            True if the snapshot was written
        """
        try:
            temp_path = self.file_path.with_suffix('.tmp')
            with open(temp_path, 'w') as f:
                json.dump(baseline.to_dict(), f, indent=2)
            temp_path.replace(self.file_path)

            logger.info(f"Saved segment baseline to {self.file_path}")
            return True

        except Exception as e:
            logger.error(f"Error saving segment baseline: {str(e)}")
            return False

    def load(self) -> Optional[SegmentBaseline]:
        """
        Load the stored baseline snapshot.

        Returns:
            The stored baseline, or None if absent or unreadable
        """
        if not self.file_path.exists():
            return None

        try:
            with open(self.file_path, 'r') as f:
                data = json.load(f)

            baseline = SegmentBaseline.from_dict(data)
            logger.info(f"Loaded segment baseline from {self.file_path}")
            return baseline

        except Exception as e:
            logger.error(f"Error loading segment baseline: {str(e)}")
            return None

    def clear(self):
        """Remove the stored snapshot."""
        try:
            if self.file_path.exists():
                self.file_path.unlink()
                logger.info("Segment baseline cleared")
        except Exception as e:
            logger.error(f"Error clearing segment baseline: {str(e)}")
