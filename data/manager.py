"""
Centralized data management for census records, audience memberships and overlap artifacts.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Any
from dataclasses import dataclass
import hashlib

from models.data_models import OverlapRecord
from .parsers import OverlapArtifactParser
from .geo_store import GeoRecordStore
from .audience_index import AudienceMembershipIndex
from .baseline_store import BaselineStore

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@dataclass
class SourceEntry:
    """Tracks a loaded source file for change detection."""
    file_path: str
    file_hash: str
    record_count: int
    last_loaded: datetime


class DataManager:
    """
    Owns the constructed-once data repositories.

    The geo store and audience index are built here and passed by reference
    to every analytics component. Source files are hashed so ``reload()``
    only re-parses what changed.
    """

    def __init__(self, geo_data_path: Optional[str] = None, audience_data_path: Optional[str] = None,
                 overlap_artifact_path: Optional[str] = None, cache_dir: str = ".cache"):
        """
        Initialize the DataManager.

        Args:
            geo_data_path: Census export path
            audience_data_path: Audience weight export path
            overlap_artifact_path: Optional precomputed overlap artifact path
            cache_dir: Directory for persisted baseline snapshots
        """
        self.geo_data_path = geo_data_path
        self.audience_data_path = audience_data_path
        self.overlap_artifact_path = overlap_artifact_path
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        self.geo_store = GeoRecordStore(geo_data_path)
        self.audience_index = AudienceMembershipIndex(audience_data_path)
        self.baseline_store = BaselineStore(str(self.cache_dir))
        self.overlaps: Optional[Dict[str, Dict[str, OverlapRecord]]] = None

        self._sources: Dict[str, SourceEntry] = {}

    @classmethod
    def from_config(cls) -> 'DataManager':
        """Build a DataManager from the application configuration."""
        from config.settings import config_manager

        config = config_manager.load_config()
        return cls(
            geo_data_path=config.geo_data_path,
            audience_data_path=config.audience_data_path,
            overlap_artifact_path=config.overlap_artifact_path,
            cache_dir=config.cache_dir
        )

    def _get_file_hash(self, file_path: str) -> str:
        """
        Calculate MD5 hash of a file for change detection.

        Args:
            file_path: Path to the file

        Returns:
            MD5 hash string, or "" if the file cannot be read
        """
        try:
            with open(file_path, 'rb') as f:
                file_hash = hashlib.md5()
                for chunk in iter(lambda: f.read(4096), b""):
                    file_hash.update(chunk)
                return file_hash.hexdigest()
        except Exception as e:
            logger.error(f"Error calculating file hash for {file_path}: {str(e)}")
            return ""

    def _track_source(self, source_type: str, file_path: str, record_count: int):
        self._sources[source_type] = SourceEntry(
            file_path=file_path,
            file_hash=self._get_file_hash(file_path),
            record_count=record_count,
            last_loaded=datetime.now()
        )

    def _has_changed(self, source_type: str, file_path: Optional[str]) -> bool:
        entry = self._sources.get(source_type)
        if entry is None or not file_path:
            return True
        if entry.file_path != file_path:
            return True
        return self._get_file_hash(file_path) != entry.file_hash

    def load_geo_data(self, file_path: Optional[str] = None) -> int:
        """
        Load census records into the geo store.

        Args:
            file_path: Census export path. Uses the configured path if None.

        Returns:
            Number of inhabited records loaded

        Raises:
            DataUnavailable: If the census source is missing or empty
        """
        if file_path is not None:
            self.geo_data_path = file_path
            self.geo_store.file_path = file_path

        logger.info(f"Loading census data from: {self.geo_data_path}")
        count = self.geo_store.load()
        self._track_source('geo', self.geo_data_path, count)
        return count

    def load_audience_data(self, file_path: Optional[str] = None) -> int:
        """
        Load audience memberships into the audience index.

        Args:
            file_path: Audience export path. Uses the configured path if None.

        Returns:
            Number of unique memberships loaded

        Raises:
            DataUnavailable: If the audience source is missing or empty
        """
        if file_path is not None:
            self.audience_data_path = file_path
            self.audience_index.file_path = file_path

        logger.info(f"Loading audience data from: {self.audience_data_path}")
        count = self.audience_index.load()
        self._track_source('audience', self.audience_data_path, count)
        return count

    def load_overlap_artifact(self, file_path: Optional[str] = None) -> Optional[Dict[str, Dict[str, OverlapRecord]]]:
        """
        Load the optional precomputed overlap artifact.

        A missing or malformed artifact is not an error; the overlap engine
        falls back to sampling.

        Args:
            file_path: Artifact path. Uses the configured path if None.

        Returns:
            Overlap lookup table, or None if unavailable
        """
        if file_path is not None:
            self.overlap_artifact_path = file_path

        if not self.overlap_artifact_path or not os.path.exists(self.overlap_artifact_path):
            logger.info("No precomputed overlap artifact available; overlap sampling will be used")
            self.overlaps = None
            return None

        try:
            parser = OverlapArtifactParser(self.overlap_artifact_path)
            self.overlaps = parser.parse_overlaps()
            self._track_source('overlaps', self.overlap_artifact_path, len(self.overlaps))
        except Exception as e:
            logger.warning(f"Could not load overlap artifact: {str(e)}")
            self.overlaps = None

        return self.overlaps

    def load_all(self) -> Dict[str, Any]:
        """
        Load every configured source.

        Returns:
            Dictionary of record counts per source

        Raises:
            DataUnavailable: If the census or audience source is unavailable
        """
        geo_count = self.load_geo_data()
        audience_count = self.load_audience_data()
        overlaps = self.load_overlap_artifact()

        return {
            'geo_records': geo_count,
            'audience_memberships': audience_count,
            'segments': len(self.audience_index),
            'precomputed_overlaps': overlaps is not None,
        }

    def reload(self) -> Dict[str, bool]:
        """
        Re-parse any source whose file changed since it was loaded.

        Returns:
            Dictionary of source type -> whether it was reloaded
        """
        reloaded = {'geo': False, 'audience': False, 'overlaps': False}

        if self._has_changed('geo', self.geo_data_path):
            self.load_geo_data()
            reloaded['geo'] = True

        if self._has_changed('audience', self.audience_data_path):
            self.load_audience_data()
            reloaded['audience'] = True

        if self.overlap_artifact_path and os.path.exists(self.overlap_artifact_path):
            if self._has_changed('overlaps', self.overlap_artifact_path):
                self.load_overlap_artifact()
                reloaded['overlaps'] = True
        elif self.overlaps is not None:
            # artifact removed since the last load
            self.overlaps = None
            self._sources.pop('overlaps', None)
            reloaded['overlaps'] = True

        logger.info(f"Reload complete: {reloaded}")
        return reloaded

    def validate_data_freshness(self) -> Dict[str, Any]:
        """
        Check that each source is loaded and unchanged on disk.

        Returns:
            Dictionary containing per-source status and an overall status
        """
        result: Dict[str, Any] = {}

        for source_type, path in (('geo', self.geo_data_path), ('audience', self.audience_data_path)):
            status = {
                'status': 'unknown',
                'file_exists': bool(path) and os.path.exists(path),
                'last_loaded': None,
                'record_count': 0,
            }
            entry = self._sources.get(source_type)

            if not status['file_exists']:
                status['status'] = 'missing'
            elif entry is None:
                status['status'] = 'not_loaded'
            else:
                status['last_loaded'] = entry.last_loaded.isoformat()
                status['record_count'] = entry.record_count
                status['status'] = 'stale' if self._has_changed(source_type, path) else 'fresh'

            result[source_type] = status

        statuses = {result['geo']['status'], result['audience']['status']}
        if statuses == {'fresh'}:
            result['overall_status'] = 'ready'
        elif statuses <= {'fresh', 'stale'}:
            result['overall_status'] = 'needs_refresh'
        else:
            result['overall_status'] = 'incomplete'

        result['precomputed_overlaps'] = self.overlaps is not None
        return result

    def clear_cache(self):
        """Remove the persisted baseline snapshot and forget loaded sources."""
        self.baseline_store.clear()
        self._sources = {}
        logger.info("Data manager caches cleared")

    def get_cache_stats(self) -> Dict[str, Any]:
        """
        Get statistics about loaded data.

        Returns:
            Dictionary containing source and cache statistics
        """
        stats: Dict[str, Any] = {
            'sources': {
                source_type: {
                    'file_path': entry.file_path,
                    'record_count': entry.record_count,
                    'last_loaded': entry.last_loaded.isoformat(),
                }
                for source_type, entry in self._sources.items()
            },
            'geo_records': len(self.geo_store),
            'segments': len(self.audience_index),
            'cache_dir_size': 0,
        }

        try:
            if self.cache_dir.exists():
                stats['cache_dir_size'] = sum(f.stat().st_size for f in self.cache_dir.glob("*") if f.is_file())
        except Exception as e:
            logger.error(f"Error getting cache stats: {str(e)}")

        return stats
