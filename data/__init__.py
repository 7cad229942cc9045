# Data layer for the audience insights engine

from .exceptions import AudienceEngineError, DataUnavailable, MissingRecord, InsufficientSample
from .parsers import GeoDataParser, AudienceWeightParser, OverlapArtifactParser
from .geo_store import GeoRecordStore, GeoQueryFilters
from .audience_index import AudienceMembershipIndex
from .baseline_store import BaselineStore
from .manager import DataManager

__all__ = [
    'AudienceEngineError', 'DataUnavailable', 'MissingRecord', 'InsufficientSample',
    'GeoDataParser', 'AudienceWeightParser', 'OverlapArtifactParser',
    'GeoRecordStore', 'GeoQueryFilters', 'AudienceMembershipIndex',
    'BaselineStore', 'DataManager'
]
