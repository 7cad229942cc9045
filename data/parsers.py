"""
Data parsers for census exports, audience weight exports and overlap artifacts.
"""

import pandas as pd
import logging
import json
import re
from typing import Dict, List, Optional, Any, Tuple
from pathlib import Path

from models.data_models import GeoRecord, AudienceMembership, OverlapRecord

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# Census export column -> GeoRecord attribute
GEO_FLOAT_COLUMNS = {
    'lat': 'latitude',
    'lng': 'longitude',
    'age_median': 'age_median',
    'race_white': 'white',
    'race_black': 'black',
    'race_asian': 'asian',
    'hispanic': 'hispanic',
    'family_size': 'household_size',
    'self_employed': 'self_employed',
    'married': 'married',
    'family_dual_income': 'dual_income',
    'commute_time': 'commute_time',
    'charitable_givers': 'charitable_givers',
    'education_stem_degree': 'stem_degree',
    'veteran': 'veteran',
    'rent_burden': 'rent_burden',
    'income_household_median': 'income_median',
    'income_household_six_figure': 'six_figure_pct',
    'poverty': 'poverty_rate',
    'unemployment_rate': 'unemployment_rate',
    'home_value': 'home_value',
    'rent_median': 'rent_median',
    'home_ownership': 'home_ownership',
}

# Shares that default to zero rather than "unknown"
GEO_SHARE_COLUMNS = {
    'age_under_10': 'age_under_10',
    'age_10_to_19': 'age_10_to_19',
    'age_20s': 'age_20s',
    'age_30s': 'age_30s',
    'age_40s': 'age_40s',
    'age_50s': 'age_50s',
    'age_60s': 'age_60s',
    'age_70s': 'age_70s',
    'age_over_80': 'age_over_80',
    'education_bachelors': 'education_bachelors',
    'education_graduate': 'education_graduate',
}

GEO_TEXT_COLUMNS = {
    'city': 'city',
    'state_name': 'state',
    'state_id': 'state_id',
    'county_name': 'county',
    'cbsa_name': 'metro_area',
}

NATIONAL_ZIP_PATTERN = re.compile(r'^NA_US_(\d{5})$')
OVERLAP_VALUE_PATTERN = re.compile(r'^(.*?)\s*\(\s*([-\d.]+)\s*%\s*\)')

TRUE_VALUES = {'TRUE', 'T', 'YES', 'Y', '1'}


def read_tabular(file_path: Path, as_text: bool = False) -> pd.DataFrame:
    """
    Read a CSV or Excel file into a DataFrame.

    Args:
        file_path: Path to a .csv, .xlsx or .xls file
        as_text: Read every column as a string

    Returns:
        DataFrame with the file contents
    """
    dtype = str if as_text else None
    suffix = file_path.suffix.lower()

    if suffix in ('.xlsx', '.xls'):
        return pd.read_excel(file_path, dtype=dtype)
    return pd.read_csv(file_path, dtype=dtype, keep_default_na=not as_text)


def to_float(value: Any) -> Optional[float]:
    """Convert a cell to float, returning None for blanks and junk."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip().replace(',', '')
        if value == '':
            return None
    try:
        number = float(value)
    except (ValueError, TypeError):
        return None
    if pd.isna(number):
        return None
    return number


def is_truthy(value: Any) -> bool:
    """Interpret census-style boolean flags ("TRUE", 1, True)."""
    if isinstance(value, bool):
        return value
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return False
    return str(value).strip().upper() in TRUE_VALUES


def clean_text(value: Any) -> str:
    """Strip a text cell, treating blanks and NaN as empty."""
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ''
    return str(value).strip()


def normalize_zip(value: Any) -> Optional[str]:
    """Zero-pad a ZIP code to 5 digits."""
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    text = str(value).strip()
    if text.endswith('.0'):
        text = text[:-2]
    if not text.isdigit() or len(text) > 5:
        return None
    return text.zfill(5)


class GeoDataParser:
    """
    Parser for per-ZIP census demographic exports.

    Rows whose ZCTA flag is not set are returned with ``inhabited=False``
    so the store can drop them; malformed rows are reported as warnings.
    """

    def __init__(self, file_path: str):
        """
        Initialize the parser with a census export path.

        Args:
            file_path: Path to the census CSV or Excel file
        """
        self.file_path = Path(file_path)
        self.warnings: List[str] = []

        if not self.file_path.exists():
            raise FileNotFoundError(f"Census data file not found: {file_path}")

    def parse_records(self) -> Tuple[List[GeoRecord], List[str]]:
        """
        Parse every row of the census export.

        Returns:
            Tuple of (list of GeoRecord objects, list of warning messages)

        Raises:
            ValueError: If the file cannot be read or has no zip column
        """
        try:
            df = read_tabular(self.file_path)
        except Exception as e:
            logger.error(f"Error reading census data: {str(e)}")
            raise ValueError(f"Failed to read census data: {str(e)}")

        if 'zip' not in df.columns:
            raise ValueError(f"Census data file is missing the 'zip' column: {self.file_path}")

        has_zcta_flag = 'zcta' in df.columns
        records = []
        self.warnings = []

        for idx, row in df.iterrows():
            zip_code = normalize_zip(row.get('zip'))
            if zip_code is None:
                self.warnings.append(f"Row {idx + 2}: invalid zip code {row.get('zip')!r}")
                continue

            population = to_float(row.get('population'))
            if population is None or population < 0:
                self.warnings.append(f"Row {idx + 2}: invalid population for {zip_code}")
                continue

            values: Dict[str, Any] = {
                'zip_code': zip_code,
                'population': int(population),
                'inhabited': is_truthy(row.get('zcta')) if has_zcta_flag else True,
                'is_metro': is_truthy(row.get('cbsa_metro')),
            }

            for column, attribute in GEO_TEXT_COLUMNS.items():
                values[attribute] = clean_text(row.get(column))

            for column, attribute in GEO_FLOAT_COLUMNS.items():
                values[attribute] = to_float(row.get(column))

            for column, attribute in GEO_SHARE_COLUMNS.items():
                values[attribute] = to_float(row.get(column)) or 0.0

            records.append(GeoRecord(**values))

        if self.warnings:
            logger.warning(f"Skipped {len(self.warnings)} malformed census rows in {self.file_path.name}")
        logger.info(f"Parsed {len(records)} census records from {self.file_path.name}")
        return records, list(self.warnings)


class AudienceWeightParser:
    """
    Parser for commerce audience weight exports.

    Each row ties an audience segment to a geography code with a weight.
    Only the national ZIP namespace (``NA_US_<zip>``) is kept.
    """

    def __init__(self, file_path: str):
        """
        Initialize the parser with an audience export path.

        Args:
            file_path: Path to the audience CSV or Excel file
        """
        self.file_path = Path(file_path)
        self.warnings: List[str] = []

        if not self.file_path.exists():
            raise FileNotFoundError(f"Audience data file not found: {file_path}")

    def parse_rows(self) -> Tuple[List[AudienceMembership], List[str]]:
        """
        Parse audience membership rows.

        Returns:
            Tuple of (list of AudienceMembership objects, list of warning messages)

        Raises:
            ValueError: If the file cannot be read or required columns are missing
        """
        try:
            df = read_tabular(self.file_path, as_text=True)
        except Exception as e:
            logger.error(f"Error reading audience data: {str(e)}")
            raise ValueError(f"Failed to read audience data: {str(e)}")

        missing = [col for col in ('sanitizedValue', 'weight', 'audienceName') if col not in df.columns]
        if missing:
            raise ValueError(f"Audience data file is missing columns: {', '.join(missing)}")

        memberships = []
        skipped_namespace = 0
        self.warnings = []

        for idx, row in df.iterrows():
            match = NATIONAL_ZIP_PATTERN.match(clean_text(row.get('sanitizedValue')))
            if not match:
                skipped_namespace += 1
                continue

            segment = clean_text(row.get('audienceName'))
            if not segment:
                self.warnings.append(f"Row {idx + 2}: missing audience name")
                continue

            weight = to_float(row.get('weight'))
            if weight is None or weight < 0:
                self.warnings.append(f"Row {idx + 2}: invalid weight {row.get('weight')!r} for {segment}")
                continue

            memberships.append(AudienceMembership(
                segment=segment,
                zip_code=match.group(1),
                weight=weight,
                seed=clean_text(row.get('seed')) or None,
                date=clean_text(row.get('date')) or None,
                order=len(memberships)
            ))

        if skipped_namespace:
            logger.info(f"Ignored {skipped_namespace} rows outside the national ZIP namespace")
        if self.warnings:
            logger.warning(f"Skipped {len(self.warnings)} malformed audience rows in {self.file_path.name}")
        logger.info(f"Parsed {len(memberships)} audience membership rows from {self.file_path.name}")
        return memberships, list(self.warnings)


class OverlapArtifactParser:
    """
    Parser for precomputed segment overlap artifacts.

    Supports the JSON artifact written by ``precalculate_overlaps.py`` and the
    sectioned ``section,field,value`` CSV export of audience profiles.
    """

    def __init__(self, file_path: str):
        """
        Initialize the parser with an overlap artifact path.

        Args:
            file_path: Path to the JSON or CSV overlap artifact
        """
        self.file_path = Path(file_path)
        self.metadata: Dict[str, Any] = {}

        if not self.file_path.exists():
            raise FileNotFoundError(f"Overlap artifact not found: {file_path}")

    def parse_overlaps(self) -> Dict[str, Dict[str, OverlapRecord]]:
        """
        Parse overlaps into a lookup keyed by segment name.

        Returns:
            Dictionary mapping segment -> other segment -> OverlapRecord

        Raises:
            ValueError: If the artifact is malformed
        """
        try:
            if self.file_path.suffix.lower() == '.json':
                overlaps = self._parse_json()
            else:
                overlaps = self._parse_sectioned_csv()
        except ValueError:
            raise
        except Exception as e:
            logger.error(f"Error parsing overlap artifact: {str(e)}")
            raise ValueError(f"Failed to parse overlap artifact: {str(e)}")

        total = sum(len(records) for records in overlaps.values())
        logger.info(f"Loaded {total} overlap entries for {len(overlaps)} segments")
        return overlaps

    def _parse_json(self) -> Dict[str, Dict[str, OverlapRecord]]:
        with open(self.file_path, 'r') as f:
            payload = json.load(f)

        if not isinstance(payload, dict) or not isinstance(payload.get('overlaps'), list):
            raise ValueError("Overlap artifact is missing the 'overlaps' list")

        self.metadata = payload.get('metadata', {})
        overlaps: Dict[str, Dict[str, OverlapRecord]] = {}

        for entry in payload['overlaps']:
            segment_a = entry.get('segment1')
            segment_b = entry.get('segment2')
            percentage = to_float(entry.get('overlapPercentage'))
            if not segment_a or not segment_b or percentage is None:
                continue

            intersection = entry.get('intersection')
            union = entry.get('union')
            self._add_overlap(overlaps, segment_a, segment_b, percentage, intersection, union)
            self._add_overlap(overlaps, segment_b, segment_a, percentage, intersection, union)

        return overlaps

    def _parse_sectioned_csv(self) -> Dict[str, Dict[str, OverlapRecord]]:
        df = pd.read_csv(
            self.file_path,
            header=None,
            names=['section', 'field', 'value'],
            dtype=str,
            keep_default_na=False,
            on_bad_lines='skip'
        )

        overlaps: Dict[str, Dict[str, OverlapRecord]] = {}
        current_segment = None

        for _, row in df.iterrows():
            field_name = row['field'].strip()
            value = row['value'].strip()

            if field_name == 'Segment Name' and value and not value.startswith('['):
                current_segment = value
                overlaps.setdefault(current_segment, {})
                continue

            if not current_segment or not field_name.startswith('Top Overlap'):
                continue

            match = OVERLAP_VALUE_PATTERN.match(value)
            if not match:
                continue

            name = match.group(1).strip()
            percentage = to_float(match.group(2))
            if not name or name.startswith('[') or percentage is None:
                continue

            self._add_overlap(overlaps, current_segment, name, percentage)

        return overlaps

    @staticmethod
    def _add_overlap(overlaps: Dict[str, Dict[str, OverlapRecord]], segment: str, other: str,
                     percentage: float, intersection: Optional[int] = None,
                     union: Optional[int] = None):
        """Add an overlap entry, keeping the higher percentage on duplicates."""
        records = overlaps.setdefault(segment, {})
        existing = records.get(other)
        if existing is not None:
            if percentage > existing.overlap_percentage:
                existing.overlap_percentage = percentage
            return

        records[other] = OverlapRecord(
            segment=segment,
            other_segment=other,
            overlap_percentage=percentage,
            intersection_size=intersection,
            union_size=union
        )
