"""
Unit tests for data parsers.
"""

import unittest
import pandas as pd
import tempfile
import shutil
import json
import os
from pathlib import Path

from data.parsers import (
    GeoDataParser, AudienceWeightParser, OverlapArtifactParser,
    normalize_zip, to_float, is_truthy
)


class TestParserHelpers(unittest.TestCase):
    """Test cases for cell conversion helpers."""

    def test_normalize_zip_pads_short_codes(self):
        self.assertEqual(normalize_zip(501), '00501')
        self.assertEqual(normalize_zip('2134'), '02134')
        self.assertEqual(normalize_zip(10001.0), '10001')

    def test_normalize_zip_rejects_junk(self):
        self.assertIsNone(normalize_zip('ABCDE'))
        self.assertIsNone(normalize_zip('123456'))
        self.assertIsNone(normalize_zip(None))

    def test_to_float(self):
        self.assertEqual(to_float('1,250'), 1250.0)
        self.assertIsNone(to_float(''))
        self.assertIsNone(to_float('n/a'))
        self.assertIsNone(to_float(float('nan')))

    def test_is_truthy(self):
        self.assertTrue(is_truthy('TRUE'))
        self.assertTrue(is_truthy(True))
        self.assertFalse(is_truthy('FALSE'))
        self.assertFalse(is_truthy(None))


class TestGeoDataParser(unittest.TestCase):
    """Test cases for GeoDataParser class."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.test_file = os.path.join(self.temp_dir, 'census.csv')
        self.create_test_census()

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir)

    def create_test_census(self):
        """Create a small census export."""
        census_data = {
            'zip': [10001, 501, 99999, 'bad'],
            'zcta': ['TRUE', 'TRUE', 'FALSE', 'TRUE'],
            'population': [21000, 15000, 0, 100],
            'city': ['New York', 'Holtsville', 'Nowhere', 'Junk'],
            'state_name': ['New York', 'New York', 'Alaska', 'Texas'],
            'state_id': ['NY', 'NY', 'AK', 'TX'],
            'county_name': ['New York', 'Suffolk', '', ''],
            'cbsa_name': ['New York-Newark-Jersey City', 'New York-Newark-Jersey City', '', ''],
            'cbsa_metro': ['TRUE', 'TRUE', 'FALSE', 'FALSE'],
            'age_median': [37.5, 41.0, None, 30],
            'income_household_median': [96000, 82000, None, 50000],
            'education_bachelors': [40.0, 22.0, None, 10],
            'education_graduate': [25.0, 10.0, None, 5],
            'age_20s': [22.0, 12.0, None, 10],
            'family_size': [2.1, 3.1, None, 2.5],
        }
        pd.DataFrame(census_data).to_csv(self.test_file, index=False)

    def test_init_invalid_file(self):
        """Test initialization with non-existent file."""
        with self.assertRaises(FileNotFoundError):
            GeoDataParser('non_existent_census.csv')

    def test_parse_records(self):
        """Test parsing valid census rows."""
        parser = GeoDataParser(self.test_file)
        records, warnings = parser.parse_records()

        by_zip = {record.zip_code: record for record in records}
        self.assertIn('10001', by_zip)
        self.assertIn('00501', by_zip)
        self.assertEqual(len(warnings), 1)

        new_york = by_zip['10001']
        self.assertEqual(new_york.population, 21000)
        self.assertEqual(new_york.state, 'New York')
        self.assertEqual(new_york.metro_area, 'New York-Newark-Jersey City')
        self.assertTrue(new_york.is_metro)
        self.assertEqual(new_york.income_median, 96000)
        self.assertAlmostEqual(new_york.college_educated, 65.0)
        self.assertEqual(new_york.household_size, 2.1)

    def test_zcta_flag_marks_uninhabited(self):
        """Test that rows without the ZCTA flag are marked uninhabited."""
        parser = GeoDataParser(self.test_file)
        records, _ = parser.parse_records()

        by_zip = {record.zip_code: record for record in records}
        self.assertFalse(by_zip['99999'].inhabited)
        self.assertIsNone(by_zip['99999'].income_median)
        self.assertEqual(by_zip['99999'].county, '')

    def test_missing_zip_column(self):
        """Test that a census file without a zip column is rejected."""
        bad_file = os.path.join(self.temp_dir, 'no_zip.csv')
        pd.DataFrame({'population': [100]}).to_csv(bad_file, index=False)

        with self.assertRaises(ValueError):
            GeoDataParser(bad_file).parse_records()

    def test_parse_excel_export(self):
        """Test that Excel census exports are read through openpyxl."""
        excel_file = os.path.join(self.temp_dir, 'census.xlsx')
        pd.DataFrame({
            'zip': [2134],
            'population': [30000],
            'city': ['Boston'],
            'state_name': ['Massachusetts'],
        }).to_excel(excel_file, index=False, engine='openpyxl')

        records, warnings = GeoDataParser(excel_file).parse_records()

        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].zip_code, '02134')
        self.assertTrue(records[0].inhabited)
        self.assertEqual(warnings, [])


class TestAudienceWeightParser(unittest.TestCase):
    """Test cases for AudienceWeightParser class."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.test_file = os.path.join(self.temp_dir, 'audiences.csv')

        audience_data = {
            'sanitizedValue': ['NA_US_10001', 'NA_US_00501', 'NA_CA_M5V', 'NA_US_10001', 'NA_US_02134'],
            'weight': ['1200', '300.5', '50', 'oops', '10'],
            'audienceName': ['Coffee', 'Coffee', 'Coffee', 'Oral Care', ''],
            'seed': ['s1', '', '', '', ''],
            'date': ['2024-01-01', '', '', '', ''],
        }
        pd.DataFrame(audience_data).to_csv(self.test_file, index=False)

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir)

    def test_parse_rows(self):
        """Test parsing keeps only national ZIP rows with valid weights."""
        memberships, warnings = AudienceWeightParser(self.test_file).parse_rows()

        self.assertEqual(len(memberships), 2)
        self.assertEqual(memberships[0].segment, 'Coffee')
        self.assertEqual(memberships[0].zip_code, '10001')
        self.assertEqual(memberships[0].weight, 1200.0)
        self.assertEqual(memberships[0].seed, 's1')
        self.assertEqual(memberships[1].zip_code, '00501')
        self.assertIsNone(memberships[1].seed)

        # invalid weight and missing audience name
        self.assertEqual(len(warnings), 2)

    def test_missing_columns(self):
        """Test that required columns are enforced."""
        bad_file = os.path.join(self.temp_dir, 'bad.csv')
        pd.DataFrame({'sanitizedValue': ['NA_US_10001']}).to_csv(bad_file, index=False)

        with self.assertRaises(ValueError) as context:
            AudienceWeightParser(bad_file).parse_rows()

        self.assertIn('weight', str(context.exception))
        self.assertIn('audienceName', str(context.exception))

    def test_init_invalid_file(self):
        with self.assertRaises(FileNotFoundError):
            AudienceWeightParser('missing_audiences.csv')


class TestOverlapArtifactParser(unittest.TestCase):
    """Test cases for OverlapArtifactParser class."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir)

    def test_parse_json_artifact(self):
        """Test that JSON overlaps are indexed under both segments."""
        artifact_file = os.path.join(self.temp_dir, 'overlaps.json')
        with open(artifact_file, 'w') as f:
            json.dump({
                'metadata': {'totalSegments': 3, 'totalPairs': 2},
                'overlaps': [
                    {'segment1': 'Coffee', 'segment2': 'Oral Care', 'overlapPercentage': 24,
                     'intersection': 48, 'union': 200},
                    {'segment1': 'Coffee', 'segment2': 'Pet Food', 'overlapPercentage': 12.5,
                     'intersection': 25, 'union': 200},
                    {'segment1': 'Broken'},
                ]
            }, f)

        parser = OverlapArtifactParser(artifact_file)
        overlaps = parser.parse_overlaps()

        coffee = overlaps['Coffee']
        self.assertEqual(coffee['Oral Care'].overlap_percentage, 24.0)
        self.assertEqual(coffee['Oral Care'].intersection_size, 48)
        self.assertEqual(list(overlaps['Oral Care']), ['Coffee'])
        self.assertEqual(parser.metadata['totalPairs'], 2)
        self.assertNotIn('Broken', overlaps)

    def test_parse_sectioned_csv(self):
        """Test the section,field,value profile export."""
        artifact_file = os.path.join(self.temp_dir, 'profiles.csv')
        lines = [
            'Section,Field,Value',
            'Audience Profile,Segment Name,Coffee',
            'Behavioral Overlaps,Top Overlap 1,Oral Care (24%)',
            'Behavioral Overlaps,Top Overlap 2,Pet Food (12.5%)',
            'Behavioral Overlaps,Top Overlap 3,[Not available]',
            'Audience Profile,Segment Name,Oral Care',
            'Behavioral Overlaps,Top Overlap 1,Coffee (20%)',
        ]
        Path(artifact_file).write_text('\n'.join(lines) + '\n')

        overlaps = OverlapArtifactParser(artifact_file).parse_overlaps()

        coffee = {other: record.overlap_percentage for other, record in overlaps['Coffee'].items()}
        self.assertEqual(coffee, {'Oral Care': 24.0, 'Pet Food': 12.5})
        self.assertEqual(overlaps['Oral Care']['Coffee'].overlap_percentage, 20.0)

    def test_duplicate_pairs_keep_higher_percentage(self):
        """Test that a pair listed twice keeps its best percentage."""
        artifact_file = os.path.join(self.temp_dir, 'overlaps.json')
        with open(artifact_file, 'w') as f:
            json.dump({
                'overlaps': [
                    {'segment1': 'Coffee', 'segment2': 'Oral Care', 'overlapPercentage': 24},
                    {'segment1': 'Oral Care', 'segment2': 'Coffee', 'overlapPercentage': 31},
                    {'segment1': 'Coffee', 'segment2': 'Oral Care', 'overlapPercentage': 12},
                ]
            }, f)

        overlaps = OverlapArtifactParser(artifact_file).parse_overlaps()

        self.assertEqual(len(overlaps['Coffee']), 1)
        self.assertEqual(overlaps['Coffee']['Oral Care'].overlap_percentage, 31.0)
        self.assertEqual(overlaps['Oral Care']['Coffee'].overlap_percentage, 31.0)

    def test_malformed_json(self):
        artifact_file = os.path.join(self.temp_dir, 'bad.json')
        Path(artifact_file).write_text('{"metadata": {}}')

        with self.assertRaises(ValueError):
            OverlapArtifactParser(artifact_file).parse_overlaps()


if __name__ == '__main__':
    unittest.main()
