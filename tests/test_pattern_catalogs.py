#!/usr/bin/env python3
"""Unit tests for pattern_catalogs."""

import sys
from pathlib import Path
from unittest import TestCase, main

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
import pattern_catalogs as pc


class TestCatalogs(TestCase):
    def test_catalog_sizes(self):
        self.assertEqual(pc.catalog_sizes(), {
            "GoF": 23,
            "PoEAA": 51,
            "EIP": 65,
            "Cloud": 43,
            "DDD": 19,
            "SOLID/GRASP": 14,
        })

    def test_categories_match_declared(self):
        for entry in pc.load_catalog():
            self.assertIn(entry.category, pc.CATALOG_CATEGORIES[entry.source_catalog])

    def test_loaded_once(self):
        self.assertIs(pc.load_catalog(), pc.load_catalog())

    def test_names_unique_per_catalog(self):
        seen = set()
        for entry in pc.load_catalog():
            key = (entry.source_catalog, entry.name)
            self.assertNotIn(key, seen)
            seen.add(key)

    def test_entries_start_undocumented(self):
        self.assertFalse(any(e.documented for e in pc.load_catalog()))


if __name__ == "__main__":
    main()
