"""
Test catalog for the LabFlow workflow

Analytes (with their default reference ranges and panic values) and the test
groups they are ordered in. The catalog is process-wide reference data:
initialize() seeds the record store once and loads the cache, and calling it
again is harmless.
"""

import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from ..core.exceptions import ParseFailure
from ..workflow.flags import Flag, classify_with_criticals, parse_reference_range_strict
from ..workflow.result_state import ResultValue
from .record_store import RecordStore, Row

logger = logging.getLogger(__name__)


SEED_ANALYTES = (
    {"name": "Hemoglobin", "unit": "g/dL", "reference_range": "M: 13.5-17.5, F: 12.0-16.0",
     "low_critical": "7.0", "high_critical": "20.0", "category": "Hematology"},
    {"name": "WBC Count", "unit": "/μL", "reference_range": "4,000-11,000",
     "low_critical": "2,000", "high_critical": "30,000", "category": "Hematology"},
    {"name": "Platelet Count", "unit": "/μL", "reference_range": "150,000-450,000",
     "low_critical": "50,000", "high_critical": "1,000,000", "category": "Hematology"},
    {"name": "SGOT (AST)", "unit": "U/L", "reference_range": "10-40",
     "low_critical": None, "high_critical": "200", "category": "Biochemistry"},
    {"name": "SGPT (ALT)", "unit": "U/L", "reference_range": "7-56",
     "low_critical": None, "high_critical": "200", "category": "Biochemistry"},
    {"name": "Total Cholesterol", "unit": "mg/dL", "reference_range": "<200",
     "low_critical": None, "high_critical": "300", "category": "Biochemistry"},
    {"name": "HDL Cholesterol", "unit": "mg/dL", "reference_range": "M: >40, F: >50",
     "low_critical": "20", "high_critical": None, "category": "Biochemistry"},
    {"name": "LDL Cholesterol", "unit": "mg/dL", "reference_range": "<100",
     "low_critical": None, "high_critical": "190", "category": "Biochemistry"},
)

SEED_TEST_GROUPS = (
    {"code": "CBC", "name": "Complete Blood Count (CBC)", "price": 350.0, "sample_type": "EDTA Blood",
     "analytes": ["Hemoglobin", "WBC Count", "Platelet Count"]},
    {"code": "LFT", "name": "Liver Function Test (LFT)", "price": 450.0, "sample_type": "Serum",
     "analytes": ["SGOT (AST)", "SGPT (ALT)"]},
    {"code": "LIPID", "name": "Lipid Profile", "price": 500.0, "sample_type": "Serum",
     "analytes": ["Total Cholesterol", "HDL Cholesterol", "LDL Cholesterol"]},
)


class TestCatalog:
    """Cached view of analytes and test groups"""

    __test__ = False

    def __init__(self):
        self.initialized = False
        self._analytes: Dict[str, Row] = {}
        self._groups: Dict[str, Row] = {}

    def initialize(self, store: RecordStore, seed: bool = True) -> "TestCatalog":
        """Seed missing catalog rows (when seed is set) and load the cache"""
        if seed:
            with store.transaction():
                added = self._seed(store)
            if added:
                logger.info(f"Catalog seeded with {added} new entries")
        self.load(store)
        self.initialized = True
        return self

    def _seed(self, store: RecordStore) -> int:
        added = 0
        for analyte in SEED_ANALYTES:
            if store.count("analytes", {"name": analyte["name"]}):
                continue
            try:
                parse_reference_range_strict(analyte["reference_range"])
            except ParseFailure as e:
                logger.warning(f"Analyte {analyte['name']} has an uninterpretable range: {e.message}")
            store.insert("analytes", analyte)
            added += 1

        for group in SEED_TEST_GROUPS:
            if store.count("test_groups", {"code": group["code"]}):
                continue
            store.insert("test_groups", group)
            added += 1
        return added

    def load(self, store: RecordStore):
        """Reload the cache from the record store"""
        self._analytes = {row["name"].lower(): row for row in store.get("analytes", order_by=["id"])}
        self._groups = {}
        for row in store.get("test_groups", order_by=["id"]):
            self._groups[row["name"].lower()] = row
            self._groups[row["code"].lower()] = row
        logger.debug(f"Catalog loaded: {len(self._analytes)} analytes, {len(self.test_groups())} test groups")

    def reset(self):
        """Forget the cached catalog"""
        self.initialized = False
        self._analytes = {}
        self._groups = {}

    def analytes(self) -> List[Row]:
        return list(self._analytes.values())

    def analyte(self, name: Optional[str]) -> Optional[Row]:
        if not name:
            return None
        return self._analytes.get(name.strip().lower())

    def test_groups(self) -> List[Row]:
        unique = {row["id"]: row for row in self._groups.values()}
        return list(unique.values())

    def test_group(self, name_or_code: Optional[str]) -> Optional[Row]:
        if not name_or_code:
            return None
        return self._groups.get(name_or_code.strip().lower())

    def price_for(self, test_names: Iterable[str]) -> float:
        """Sum of catalog prices for the ordered tests; unknown tests cost nothing"""
        total = 0.0
        for name in test_names:
            group = self.test_group(name)
            if group:
                total += group["price"] or 0.0
        return total

    def complete(self, value: ResultValue) -> ResultValue:
        """Fill a missing unit or reference range from the analyte definition"""
        analyte = self.analyte(value.parameter)
        if analyte is None:
            return value
        return replace(
            value,
            unit=value.unit or analyte["unit"] or "",
            reference_range=value.reference_range or analyte["reference_range"] or "",
        )

    def flag(self, value: ResultValue, sex: Optional[str] = None) -> Flag:
        """
        Flag a value using its own range, falling back to the catalog range
        for the analyte, and escalating to critical on catalog panic values.
        """
        analyte = self.analyte(value.parameter)
        if analyte is None:
            return classify_with_criticals(value.value, value.reference_range, sex)
        return classify_with_criticals(
            value.value,
            value.reference_range or analyte["reference_range"],
            sex,
            analyte["low_critical"],
            analyte["high_critical"],
        )


# Process-wide catalog instance
catalog = TestCatalog()
