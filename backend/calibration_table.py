# backend/calibration_table.py

"""
Calibration Table - gauge height (cm) to tank volume (litres)

The table is built once from a literal gauge matrix:
- Each row is a tens-of-cm prefix followed by ten cells (units 0-9)
- Each cell is the cumulative litre count at that height
- The "full" sentinel maps to the tank's maximum capacity

Construction rules:
1) Cells decoding to a height above MAX_CM are dropped (range truncation)
2) A missing or unparseable cell is skipped with a warning, never defaulted
3) Gaps surface at lookup time as CalibrationNotFoundError
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, Field
from pymongo.errors import BulkWriteError, DuplicateKeyError

from gauge_errors import CalibrationNotFoundError

logger = logging.getLogger(__name__)

# Single bound shared by validation, table construction and documentation
MIN_CM = 0
MAX_CM = 300

# Tank maximum capacity in litres
MAX_LITRES = 50710

FULL_TOKENS = {"full", "plein"}

# ==================== GAUGE MATRIX ====================

# (tens-of-cm prefix, [litres at units 0..9])
GAUGE_MATRIX: List[Tuple[int, List[str]]] = [
    (0, ["0", "74", "148", "222", "296", "370", "444", "519", "593", "667"]),
    (1, ["741", "847", "954", "1060", "1166", "1273", "1379", "1485", "1592", "1698"]),
    (2, ["1832", "1983", "2135", "2286", "2438", "2589", "2741", "2899", "3058", "3217"]),
    (3, ["3376", "3534", "3693", "3847", "3998", "4150", "4301", "4453", "4604", "4760"]),
    (4, ["4956", "5153", "5349", "5545", "5741", "5933", "6125", "6318", "6510", "6702"]),
    (5, ["6895", "7087", "7279", "7472", "7664", "7871", "8089", "8306", "8523", "8741"]),
    (6, ["8933", "9125", "9318", "9510", "9702", "9915", "10132", "10349", "10567", "10786"]),
    (7, ["11013", "11241", "11468", "11695", "11907", "12116", "12324", "12532", "12741", "12991"]),
    (8, ["13241", "13491", "13741", "13963", "14185", "14407", "14630", "14866", "15116", "15366"]),
    (9, ["15616", "15857", "16090", "16322", "16555", "16790", "17033", "17277", "17521", "17763"]),
    (10, ["17985", "18207", "18430", "18652", "18891", "19141", "19391", "19641", "19887", "20131"]),
    (11, ["20375", "20619", "20866", "21116", "21366", "21616", "21866", "22116", "22366", "22616"]),
    (12, ["22863", "23107", "23350", "23594", "23841", "24091", "24341", "24591", "24841", "25091"]),
    (13, ["25341", "25591", "25832", "26059", "26286", "26513", "26741", "26991", "27241", "27491"]),
    (14, ["27741", "27966", "28195", "28423", "28650", "28907", "29185", "29463", "29741", "29985"]),
    (15, ["30229", "30472", "30716", "30966", "31216", "31466", "31716", "31960", "32204", "32448"]),
    (16, ["32692", "32941", "33191", "33441", "33691", "33919", "34141", "34363", "34585", "34814"]),
    (17, ["35058", "35302", "35546", "35787", "36020", "36252", "36485", "36717", "36966", "37216"]),
    (18, ["37466", "37716", "37941", "38163", "38385", "38607", "38841", "39091", "39341", "39591"]),
    (19, ["39810", "39982", "40155", "40327", "40499", "40672", "40877", "41104", "41332", "41559"]),
    (20, ["41776", "41955", "42134", "42312", "42491", "42669", "42856", "43048", "43241", "43433"]),
    (21, ["43625", "43828", "44045", "44262", "44480", "44697", "44895", "45087", "45279", "45472"]),
    (22, ["45664", "45856", "46048", "46241", "46433", "46625", "46819", "47015", "47211", "47407"]),
    (23, ["47603", "47786", "47938", "48089", "48241", "48392", "48544", "48695", "48852", "49011"]),
    (24, ["49169", "49328", "49487", "49646", "49801", "49953", "50104", "50256", "50407", "50559"]),
    (25, ["50710", "full", "full", "full", "full", "full", "full", "full", "full", "full"]),
    (26, ["full"] * 10),
    (27, ["full"] * 10),
    (28, ["full"] * 10),
    (29, ["full"] * 10),
    (30, ["full"]),
]


# ==================== MODELS ====================

class CalibrationEntry(BaseModel):
    """One calibration point"""
    cm: int = Field(ge=MIN_CM, le=MAX_CM)
    litres: Union[int, float] = Field(ge=0)


# ==================== CONSTRUCTION ====================

def parse_litres(cell: Optional[str], cm: int) -> Optional[Union[int, float]]:
    """
    Decode one matrix cell.

    Returns None (after logging a warning) when the cell is missing or
    cannot be parsed, so the caller skips that height.
    """
    if cell is None or str(cell).strip() == "":
        logger.warning(f"Missing litre data for cm={cm}, skipping")
        return None

    token = str(cell).strip()
    if token.lower() in FULL_TOKENS:
        return MAX_LITRES

    try:
        litres = float(token)
    except ValueError:
        logger.warning(f"Could not parse litres for cm={cm}, raw value='{token}', skipping")
        return None

    if litres < 0:
        logger.warning(f"Negative litres for cm={cm} ({litres}), skipping")
        return None
    return int(litres) if litres.is_integer() else litres


def build_calibration_entries(
    matrix: Iterable[Tuple[int, List[str]]] = GAUGE_MATRIX,
    max_cm: int = MAX_CM
) -> List[CalibrationEntry]:
    """Decode the gauge matrix into discrete (cm, litres) entries."""
    entries: Dict[int, CalibrationEntry] = {}

    for prefix, cells in matrix:
        for unit_digit in range(10):
            cm = prefix * 10 + unit_digit
            if cm > max_cm:
                continue

            cell = cells[unit_digit] if unit_digit < len(cells) else None
            litres = parse_litres(cell, cm)
            if litres is None:
                continue

            if cm in entries:
                logger.warning(f"Duplicate calibration row for cm={cm}, keeping first value")
                continue
            entries[cm] = CalibrationEntry(cm=cm, litres=litres)

    return [entries[cm] for cm in sorted(entries)]


# ==================== LOOKUP SNAPSHOT ====================

class CalibrationTable:
    """
    Read-only, in-memory snapshot of the calibration table.

    Lookups never touch storage; the snapshot is loaded once at startup.
    """

    def __init__(self, entries: Iterable[CalibrationEntry], max_cm: int = MAX_CM):
        self.max_cm = max_cm
        self._litres_by_cm: Dict[int, Union[int, float]] = {}
        for entry in entries:
            self._litres_by_cm[entry.cm] = entry.litres

    @classmethod
    def from_matrix(cls, matrix: Iterable[Tuple[int, List[str]]] = GAUGE_MATRIX) -> "CalibrationTable":
        return cls(build_calibration_entries(matrix))

    @classmethod
    def from_documents(cls, documents: Iterable[dict]) -> "CalibrationTable":
        """Build a snapshot from stored calibration_table documents."""
        entries = []
        for doc in documents:
            try:
                entries.append(CalibrationEntry(cm=doc["cm"], litres=doc["litres"]))
            except (KeyError, ValueError) as e:
                logger.warning(f"Ignoring invalid calibration document {doc!r}: {e}")
        return cls(entries)

    def __len__(self) -> int:
        return len(self._litres_by_cm)

    def __contains__(self, cm) -> bool:
        return cm in self._litres_by_cm

    def lookup(self, cm: Union[int, float]) -> Union[int, float]:
        """
        Resolve litres for an in-range reading.

        Raises:
            CalibrationNotFoundError: If the table has no entry for cm
        """
        litres = self._litres_by_cm.get(cm)
        if litres is None:
            raise CalibrationNotFoundError(cm)
        return litres

    def missing_cm(self) -> List[int]:
        """Integer heights in range with no calibration entry."""
        return [cm for cm in range(MIN_CM, self.max_cm + 1) if cm not in self._litres_by_cm]

    def entries(self) -> List[dict]:
        """Documents for the calibration_table collection, ordered by cm."""
        return [
            {"cm": cm, "litres": self._litres_by_cm[cm]}
            for cm in sorted(self._litres_by_cm)
        ]


# ==================== STORAGE ====================

async def seed_calibration_collection(db, table: Optional[CalibrationTable] = None, replace: bool = False) -> int:
    """
    Write the calibration snapshot to the calibration_table collection.

    Without replace, an already-seeded collection is left untouched,
    including one seeded concurrently by another process.
    Returns the number of entries inserted.
    """
    table = table or CalibrationTable.from_matrix()

    if replace:
        result = await db.calibration_table.delete_many({})
        logger.info(f"Deleted {result.deleted_count} existing calibration entries")
    elif await db.calibration_table.count_documents({}) > 0:
        return 0

    documents = table.entries()
    if documents:
        try:
            await db.calibration_table.insert_many(documents)
        except (BulkWriteError, DuplicateKeyError) as e:
            if replace:
                raise
            # Another worker seeded between the count and the insert
            logger.warning(f"Calibration table was seeded concurrently, keeping stored entries: {e}")
            return 0
    logger.info(f"Seeded {len(documents)} calibration entries")
    return len(documents)


async def load_calibration_snapshot(db) -> CalibrationTable:
    """Load the stored calibration table into memory and report gaps."""
    documents = await db.calibration_table.find({}, {"_id": 0}).to_list(None)
    table = CalibrationTable.from_documents(documents)

    missing = table.missing_cm()
    if missing:
        logger.warning(f"Calibration table has {len(missing)} gap(s); lookups will return not found for cm={missing}")
    logger.info(f"Loaded calibration table with {len(table)} entries")
    return table
