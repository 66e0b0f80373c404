#!/usr/bin/env python3
"""
Seed (or destroy) the calibration_table collection from the gauge matrix.

Usage:
    python seed_calibration_table.py       # replace all entries with the gauge matrix
    python seed_calibration_table.py -d    # delete all calibration entries
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path
from dotenv import load_dotenv
from motor.motor_asyncio import AsyncIOMotorClient

from calibration_table import CalibrationTable, MAX_CM, seed_calibration_collection

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')


async def import_data(db):
    table = CalibrationTable.from_matrix()
    missing = table.missing_cm()
    if missing:
        print(f"WARNING: gauge matrix has no entry for cm={missing}")

    count = await seed_calibration_collection(db, table, replace=True)
    print(f"✓ Imported {count} calibration entries (0-{MAX_CM} cm)")


async def destroy_data(db):
    result = await db.calibration_table.delete_many({})
    print(f"✓ Deleted {result.deleted_count} calibration entries")


async def main(destroy: bool):
    mongo_url = os.environ.get('MONGO_URL')
    db_name = os.environ.get('DB_NAME')
    if not mongo_url or not db_name:
        print("ERROR: MONGO_URL and DB_NAME must be set in .env file")
        return 1

    client = AsyncIOMotorClient(mongo_url)
    db = client[db_name]
    print(f"Connecting to database: {db_name}")
    try:
        if destroy:
            print("Destroying calibration table data...")
            await destroy_data(db)
        else:
            print("Importing calibration table data...")
            await import_data(db)
    finally:
        client.close()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the calibration table")
    parser.add_argument("-d", "--destroy", action="store_true", help="Delete all calibration entries")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.destroy)))
