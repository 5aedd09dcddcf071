"""
EV Dealer Hub - Settings store

Collection: settings (each document identified by key)

Keys in use:
- dealer_availability:<dealer_id>: test-ride working hours, holidays, slot duration
"""

import logging
from typing import Optional, Dict, Any

from config import now_iso

logger = logging.getLogger("settings")


async def get_setting(db, key: str) -> Optional[Dict]:
    """Fetch one setting document by key"""
    return await db.settings.find_one({"key": key}, {"_id": 0})


async def upsert_setting(db, key: str, data: Dict[str, Any], updated_by: str = "system") -> Dict:
    """Create or replace the fields of a setting document"""
    now = now_iso()
    await db.settings.update_one(
        {"key": key},
        {
            "$set": {**data, "key": key, "updated_at": now, "updated_by": updated_by},
            "$setOnInsert": {"created_at": now},
        },
        upsert=True
    )
    logger.info(f"[SETTINGS] {key} updated by {updated_by}")
    return await get_setting(db, key)
