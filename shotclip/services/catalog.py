"""
Clip Catalog
Append-only, ordered record of published clips backed by SQLite.
"""

import asyncio
import json
from collections import OrderedDict
from pathlib import Path
from typing import List, Optional

import aiosqlite

from ..models.clip import Clip
from ..utils.logger import get_logger

logger = get_logger()


class ClipCatalog:
    """Published clips in insertion order, keyed by clip id"""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self._clips: "OrderedDict[str, Clip]" = OrderedDict()
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    async def initialize(self):
        """Create the schema and load existing clips"""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiosqlite.connect(self.db_path) as conn:
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA synchronous=NORMAL")
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS clips (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id TEXT NOT NULL UNIQUE,
                        payload TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                await conn.commit()

                cursor = await conn.execute("SELECT payload FROM clips ORDER BY seq ASC")
                rows = await cursor.fetchall()
                await cursor.close()

            self._clips.clear()
            for (payload,) in rows:
                try:
                    clip = Clip.model_validate(json.loads(payload))
                except Exception as exc:
                    logger.warning(f"Skipping invalid stored clip payload: {exc}")
                    continue
                self._clips[clip.id] = clip

            self._initialized = True
            logger.info(f"Clip catalog initialized at {self.db_path} ({len(self._clips)} clips)")

    async def append(self, clip: Clip):
        """Add a clip; an id that is already present is rejected"""
        await self.initialize()
        payload = json.dumps(clip.model_dump(mode="json", by_alias=True), ensure_ascii=False)

        async with self._write_lock:
            if clip.id in self._clips:
                raise ValueError(f"Clip already in catalog: {clip.id}")

            async with aiosqlite.connect(self.db_path) as conn:
                await conn.execute(
                    "INSERT INTO clips (id, payload, created_at) VALUES (?, ?, ?)",
                    (clip.id, payload, clip.created_at.isoformat()),
                )
                await conn.commit()

            self._clips[clip.id] = clip

    def get(self, clip_id: str) -> Optional[Clip]:
        return self._clips.get(clip_id)

    def list_clips(self) -> List[Clip]:
        return list(self._clips.values())

    def __len__(self) -> int:
        return len(self._clips)
