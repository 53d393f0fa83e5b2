"""
Job stores: persistence for job records.

FileJobStore keeps one JSON document per job:

    ~/.config/opencode/jobs/<slug>.json

Records are sanitized before every write and decoded tolerantly on every
read, so records written by older versions still load. There is no locking;
the last write to a slug wins.

Implementations:
    FileJobStore    JSON files, default
    InMemoryJobStore for testing
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from agentcron.core.errors import PersistenceError
from agentcron.scheduler.job import Job, decode_job, sanitize_job, utc_now_iso

logger = logging.getLogger(__name__)


class JobStore(ABC):
    """Abstract base class for job persistence, keyed by slug."""

    @abstractmethod
    async def get(self, slug: str) -> Job | None:
        """Load a job. None if missing or undecodable."""
        ...

    @abstractmethod
    async def save(self, job: Job) -> Job:
        """Sanitize and write a job, overwriting any previous record. Returns what was written."""
        ...

    @abstractmethod
    async def delete(self, slug: str) -> bool:
        """Delete a record. Returns True if it existed."""
        ...

    @abstractmethod
    async def get_all(self) -> list[Job]:
        """All decodable jobs, ordered by slug."""
        ...

    async def exists(self, slug: str) -> bool:
        return await self.get(slug) is not None

    async def update(self, slug: str, **changes: Any) -> Job | None:
        """
        Re-read, apply field changes, stamp updated_at and save.

        Returns None when the record has disappeared.
        """
        job = await self.get(slug)
        if job is None:
            return None
        updated = dataclasses.replace(job, **changes, updated_at=utc_now_iso())
        return await self.save(updated)


class FileJobStore(JobStore):
    """
    One ``<slug>.json`` file per job, written atomically.

    Usage:
        store = FileJobStore(Path("~/.config/opencode/jobs").expanduser())
        await store.save(job)
        job = await store.get("standing-desk")
    """

    def __init__(self, jobs_dir: Path) -> None:
        self._dir = jobs_dir

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, slug: str) -> Path:
        return self._dir / f"{slug}.json"

    async def _ensure_dir(self) -> None:
        try:
            await aiofiles.os.makedirs(self._dir, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create job directory {self._dir}: {e}") from e

    # ── CRUD ─────────────────────────────────────────────────────────────────

    async def get(self, slug: str) -> Job | None:
        await self._ensure_dir()
        return await self._read(self.path_for(slug))

    async def save(self, job: Job) -> Job:
        clean = sanitize_job(job)
        await self._ensure_dir()

        path = self.path_for(clean.slug)
        tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        try:
            async with aiofiles.open(tmp, mode="w", encoding="utf-8") as f:
                await f.write(json.dumps(clean.to_dict(), indent=2))
            await aiofiles.os.replace(tmp, path)
        except OSError as e:
            raise PersistenceError(f"Failed to write job {clean.slug}: {e}") from e

        logger.debug(f"Saved job {clean.slug} to {path}")
        return clean

    async def delete(self, slug: str) -> bool:
        path = self.path_for(slug)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceError(f"Failed to delete job {slug}: {e}") from e
        return True

    async def get_all(self) -> list[Job]:
        await self._ensure_dir()
        try:
            names = sorted(await aiofiles.os.listdir(self._dir))
        except OSError as e:
            raise PersistenceError(f"Cannot list {self._dir}: {e}") from e

        jobs = []
        for name in names:
            if not name.endswith(".json") or name.startswith("."):
                continue
            job = await self._read(self._dir / name)
            if job is not None:
                jobs.append(job)
        return jobs

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _read(self, path: Path) -> Job | None:
        try:
            async with aiofiles.open(path, mode="r", encoding="utf-8") as f:
                raw = json.loads(await f.read())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Skipping unreadable job record {path}: {e}")
            return None

        job = decode_job(raw)
        if job is None:
            logger.warning(f"Skipping malformed job record {path}")
        return job


class InMemoryJobStore(JobStore):
    """Dict-backed store. Keeps serialized records so reads decode like the file store."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}

    async def get(self, slug: str) -> Job | None:
        raw = self._records.get(slug)
        return decode_job(json.loads(json.dumps(raw))) if raw is not None else None

    async def save(self, job: Job) -> Job:
        clean = sanitize_job(job)
        self._records[clean.slug] = clean.to_dict()
        return clean

    async def delete(self, slug: str) -> bool:
        return self._records.pop(slug, None) is not None

    async def get_all(self) -> list[Job]:
        jobs = [await self.get(slug) for slug in sorted(self._records)]
        return [j for j in jobs if j is not None]

    def put_raw(self, slug: str, raw: dict[str, Any]) -> None:
        """Insert an unsanitized record, as an older version might have written it."""
        self._records[slug] = raw
