from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar
from uuid import UUID, uuid4

from waitlist.clock import Clock, utc_now
from waitlist.db.store import Between, Outside, RecordStore, Row, guarded, read_with_retry
from waitlist.errors import InvalidWaveRangeError, StoreError, WaveActiveError, WaveNotFoundError
from waitlist.models.wave import WaveCreate, WaveRead, WaveStats, WaveUpdate, WaveWithStats

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _covering_wave(waves: list[Row], position: int) -> Row | None:
    """First wave by start position whose inclusive range holds ``position``."""
    for wave in waves:
        if wave["start_position"] <= position <= wave["end_position"]:
            return wave
    return None


class WaveService:
    """Admin-managed access waves over the ranked waitlist.

    A user belongs to a wave when their ``waitlist_position`` falls inside the
    wave's inclusive range; ``access_granted`` follows the wave's active flag.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        clock: Clock = utc_now,
        store_timeout_seconds: float = 5.0,
        store_read_retries: int = 2,
    ) -> None:
        self._store = store
        self._clock = clock
        self._timeout = store_timeout_seconds
        self._retries = store_read_retries

    async def _read(self, call: Callable[[], Awaitable[T]], op: str) -> T:
        return await read_with_retry(call, timeout=self._timeout, retries=self._retries, op=op)

    async def _write(self, awaitable: Awaitable[T], op: str) -> T:
        return await guarded(awaitable, timeout=self._timeout, op=op)

    async def _require_wave(self, wave_id: UUID) -> Row:
        wave = await self._read(lambda: self._store.find_one("waves", {"id": wave_id}), "find_wave")
        if wave is None:
            raise WaveNotFoundError(wave_id)
        return wave

    async def _attach_unassigned(self, wave_id: UUID, start: int, end: int, *, grant: bool) -> int:
        attached = await self._store.update_where(
            "users",
            {"wave_id": None, "waitlist_position": Between(start, end)},
            {"wave_id": wave_id, "access_granted": grant, "updated_at": self._clock()},
        )
        return len(attached)

    # --- admin writes -------------------------------------------------------------

    async def create_wave(self, data: WaveCreate) -> WaveRead:
        async def apply() -> tuple[Row, int]:
            now = self._clock()
            async with self._store.transaction():
                row = await self._store.insert(
                    "waves",
                    {
                        "id": uuid4(),
                        "name": data.name,
                        "description": data.description,
                        "start_position": data.start_position,
                        "end_position": data.end_position,
                        "is_active": False,
                        "created_at": now,
                        "updated_at": now,
                    },
                )
                attached = await self._attach_unassigned(
                    row["id"], data.start_position, data.end_position, grant=False
                )
                return row, attached

        row, attached = await self._write(apply(), "create_wave")
        logger.info(
            "Wave %s created (%d-%d), %d users attached",
            row["id"],
            data.start_position,
            data.end_position,
            attached,
            extra={"event_type": "wave.created"},
        )
        return WaveRead.model_validate(row)

    async def update_wave(self, wave_id: UUID, data: WaveUpdate) -> WaveRead:
        current = await self._require_wave(wave_id)
        if current["is_active"]:
            raise WaveActiveError(wave_id)

        changes: dict[str, Any] = data.model_dump(exclude_unset=True)
        start = changes.get("start_position", current["start_position"])
        end = changes.get("end_position", current["end_position"])
        if start > end:
            raise InvalidWaveRangeError(start, end)

        async def apply() -> Row:
            async with self._store.transaction():
                rows = await self._store.update_where(
                    "waves", {"id": wave_id}, {**changes, "updated_at": self._clock()}
                )
                if not rows:
                    raise WaveNotFoundError(wave_id)
                if "start_position" in changes or "end_position" in changes:
                    detached = await self._store.update_where(
                        "users",
                        {"wave_id": wave_id, "waitlist_position": Outside(start, end)},
                        {"wave_id": None, "access_granted": False, "updated_at": self._clock()},
                    )
                    attached = await self._attach_unassigned(wave_id, start, end, grant=False)
                    logger.info(
                        "Wave %s range now %d-%d: %d users detached, %d attached",
                        wave_id,
                        start,
                        end,
                        len(detached),
                        attached,
                    )
                return rows[0]

        row = await self._write(apply(), "update_wave")
        return WaveRead.model_validate(row)

    async def activate_wave(self, wave_id: UUID) -> WaveRead:
        wave = await self._require_wave(wave_id)

        async def apply() -> tuple[Row, int]:
            now = self._clock()
            async with self._store.transaction():
                rows = await self._store.update_where(
                    "waves", {"id": wave_id}, {"is_active": True, "activated_at": now, "updated_at": now}
                )
                if not rows:
                    raise WaveNotFoundError(wave_id)
                await self._attach_unassigned(wave_id, wave["start_position"], wave["end_position"], grant=True)
                granted = await self._store.update_where(
                    "users", {"wave_id": wave_id}, {"access_granted": True, "updated_at": now}
                )
                return rows[0], len(granted)

        row, granted = await self._write(apply(), "activate_wave")
        logger.info(
            "Wave %s activated, access granted to %d users",
            wave_id,
            granted,
            extra={"event_type": "wave.activated"},
        )
        return WaveRead.model_validate(row)

    async def deactivate_wave(self, wave_id: UUID) -> WaveRead:
        await self._require_wave(wave_id)

        async def apply() -> tuple[Row, int]:
            now = self._clock()
            async with self._store.transaction():
                rows = await self._store.update_where(
                    "waves", {"id": wave_id}, {"is_active": False, "activated_at": None, "updated_at": now}
                )
                if not rows:
                    raise WaveNotFoundError(wave_id)
                revoked = await self._store.update_where(
                    "users", {"wave_id": wave_id}, {"access_granted": False, "updated_at": now}
                )
                return rows[0], len(revoked)

        row, revoked = await self._write(apply(), "deactivate_wave")
        logger.info(
            "Wave %s deactivated, access revoked from %d users",
            wave_id,
            revoked,
            extra={"event_type": "wave.deactivated"},
        )
        return WaveRead.model_validate(row)

    async def delete_wave(self, wave_id: UUID) -> None:
        await self._require_wave(wave_id)

        async def apply() -> int:
            async with self._store.transaction():
                detached = await self._store.update_where(
                    "users",
                    {"wave_id": wave_id},
                    {"wave_id": None, "access_granted": False, "updated_at": self._clock()},
                )
                remaining = await self._store.count("users", {"wave_id": wave_id})
                if remaining:
                    raise StoreError(f"{remaining} users still attached to wave {wave_id}")
                await self._store.delete_where("waves", {"id": wave_id})
                return len(detached)

        detached = await self._write(apply(), "delete_wave")
        logger.info(
            "Wave %s deleted, %d users detached",
            wave_id,
            detached,
            extra={"event_type": "wave.deleted"},
        )

    async def assign_users_to_waves(self) -> int:
        """Recompute wave membership for every user from their current rank.

        Users without a rank belong to no wave and lose access. Returns the number of users whose row changed; rows already in the
        right state are not written.
        """

        async def apply() -> int:
            changed = 0
            async with self._store.transaction():
                waves = await self._store.find_many("waves", order_by=("start_position", "created_at"))
                users = await self._store.find_many("users", order_by=("waitlist_position",))
                for user in users:
                    position = user["waitlist_position"]
                    wave = _covering_wave(waves, position) if position is not None else None
                    target_wave = wave["id"] if wave is not None else None
                    target_access = bool(wave is not None and wave["is_active"])
                    if user["wave_id"] == target_wave and user["access_granted"] == target_access:
                        continue
                    await self._store.update_where(
                        "users",
                        {"id": user["id"]},
                        {"wave_id": target_wave, "access_granted": target_access, "updated_at": self._clock()},
                    )
                    changed += 1
            return changed

        changed = await self._write(apply(), "assign_users_to_waves")
        logger.info("Wave assignment updated %d users", changed, extra={"event_type": "wave.assigned"})
        return changed

    # --- reads --------------------------------------------------------------------

    async def get_wave(self, wave_id: UUID) -> WaveRead:
        return WaveRead.model_validate(await self._require_wave(wave_id))

    async def get_wave_stats(self, wave_id: UUID) -> WaveStats:
        total = await self._read(lambda: self._store.count("users", {"wave_id": wave_id}), "count_wave_users")
        active = await self._read(
            lambda: self._store.count("users", {"wave_id": wave_id, "access_granted": True}),
            "count_wave_active_users",
        )
        return WaveStats(total_users=total, active_users=active, pending_users=total - active)

    async def list_waves(self) -> list[WaveRead]:
        rows = await self._read(
            lambda: self._store.find_many("waves", order_by=("start_position", "created_at")), "list_waves"
        )
        return [WaveRead.model_validate(row) for row in rows]

    async def list_waves_with_stats(self) -> list[WaveWithStats]:
        result: list[WaveWithStats] = []
        for wave in await self.list_waves():
            stats = await self.get_wave_stats(wave.id)
            result.append(WaveWithStats(**wave.model_dump(), **stats.model_dump()))
        return result

    async def get_user_wave(self, user_id: str) -> WaveRead | None:
        user = await self._read(lambda: self._store.find_one("users", {"id": user_id}), "find_user")
        if user is None or user["wave_id"] is None:
            return None
        wave = await self._read(
            lambda: self._store.find_one("waves", {"id": user["wave_id"]}), "find_user_wave"
        )
        return WaveRead.model_validate(wave) if wave is not None else None

    async def user_has_access(self, user_id: str) -> bool:
        user = await self._read(lambda: self._store.find_one("users", {"id": user_id}), "find_user")
        return bool(user is not None and user["access_granted"])
