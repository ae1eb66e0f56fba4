import uuid
from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.models.access_code import AccessCode


class AccessCodeCRUD:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_code(self, code: str) -> AccessCode | None:
        stmt = select(AccessCode).where(AccessCode.code == code).limit(1)
        return (await self.session.execute(stmt)).scalars().first()

    async def existing_codes(self, codes: Iterable[str]) -> set[str]:
        codes = list(codes)
        if not codes:
            return set()
        stmt = select(AccessCode.code).where(AccessCode.code.in_(codes))
        return set((await self.session.execute(stmt)).scalars().all())

    async def add_many(
        self,
        codes: Iterable[str],
        *,
        recipient_name: str,
        recipient_address: str | None = None,
    ) -> list[AccessCode]:
        rows = [
            AccessCode(code=code, recipient_name=recipient_name, recipient_address=recipient_address, used=False)
            for code in codes
        ]
        self.session.add_all(rows)
        await self.session.flush()
        return rows

    async def mark_used(self, code: str, used_by: uuid.UUID | None, used_at: datetime | None = None) -> bool:
        stmt = (
            update(AccessCode)
            .where(AccessCode.code == code, AccessCode.used.is_(False))
            .values(used=True, used_at=used_at or datetime.now(timezone.utc), used_by=used_by)
            .execution_options(synchronize_session=False)
        )
        return (await self.session.execute(stmt)).rowcount > 0
