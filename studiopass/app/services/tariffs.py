"""Tariff catalog: read-only lookup of purchasable plans."""
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studiopass.app.core.durations import parse_duration
from studiopass.app.core.exceptions import NotFoundError
from studiopass.app.models.tariff import Tariff


class TariffNotFoundError(NotFoundError):
    code = "tariff_not_found"

    def __init__(self, tariff_id: str):
        super().__init__(f"Tariff {tariff_id} not found")


class TariffCatalog:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_tariff(self, tariff_id: str) -> Tariff:
        tariff = await self.session.get(Tariff, tariff_id)
        if not tariff:
            raise TariffNotFoundError(tariff_id)
        return tariff

    async def list_tariffs(self) -> List[Tariff]:
        result = await self.session.execute(
            select(Tariff).where(Tariff.is_visible == True).order_by(Tariff.price)  # noqa: E712
        )
        return list(result.scalars().all())


def tariff_to_dict(tariff: Tariff) -> Dict[str, Any]:
    duration = parse_duration(tariff.duration)
    return {
        "id": tariff.id,
        "title": tariff.title,
        "duration": tariff.duration,
        "durationCount": duration.count,
        "durationUnit": duration.unit,
        "sessionCount": tariff.session_count or 0,
        "price": str(tariff.price) if tariff.price is not None else None,
    }
