from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from studiopass.app.api.deps import get_session
from studiopass.app.services.tariffs import TariffCatalog, tariff_to_dict

router = APIRouter()


@router.get("")
async def list_tariffs(session: AsyncSession = Depends(get_session)):
    catalog = TariffCatalog(session)
    return [tariff_to_dict(t) for t in await catalog.list_tariffs()]


@router.get("/{tariff_id}")
async def get_tariff(tariff_id: str, session: AsyncSession = Depends(get_session)):
    catalog = TariffCatalog(session)
    return tariff_to_dict(await catalog.get_tariff(tariff_id))
