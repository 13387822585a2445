from fastapi import APIRouter, HTTPException, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from vault.schemas.auth import TokenData
from vault.schemas.metal_price import MetalPriceListResponse, MetalPriceResponse
from vault.core.auth import require_admin
from vault.core.database import get_db
from vault.core.exceptions import ConfigurationError, MetalPriceError
from vault.crud.metal_price import metal_price_crud
from vault.services.metal_price_service import MetalPriceService, get_metal_price_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=MetalPriceListResponse)
async def get_metal_prices(db: AsyncSession = Depends(get_db)):
    """Cached gold (per gram) and silver (per troy ounce) prices"""
    prices = await metal_price_crud.get_all(db)
    return MetalPriceListResponse(
        success=True,
        prices=[MetalPriceResponse.model_validate(price) for price in prices]
    )


@router.post("/sync", response_model=MetalPriceListResponse)
async def sync_metal_prices(
    current_user: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    price_service: MetalPriceService = Depends(get_metal_price_service)
):
    """Pull fresh quotes from the price feed (admin only)"""
    try:
        await price_service.sync_prices(db)
    except ConfigurationError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )
    except MetalPriceError as e:
        logger.error(f"❌ Metal price sync failed: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e)
        )
    return await get_metal_prices(db)
