"""
Catalog sync triggers.

POST /api/migrate-products-to-stripe   {dryRun?, batchSize?, forceResync?}
POST /api/stripe-product-sync          {action: "sync_product", product_id}
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import get_settings
from storefront.database import get_db
from storefront.deps import get_stripe_catalog, require_sync_token
from storefront.errors import ValidationFailed
from storefront.schemas import (
    CatalogSyncRequest,
    CatalogSyncResult,
    ProductSyncRequest,
    ProductSyncResponse,
)
from storefront.services.catalog_sync import CatalogSyncEngine, SyncOptions
from storefront.services.stripe_catalog import StripeCatalog

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/api", tags=["catalog"])


@router.post(
    "/migrate-products-to-stripe",
    response_model=CatalogSyncResult,
    dependencies=[Depends(require_sync_token)],
)
async def migrate_products_to_stripe(
    body: Optional[CatalogSyncRequest] = None,
    db: AsyncSession = Depends(get_db),
    catalog: StripeCatalog = Depends(get_stripe_catalog),
) -> CatalogSyncResult:
    body = body or CatalogSyncRequest()
    options = SyncOptions(
        dry_run=body.dry_run,
        batch_size=body.batch_size or settings.catalog_batch_size,
        force_resync=body.force_resync,
    )
    logger.info("Catalog sync requested: %s", options)
    engine = CatalogSyncEngine.from_settings(db, catalog, settings)
    return await engine.run(options)


@router.post(
    "/stripe-product-sync",
    response_model=ProductSyncResponse,
    dependencies=[Depends(require_sync_token)],
)
async def stripe_product_sync(
    body: ProductSyncRequest,
    db: AsyncSession = Depends(get_db),
    catalog: StripeCatalog = Depends(get_stripe_catalog),
) -> ProductSyncResponse:
    if body.action != "sync_product" or not body.product_id:
        raise ValidationFailed("Invalid action")
    engine = CatalogSyncEngine.from_settings(db, catalog, settings)
    return await engine.sync_one(body.product_id)
