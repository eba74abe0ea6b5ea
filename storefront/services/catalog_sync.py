"""
Catalog sync: bring every local product's Stripe product + price into
agreement with local data without duplicating remote objects across runs.

Architecture:
  - Products are processed strictly one after another.  Search-then-create on
    the remote catalog is not atomic, so concurrent work could create two
    remote products for the same title.
  - Products are grouped into batches of N with a fixed pause between batches
    to stay under the provider's rate limits.
  - A failing product is recorded with its id and message; the run continues.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import Settings
from storefront.errors import StorefrontError
from storefront.models import SyncStatus
from storefront.schemas import CatalogSyncResult, ProductSyncResponse, SyncError
from storefront.services import store
from storefront.services.pricing import parse_price_to_minor
from storefront.services.retry import (
    RetryPolicy,
    fixed_delay,
    is_transient_stripe_error,
    is_transient_storage_error,
)
from storefront.services.store import CatalogProduct
from storefront.services.stripe_catalog import StripeCatalog

logger = logging.getLogger(__name__)


class ProductSyncError(Exception):
    """A single product could not be synced; recorded, never fatal to the run."""


@dataclass
class SyncOptions:
    dry_run: bool = False
    batch_size: int = 10
    force_resync: bool = False


@dataclass
class _Outcome:
    stripe_product_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    new_product: bool = False
    new_price: bool = False
    simulated: bool = False


class CatalogSyncEngine:
    def __init__(
        self,
        session: AsyncSession,
        catalog: StripeCatalog,
        persist_retry: RetryPolicy,
        remote_retry: RetryPolicy,
        batch_pause_seconds: float = 1.0,
        currency: str = "eur",
    ) -> None:
        self.session = session
        self.catalog = catalog
        self.persist_retry = persist_retry
        self.remote_retry = remote_retry
        self.batch_pause_seconds = batch_pause_seconds
        self.currency = currency.lower()

    @classmethod
    def from_settings(
        cls, session: AsyncSession, catalog: StripeCatalog, settings: Settings
    ) -> "CatalogSyncEngine":
        return cls(
            session=session,
            catalog=catalog,
            persist_retry=RetryPolicy(
                max_attempts=settings.catalog_persist_max_attempts,
                backoff=fixed_delay(settings.catalog_persist_retry_seconds),
                retryable=is_transient_storage_error,
            ),
            remote_retry=RetryPolicy(
                max_attempts=settings.stripe_max_attempts,
                backoff=fixed_delay(settings.stripe_rate_limit_wait_seconds),
                retryable=is_transient_stripe_error,
            ),
            batch_pause_seconds=settings.catalog_batch_pause_seconds,
            currency=settings.stripe_currency,
        )

    async def run(self, options: SyncOptions) -> CatalogSyncResult:
        result = CatalogSyncResult()
        products = await store.list_products_for_sync(self.session)
        # Reads are done; release the connection while remote calls run
        await self.session.commit()

        if not products:
            result.success = True
            result.summary = "No products found to migrate"
            return result

        batch_size = max(1, options.batch_size)
        total_batches = (len(products) + batch_size - 1) // batch_size
        logger.info(
            "Catalog sync started: %d products, %d batches (dry_run=%s force=%s)",
            len(products), total_batches, options.dry_run, options.force_resync,
        )

        for start in range(0, len(products), batch_size):
            batch = products[start : start + batch_size]
            logger.info(
                "Processing batch %d/%d (%d products)",
                start // batch_size + 1, total_batches, len(batch),
            )
            for product in batch:
                await self._process(product, options, result)
                result.processed += 1

            if start + batch_size < len(products) and self.batch_pause_seconds > 0:
                await asyncio.sleep(self.batch_pause_seconds)

        result.success = result.failed == 0
        result.summary = (
            f"Migration completed: {result.processed} processed, "
            f"{result.created} created, {result.updated} updated, "
            f"{result.skipped} skipped, {result.failed} failed"
        )
        logger.info(result.summary)
        return result

    async def sync_one(self, product_id: str) -> ProductSyncResponse:
        """
        Sync a single product regardless of its recorded sync status.

        Product-level failures are returned in the response and flag the
        product FAILED; an unknown product id raises.
        """
        product = await store.get_product_for_sync(self.session, product_id)
        await self.session.commit()
        if product is None:
            raise StorefrontError(f"Product not found: {product_id}", status_code=404)

        logger.info("Single product sync requested for %s (%s)", product.id, product.title)
        try:
            outcome = await self._sync_product(product, SyncOptions(force_resync=True))
        except Exception as exc:
            logger.error("Failed to sync product %s (%s): %s", product.id, product.title, exc)
            await self._flag_failed(product.id)
            return ProductSyncResponse(success=False, product_id=product.id, error=str(exc))

        return ProductSyncResponse(
            success=True,
            product_id=product.id,
            stripe_product_id=outcome.stripe_product_id,
            stripe_price_id=outcome.stripe_price_id,
        )

    async def _process(
        self, product: CatalogProduct, options: SyncOptions, result: CatalogSyncResult
    ) -> None:
        if (
            not options.force_resync
            and product.stripe_product_id
            and product.sync_status == SyncStatus.SYNCED
        ):
            logger.debug("Skipping already synced product %s", product.id)
            result.skipped += 1
            return

        try:
            outcome = await self._sync_product(product, options)
        except Exception as exc:
            logger.error(
                "Failed to sync product %s (%s): %s", product.id, product.title, exc
            )
            result.failed += 1
            result.errors.append(SyncError(product_id=product.id, error=str(exc)))
            if not options.dry_run:
                await self._flag_failed(product.id)
            return

        if outcome.simulated or outcome.new_product or outcome.new_price:
            result.created += 1
        else:
            result.updated += 1

    async def _sync_product(
        self, product: CatalogProduct, options: SyncOptions
    ) -> _Outcome:
        if not product.title or not product.price:
            raise ProductSyncError("Product missing required fields (title or price)")

        amount = parse_price_to_minor(product.price)
        if amount <= 0:
            raise ProductSyncError(f"Invalid price: {product.price}")

        outcome = _Outcome(
            stripe_product_id=product.stripe_product_id,
            stripe_price_id=product.stripe_price_id,
        )

        # ── Remote product ────────────────────────────────────────────────────
        if not outcome.stripe_product_id:
            outcome.stripe_product_id = await self.remote_retry.run(
                lambda: self.catalog.find_product_by_name(product.title),
                description=f"search Stripe product {product.id}",
            )
            if outcome.stripe_product_id:
                logger.info(
                    "Reusing Stripe product %s for %s", outcome.stripe_product_id, product.id
                )
            elif options.dry_run:
                logger.info("[dry run] Would create Stripe product for %s", product.id)
                outcome.simulated = True
                return outcome
            else:
                outcome.stripe_product_id = await self.remote_retry.run(
                    lambda: self.catalog.create_product(
                        name=product.title,
                        description=product.description or "",
                        metadata={
                            "local_id": product.id,
                            "category": product.category or "",
                        },
                        images=[product.image] if product.image else [],
                    ),
                    description=f"create Stripe product {product.id}",
                )
                outcome.new_product = True

        # ── Remote price ──────────────────────────────────────────────────────
        if not outcome.stripe_price_id:
            prices = await self.remote_retry.run(
                lambda: self.catalog.list_active_prices(outcome.stripe_product_id),
                description=f"list Stripe prices {product.id}",
            )
            match = next(
                (
                    p for p in prices
                    if p.unit_amount == amount and p.currency.lower() == self.currency
                ),
                None,
            )
            if match is not None:
                outcome.stripe_price_id = match.id
            elif options.dry_run:
                logger.info(
                    "[dry run] Would create Stripe price %d for %s", amount, product.id
                )
            else:
                outcome.stripe_price_id = await self.remote_retry.run(
                    lambda: self.catalog.create_price(
                        product_id=outcome.stripe_product_id,
                        unit_amount=amount,
                        currency=self.currency,
                    ),
                    description=f"create Stripe price {product.id}",
                )
                outcome.new_price = True

        # ── Local write-back ──────────────────────────────────────────────────
        if not options.dry_run:
            await self.persist_retry.run(
                lambda: self._persist(product.id, outcome),
                description=f"persist product {product.id}",
            )
        return outcome

    async def _persist(self, product_id: str, outcome: _Outcome) -> None:
        try:
            await store.mark_product_synced(
                self.session,
                product_id,
                stripe_product_id=outcome.stripe_product_id,
                stripe_price_id=outcome.stripe_price_id,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

    async def _flag_failed(self, product_id: str) -> None:
        try:
            await store.mark_product_failed(self.session, product_id)
            await self.session.commit()
        except Exception as exc:
            await self.session.rollback()
            logger.warning("Could not flag product %s as failed: %s", product_id, exc)
