"""
Offers scan: provider promotions stored as Deals.

Providers are scanned one after another. A provider that fails is logged and
reported; the others still run.
"""

from datetime import datetime
from typing import Callable, Iterable, Optional
import logging

from sqlalchemy.orm import Session

from staywatch.models.deal import Deal, DealSource
from staywatch.providers.base import ProviderAdapter
from staywatch.providers.registry import get_adapter, supported_providers
from staywatch.scrapers.offers import OfferRecord
from staywatch.utils.clock import utcnow

logger = logging.getLogger(__name__)

# Scraped from the provider's own page, so trusted more than a forum post
PROVIDER_OFFER_CONFIDENCE = 0.8


class DealService:

    def __init__(
        self,
        db: Session,
        pool=None,
        adapter_lookup: Callable[[str], ProviderAdapter] = get_adapter,
        providers: Optional[Iterable[str]] = None,
    ):
        self.db = db
        self.pool = pool
        self._adapter_lookup = adapter_lookup
        self.providers = list(providers) if providers is not None else supported_providers()

    async def scan_all_providers(self) -> dict[str, dict]:
        results = {}
        for code in self.providers:
            try:
                results[code] = await self.scan_provider(code)
            except Exception as e:
                self.db.rollback()
                logger.error(f"Offers scan failed for {code}: {e}")
                results[code] = {"error": str(e), "fetched": 0, "new": 0}
        return results

    async def scan_provider(self, provider_code: str) -> dict:
        adapter = self._adapter_lookup(provider_code)
        offers = await adapter.fetch_offers(self.pool)
        new_deals = self.store_offers(provider_code, offers)
        if new_deals:
            logger.info(f"🏷️ {provider_code}: {len(new_deals)} new offer(s)")
        return {"fetched": len(offers), "new": len(new_deals)}

    def store_offers(
        self, provider_code: str, offers: list[OfferRecord], now: Optional[datetime] = None
    ) -> list[Deal]:
        """Upsert by wording. Returns only the deals seen for the first time."""
        now = now or utcnow()
        new_deals = []
        seen: set[str] = set()
        for offer in offers:
            source_ref = offer.source_ref
            if source_ref in seen:
                continue
            seen.add(source_ref)
            existing = self.db.query(Deal).filter(
                Deal.provider_code == provider_code,
                Deal.source == DealSource.PROVIDER_OFFERS,
                Deal.source_ref == source_ref,
            ).first()

            if existing:
                existing.last_seen_at = now
                if offer.ends_at:
                    existing.ends_at = offer.ends_at
                continue

            deal = Deal(
                provider_code=provider_code,
                source=DealSource.PROVIDER_OFFERS,
                source_ref=source_ref,
                title=offer.title,
                discount_type=offer.discount_type,
                discount_value=offer.discount_value,
                voucher_code=offer.voucher_code,
                restrictions=offer.restrictions,
                ends_at=offer.ends_at,
                confidence=PROVIDER_OFFER_CONFIDENCE,
                detected_at=now,
                last_seen_at=now,
            )
            self.db.add(deal)
            new_deals.append(deal)

        self.db.commit()
        return new_deals

    def list_active_deals(self, provider_code: Optional[str] = None, now: Optional[datetime] = None) -> list[Deal]:
        """Deals not yet expired, newest first."""
        now = now or utcnow()
        query = self.db.query(Deal).filter((Deal.ends_at.is_(None)) | (Deal.ends_at >= now))
        if provider_code:
            query = query.filter(Deal.provider_code == provider_code)
        return query.order_by(Deal.detected_at.desc(), Deal.id.desc()).all()
