"""
Offer Service — customer quotes stored next to the catalog.

Keys:
    offers:<id>   → Offer
    offers_index  → [id, ...] in creation order

Totals are recomputed from the items on every write. Offer numbers follow
N<year><3-digit sequence>, the sequence restarting each year.
"""

import asyncio
import logging
import re
import uuid
from typing import Any, Callable, Dict, List

from app.core.exceptions import ImportValidationError, OfferNotFoundError
from app.core.kv_store import KeyValueStore
from app.core.timeutils import current_year, today_iso
from app.schemas.offer import Offer, OfferCreate, OfferItem, OfferUpdate
from app.services.catalog_keys import OFFERS_INDEX_KEY, offer_key, product_key

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"^N(\d{4})(\d+)$")


def offer_totals(items: List[OfferItem]) -> Dict[str, float]:
    """Sum of pocet × price over the items, rounded to cents."""
    bez = sum(item.pocet * (item.cena_bez_dph or 0) for item in items)
    s_dph = sum(item.pocet * (item.cena_s_dph or 0) for item in items)
    return {
        "celkova_cena_bez_dph": round(bez, 2),
        "celkova_cena_s_dph": round(s_dph, 2),
    }


class OfferService:
    """CRUD over offers in the key-value store."""

    def __init__(
        self,
        store: KeyValueStore,
        today: Callable[[], str] = today_iso,
        year: Callable[[], int] = current_year,
    ):
        self.store = store
        self.today = today
        self.year = year

    async def _index(self) -> List[str]:
        return await self.store.get_json(OFFERS_INDEX_KEY, default=[]) or []

    async def _resolve_items(self, items: List[OfferItem]) -> List[OfferItem]:
        """Fill missing name / prices from the merged product detail."""
        resolved: List[OfferItem] = []
        for item in items:
            if item.nazev is not None and item.cena_bez_dph is not None and item.cena_s_dph is not None:
                resolved.append(item)
                continue
            product = await self.store.get_json(product_key(item.kod))
            if product is None:
                raise ImportValidationError(f"Offer item refers to unknown product '{item.kod}'")
            resolved.append(item.model_copy(update={
                "nazev": item.nazev if item.nazev is not None else product.get("nazev"),
                "cena_bez_dph": item.cena_bez_dph if item.cena_bez_dph is not None else product.get("cena_bez_dph", 0),
                "cena_s_dph": item.cena_s_dph if item.cena_s_dph is not None else product.get("cena_s_dph", 0),
            }))
        return resolved

    def _next_number(self, offers: List[Dict[str, Any]]) -> str:
        year = self.year()
        sequence = 0
        for offer in offers:
            match = _NUMBER_RE.match(offer.get("cislo") or "")
            if match and int(match.group(1)) == year:
                sequence = max(sequence, int(match.group(2)))
        return f"N{year}{sequence + 1:03d}"

    async def list_offers(self) -> List[Dict[str, Any]]:
        ids = await self._index()
        offers = await asyncio.gather(*(self.store.get_json(offer_key(i)) for i in ids))
        return [o for o in offers if o is not None]

    async def get_offer(self, offer_id: str) -> Dict[str, Any]:
        offer = await self.store.get_json(offer_key(offer_id))
        if offer is None:
            raise OfferNotFoundError(offer_id)
        return offer

    async def create_offer(self, data: OfferCreate) -> Dict[str, Any]:
        items = await self._resolve_items(data.polozky)
        existing = await self.list_offers()

        offer = Offer(
            id=uuid.uuid4().hex,
            cislo=self._next_number(existing),
            nazev=data.nazev,
            zakaznik=data.zakaznik,
            datum_vytvoreni=self.today(),
            platnost_do=data.platnost_do,
            stav=data.stav,
            polozky=items,
            **offer_totals(items),
        ).model_dump()

        await self.store.put_json(offer_key(offer["id"]), offer)
        ids = await self._index()
        ids.append(offer["id"])
        await self.store.put_json(OFFERS_INDEX_KEY, ids)

        logger.info("Offer %s created (%s, %d items)", offer["cislo"], offer["zakaznik"], len(items))
        return offer

    async def update_offer(self, offer_id: str, data: OfferUpdate) -> Dict[str, Any]:
        current = Offer.model_validate(await self.get_offer(offer_id))
        changes = data.model_dump(exclude_unset=True, exclude_none=True)

        if data.polozky is not None:
            changes["polozky"] = await self._resolve_items(data.polozky)

        updated = current.model_copy(update=changes)
        updated = updated.model_copy(update=offer_totals(updated.polozky))
        offer = updated.model_dump()

        await self.store.put_json(offer_key(offer_id), offer)
        logger.info("Offer %s updated", offer["cislo"])
        return offer

    async def delete_offer(self, offer_id: str) -> None:
        await self.get_offer(offer_id)
        await self.store.delete(offer_key(offer_id))
        ids = [i for i in await self._index() if i != offer_id]
        await self.store.put_json(OFFERS_INDEX_KEY, ids)
        logger.info("Offer %s deleted", offer_id)
