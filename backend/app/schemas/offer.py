"""Pydantic schemas for offers (customer quotes)."""

from typing import List, Optional

from pydantic import BaseModel, Field


class OfferItem(BaseModel):
    """Quote line. Name and prices are filled from the catalog when omitted."""
    kod: str = Field(..., min_length=1)
    nazev: Optional[str] = None
    pocet: float = Field(default=1, gt=0)
    cena_bez_dph: Optional[float] = None
    cena_s_dph: Optional[float] = None


class OfferCreate(BaseModel):
    nazev: str = Field(..., min_length=1)
    zakaznik: str = Field(..., min_length=1)
    platnost_do: Optional[str] = None
    stav: str = "aktivní"
    polozky: List[OfferItem] = []


class OfferUpdate(BaseModel):
    """Partial update; only fields that are sent change."""
    nazev: Optional[str] = None
    zakaznik: Optional[str] = None
    platnost_do: Optional[str] = None
    stav: Optional[str] = None
    polozky: Optional[List[OfferItem]] = None


class Offer(BaseModel):
    id: str
    cislo: str
    nazev: str
    zakaznik: str
    datum_vytvoreni: str
    platnost_do: Optional[str] = None
    stav: str = "aktivní"
    polozky: List[OfferItem] = []
    celkova_cena_bez_dph: float = 0
    celkova_cena_s_dph: float = 0
