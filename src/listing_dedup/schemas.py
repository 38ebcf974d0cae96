"""Input records handed over by the scraping collaborator."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ScrapedRecord(BaseModel):
    """One scraped vehicle offering.

    ``listing_id`` is the ``listings`` row the ingestion layer stored for
    this record, when it has stored one.  It identifies the record in
    review pairs and relisting linkage and excludes the record from its
    own candidate pool.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    tenant_id: str = Field(min_length=1)
    external_id: str = Field(min_length=1)
    source_site: str = Field(min_length=1)

    listing_id: str | None = None
    vin: str | None = None
    make: str | None = None
    model: str | None = None
    year: int | None = None
    price: float | None = None
    mileage: int | None = None
    latitude: float | None = None
    longitude: float | None = None
    dealer_id: str | None = None
    exterior_color: str | None = None
    image_hash: str | None = None
    city: str | None = None

    def to_dict(self) -> dict:
        """Return the record in the listing-dict shape used by the scorers."""
        data = self.model_dump(exclude={"listing_id"})
        data["id"] = self.listing_id
        return data
