"""Market price models for Myers Construct."""

from typing import Optional

from pydantic import BaseModel, Field

from models.estimate import GroundingSource


class PriceRecord(BaseModel):
    """Best-match shopping result for one material in one region."""

    name: str = Field(description="Product title as listed by the retailer")
    price: float = Field(ge=0, allow_inf_nan=False, description="Unit price in USD")
    retailer: str = Field(default="", description="Retailer name, e.g. Home Depot")
    link: str = Field(default="", description="Product page URL")
    thumbnail: Optional[str] = Field(default=None, description="Product image URL")
    location: str = Field(default="", alias="locationGrounding", description="Region the price was searched in")

    class Config:
        populate_by_name = True
        frozen = True

    def to_prompt_line(self) -> str:
        return f"- {self.name}: ${self.price:g} at {self.retailer} ({self.link})"

    def to_grounding_source(self) -> GroundingSource:
        return GroundingSource(title=f"{self.retailer}: {self.name}", uri=self.link)
