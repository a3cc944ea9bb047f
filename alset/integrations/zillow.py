"""
Zillow property lookup over RapidAPI.

This is the paid action behind a smart search: one ``search_address``
call, reshaped into the property record returned to the client.
"""
import re
from typing import Any, Dict, Optional, Union

import httpx
import structlog

from alset.core.settings import settings

logger = structlog.get_logger(__name__)

USER_AGENT = "AlsetMaps/1.0"


class PropertyLookupError(Exception):
    """Property lookup failed; the charge for the search should be refunded."""
    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False):
        self.message = message
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class PropertyLookupRateLimited(PropertyLookupError):
    """RapidAPI answered 429."""
    def __init__(self, message: str = "Rate limit exceeded. Please try again in a few minutes."):
        super().__init__(message, status_code=429, retryable=True)


def parse_number(value: Any, as_float: bool = False) -> Optional[Union[int, float]]:
    """Parse numbers that may arrive as formatted strings such as ``"$412,000"``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if as_float else int(value)
    cleaned = re.sub(r"[^0-9.]", "", str(value))
    if not cleaned or cleaned.count(".") > 1:
        return None
    number = float(cleaned)
    return number if as_float else int(number)


def _first(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, "", 0):
            return value
    return default


def transform_property(payload: Dict[str, Any], address: str, latitude: float, longitude: float) -> Dict[str, Any]:
    """Reshape a ``search_address`` payload into the property record."""
    prop = payload.get("property") or payload

    return {
        "address": prop.get("address") if isinstance(prop.get("address"), str) else address,
        "latitude": latitude,
        "longitude": longitude,
        "property_type": _first(prop, "propertyType", "homeType", "type", default="Unknown"),
        "square_footage": parse_number(_first(prop, "squareFootage", "livingArea", "squareFeet")) or 0,
        "bedrooms": parse_number(_first(prop, "bedrooms", "beds")) or 0,
        "bathrooms": parse_number(_first(prop, "bathrooms", "baths"), as_float=True) or 0,
        "year_built": parse_number(_first(prop, "yearBuilt", "year")) or 0,
        "estimated_value": parse_number(_first(prop, "estimatedValue", "zestimate", "price")) or 0,
        "rent_estimate": parse_number(_first(prop, "rentZestimate")),
        "last_sold_date": _first(prop, "lastSoldDate", "soldDate"),
        "last_sold_price": parse_number(_first(prop, "lastSoldPrice", "soldPrice")),
        "price_per_sqft": parse_number(_first(prop, "pricePerSqft"), as_float=True),
        "property_tax": parse_number(_first(prop, "propertyTax", "tax")) or 0,
        "tax_assessed_value": parse_number(_first(prop, "taxAssessedValue")),
        "tax_assessed_year": parse_number(_first(prop, "taxAssessedYear")),
        "lot_size": parse_number(_first(prop, "lotSize", "lotArea", "lotAreaValue"), as_float=True) or 0,
        "neighborhood": _first(prop, "neighborhood", "area", default="Unknown"),
        "school_district": _first(prop, "schoolDistrict", default="Unknown"),
        "walk_score": parse_number(_first(prop, "walkScore")) or 0,
        "transit_score": parse_number(_first(prop, "transitScore")) or 0,
        "bike_score": parse_number(_first(prop, "bikeScore")) or 0,
        "nearby_amenities": prop.get("nearbyAmenities") or [],
        "market_trends": {
            "trend": _first(prop, "marketTrend", default="stable"),
            "change_percent": parse_number(_first(prop, "priceChangePercent"), as_float=True) or 0,
            "timeframe": _first(prop, "priceChangeTimeframe", default="Unknown"),
        },
        "investment_potential": {
            "score": parse_number(_first(prop, "investmentScore"), as_float=True) or 5.0,
            "factors": prop.get("investmentFactors") or ["Property data available"],
        },
    }


class ZillowClient:
    """RapidAPI Zillow client with a bounded request timeout."""

    def __init__(
        self,
        api_key: str,
        host: str = "zillow56.p.rapidapi.com",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.host = host
        self._client = httpx.Client(
            base_url=f"https://{host}",
            timeout=timeout,
            transport=transport,
            headers={
                "x-rapidapi-host": host,
                "x-rapidapi-key": api_key,
                "User-Agent": USER_AGENT,
            },
        )

    def search_address(self, address: str) -> Dict[str, Any]:
        """Raw ``search_address`` payload for ``address``."""
        if not self.api_key:
            raise PropertyLookupError("RAPIDAPI_KEY is not configured")

        try:
            response = self._client.get("/search_address", params={"address": address})
        except httpx.TimeoutException as e:
            logger.warning("Zillow lookup timed out", address=address, error=str(e))
            raise PropertyLookupError("Property lookup timed out", retryable=True) from e
        except httpx.TransportError as e:
            logger.warning("Zillow lookup transport error", address=address, error=str(e))
            raise PropertyLookupError("Property lookup service unreachable", retryable=True) from e

        if response.status_code == 429:
            logger.warning("Zillow rate limit hit", address=address)
            raise PropertyLookupRateLimited()
        if response.status_code >= 400:
            logger.error("Zillow API error", address=address, status_code=response.status_code)
            raise PropertyLookupError(
                f"Zillow API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                retryable=response.status_code >= 500,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise PropertyLookupError("Zillow API returned invalid JSON") from e

        if not isinstance(data, dict):
            raise PropertyLookupError("Zillow API returned an unexpected payload")
        if data.get("error"):
            raise PropertyLookupError(f"Zillow API returned error: {data['error']}")

        return data

    def lookup(self, address: str, latitude: float, longitude: float) -> Dict[str, Any]:
        """Fetch and reshape the property record for a location."""
        logger.info("Zillow lookup", address=address)
        return transform_property(self.search_address(address), address, latitude, longitude)

    def close(self):
        self._client.close()


def get_property_lookup() -> ZillowClient:
    """Get a property lookup client from settings."""
    return ZillowClient(
        api_key=settings.rapidapi_key,
        host=settings.rapidapi_host,
        timeout=settings.property_lookup_timeout_seconds,
    )
