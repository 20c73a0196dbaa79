"""Product-deal catalog tools, backed by a static JSON file."""

import json
import logging
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
)

from pydantic import (
    BaseModel,
    ValidationError,
)

from concierge.config import settings
from concierge.core.errors import ToolExecutionError
from concierge.tools import ToolRegistry

logger = logging.getLogger(__name__)


class ProductDeal(BaseModel):
    """One catalog entry."""

    id: int
    name: str
    category: str
    price: float
    deal: str


def load_products(path: str | Path) -> List[ProductDeal]:
    """
    Read and validate the catalog at *path*.

    Raises
    ------
    ToolExecutionError
        If the file is missing or does not hold a list of product deals.
    """
    catalog_path = Path(path)
    try:
        raw = json.loads(catalog_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ToolExecutionError(f"Product catalog not found: {catalog_path}") from exc
    except json.JSONDecodeError as exc:
        raise ToolExecutionError(f"Product catalog is not valid JSON: {exc}") from exc

    if not isinstance(raw, list):
        raise ToolExecutionError("Product catalog must be a JSON array")
    try:
        return [ProductDeal.model_validate(item) for item in raw]
    except ValidationError as exc:
        raise ToolExecutionError(f"Invalid product entry: {exc}") from exc


products_registry = ToolRegistry(
    "products",
    "Access product and deal information from a JSON file",
    allow_override=settings.ALLOW_TOOL_OVERRIDE,
)


@products_registry.tool(
    "fetch_products",
    description="Retrieve a list of product deal data",
    parameters={"type": "object", "properties": {}},
    session_key="product_deals",
)
def fetch_products() -> Dict[str, Any]:
    """Return every product deal in the configured catalog."""
    products = load_products(settings.PRODUCTS_FILE)
    logger.debug("Loaded %d products from %s", len(products), settings.PRODUCTS_FILE)
    return {"products": [product.model_dump() for product in products]}
