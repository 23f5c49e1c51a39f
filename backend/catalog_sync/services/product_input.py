from typing import Any, Optional

from catalog_sync.services.field_mapper import MappedEntity

DEFAULT_TITLE = "Untitled Product"
_OPTION_NAME = "Title"
_OPTION_VALUE = "Default Title"


def build_product_set_input(
    entity: MappedEntity,
    entity_id: Optional[str] = None,
    variant_id: Optional[str] = None,
    location_id: Optional[str] = None,
) -> dict[str, Any]:
    """ProductSetInput for a single-variant product.

    Passing ``entity_id`` turns the input into an update of that product.
    Inventory quantities are only sent on create.
    """
    data = dict(entity.entity_data)
    seo = {}
    if "seoTitle" in data:
        seo["title"] = data.pop("seoTitle")
    if "seoDescription" in data:
        seo["description"] = data.pop("seoDescription")

    product: dict[str, Any] = {k: v for k, v in data.items() if v is not None}
    if seo:
        product["seo"] = seo
    if entity_id:
        product["id"] = entity_id
    elif not product.get("title"):
        product["title"] = DEFAULT_TITLE
    if not product.get("metafields"):
        product.pop("metafields", None)

    product["productOptions"] = [{"name": _OPTION_NAME, "values": [{"name": _OPTION_VALUE}]}]
    product["variants"] = [_build_variant(entity.variant_data, variant_id, location_id if not entity_id else None)]
    return product


def _build_variant(
    variant_data: dict[str, Any], variant_id: Optional[str], location_id: Optional[str]
) -> dict[str, Any]:
    variant: dict[str, Any] = {
        "optionValues": [{"optionName": _OPTION_NAME, "name": _OPTION_VALUE}],
        "inventoryPolicy": variant_data.get("inventoryPolicy") or "DENY",
    }
    if variant_id:
        variant["id"] = variant_id
    for key in ("sku", "barcode", "price", "compareAtPrice"):
        if variant_data.get(key) is not None:
            variant[key] = variant_data[key]

    inventory_item: dict[str, Any] = {"tracked": True}
    if variant_data.get("cost") is not None:
        inventory_item["cost"] = variant_data["cost"]
    if variant_data.get("weight") is not None:
        inventory_item["measurement"] = {
            "weight": {"value": variant_data["weight"], "unit": variant_data.get("weightUnit") or "KILOGRAMS"}
        }
    variant["inventoryItem"] = inventory_item

    quantity = variant_data.get("inventoryQuantity")
    if location_id and quantity is not None:
        variant["inventoryQuantities"] = [
            {"locationId": location_id, "name": "available", "quantity": quantity}
        ]
    return variant


def first_variant_id(product: Optional[dict[str, Any]]) -> Optional[str]:
    edges = ((product or {}).get("variants") or {}).get("edges") or []
    return (edges[0].get("node") or {}).get("id") if edges else None
