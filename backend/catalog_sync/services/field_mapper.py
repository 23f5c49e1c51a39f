"""Feed record -> platform product payload.

Everything here is pure: no I/O, same input always gives the same output.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

VARIANT_PREFIX = "variant."

# Tried in order after the configured variant.sku mapping
SKU_CANDIDATES = ("sku", "SKU", "Sku", "productCode", "product_code", "item_code")

TEXT_LIMIT = 255
MIN_ATTRIBUTE_KEY_LENGTH = 2
DEFAULT_NAMESPACE = "custom"
DEFAULT_ATTRIBUTE_TYPE = "single_line_text_field"

_DROPPED_VALUES = {"", "null", "undefined"}
_TRUE_STRINGS = {"true", "1", "yes", "y", "on"}
_FALSE_STRINGS = {"false", "0", "no", "n", "off"}

_ENTITY_FIELDS = {
    "title": "title",
    "description": "descriptionHtml",
    "description_html": "descriptionHtml",
    "vendor": "vendor",
    "product_type": "productType",
    "tags": "tags",
    "status": "status",
    "handle": "handle",
    "seo_title": "seoTitle",
    "seo_description": "seoDescription",
}

_VARIANT_FIELDS = {
    "sku": "sku",
    "barcode": "barcode",
    "price": "price",
    "compare_at_price": "compareAtPrice",
    "inventory_policy": "inventoryPolicy",
    "inventory_quantity": "inventoryQuantity",
    "weight": "weight",
    "weight_unit": "weightUnit",
    "cost": "cost",
}

_MONEY_FIELDS = {"price", "compareAtPrice", "cost"}


@dataclass(frozen=True)
class MappedEntity:
    sku: Optional[str]
    entity_data: dict[str, Any]
    variant_data: dict[str, Any]
    source: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def sku_key(self) -> Optional[str]:
        return normalize_sku(self.sku) if self.sku else None

    @property
    def custom_attributes(self) -> list[dict[str, str]]:
        return self.entity_data.get("metafields", [])


def normalize_sku(sku: str) -> str:
    """Matching key for a SKU: trimmed and lower-cased."""
    return str(sku).strip().lower()


def resolve_sku(record: Mapping[str, Any], field_mapping: Optional[Mapping[str, str]] = None) -> Optional[str]:
    candidates: list[str] = []
    mapped = (field_mapping or {}).get(f"{VARIANT_PREFIX}sku")
    if mapped:
        candidates.append(mapped)
    candidates.extend(SKU_CANDIDATES)

    for key in candidates:
        sku = _clean_sku(record.get(key))
        if sku:
            return sku

    variant = record.get("variant")
    if isinstance(variant, Mapping):
        return _clean_sku(variant.get("sku"))
    return None


def _clean_sku(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def map_record(record: Mapping[str, Any], config: Any) -> MappedEntity:
    field_mapping: Mapping[str, str] = config.field_mapping or {}
    attribute_mappings: list[Mapping[str, Any]] = config.custom_attribute_mappings or []

    entity_data: dict[str, Any] = {"status": "ACTIVE"}
    variant_data: dict[str, Any] = {}

    for remote_field, feed_field in field_mapping.items():
        if not feed_field:
            continue
        value = record.get(feed_field)
        if value is None:
            continue
        if remote_field.startswith(VARIANT_PREFIX):
            _set_variant_field(variant_data, remote_field[len(VARIANT_PREFIX):], value)
        else:
            _set_entity_field(entity_data, remote_field, value)

    sku = resolve_sku(record, field_mapping)
    if sku:
        variant_data["sku"] = sku

    attributes = build_custom_attributes(record, attribute_mappings)
    if attributes:
        entity_data["metafields"] = attributes

    return MappedEntity(sku=sku, entity_data=entity_data, variant_data=variant_data, source=dict(record))


def _set_entity_field(entity_data: dict[str, Any], name: str, value: Any) -> None:
    target = _ENTITY_FIELDS.get(name, name)
    if target == "tags":
        tags = _to_list(value)
        if tags:
            entity_data["tags"] = tags
    elif target == "status":
        entity_data["status"] = str(value).strip().upper() or "ACTIVE"
    else:
        entity_data[target] = value


def _set_variant_field(variant_data: dict[str, Any], name: str, value: Any) -> None:
    target = _VARIANT_FIELDS.get(name, name)
    if target in _MONEY_FIELDS:
        money = _to_decimal_string(value)
        if money is None:
            logger.warning("Skipping non-numeric %s value %r", target, value)
            return
        variant_data[target] = money
    elif target == "inventoryQuantity":
        quantity = _to_int(value)
        if quantity is not None:
            variant_data[target] = quantity
    elif target == "weight":
        weight = _to_decimal_string(value)
        if weight is not None:
            variant_data[target] = float(weight)
    elif target in ("inventoryPolicy", "weightUnit"):
        variant_data[target] = str(value).strip().upper()
    elif target in ("sku", "barcode"):
        text = str(value).strip()
        if text:
            variant_data[target] = text
    else:
        variant_data[target] = value


def build_custom_attributes(
    record: Mapping[str, Any], mappings: list[Mapping[str, Any]]
) -> list[dict[str, str]]:
    attributes: list[dict[str, str]] = []

    for mapping in mappings:
        kind = mapping.get("mapping_kind", "single")
        namespace = mapping.get("namespace") or DEFAULT_NAMESPACE
        attr_type = mapping.get("type") or DEFAULT_ATTRIBUTE_TYPE
        source_value = record.get(mapping.get("source_key", ""))

        if kind == "single":
            key = mapping.get("key") or ""
            if len(key) < MIN_ATTRIBUTE_KEY_LENGTH:
                logger.warning("Rejecting custom attribute with key %r: too short", key)
                continue
            if source_value is None or source_value == "":
                continue
            value = format_attribute_value(source_value, attr_type)
            if value is not None:
                attributes.append({"namespace": namespace, "key": key, "value": value, "type": attr_type})

        elif kind == "derived_from_array":
            if not isinstance(source_value, list):
                continue
            key_source = mapping.get("array_key_source")
            value_source = mapping.get("array_value_source")
            for item in source_value:
                if not isinstance(item, Mapping):
                    continue
                raw_key = item.get(key_source)
                item_value = item.get(value_source)
                if not raw_key or item_value is None or item_value == "":
                    continue
                key = slugify_key(str(raw_key))
                if len(key) < MIN_ATTRIBUTE_KEY_LENGTH:
                    logger.warning("Rejecting derived custom attribute key %r: too short", key)
                    continue
                value = format_attribute_value(item_value, attr_type)
                if value is not None:
                    attributes.append({"namespace": namespace, "key": key, "value": value, "type": attr_type})

        else:
            logger.warning("Unknown custom attribute mapping kind %r", kind)

    return attributes


def slugify_key(text: str) -> str:
    return re.sub(r"[^a-z0-9_]", "_", text.strip().lower())[:64]


def format_attribute_value(value: Any, attr_type: str) -> Optional[str]:
    """Format a feed value for a typed custom attribute. None means "do not send"."""
    if value is None:
        return None

    if attr_type.startswith("list."):
        formatted = _format_list(value, attr_type[len("list."):])
    elif attr_type == "single_line_text_field":
        formatted = str(value)[:TEXT_LIMIT]
    elif attr_type == "number_integer":
        number = _to_int(value)
        formatted = None if number is None else str(number)
    elif attr_type == "number_decimal":
        formatted = _to_decimal_string(value)
    elif attr_type == "boolean":
        flag = _to_bool(value)
        formatted = None if flag is None else str(flag).lower()
    elif attr_type == "json":
        formatted = _format_json(value)
    elif attr_type in ("date", "date_time"):
        if isinstance(value, datetime):
            formatted = value.date().isoformat() if attr_type == "date" else value.isoformat()
        elif isinstance(value, date):
            formatted = value.isoformat()
        else:
            formatted = str(value)
    elif isinstance(value, (dict, list)):
        formatted = json.dumps(value)
    else:
        formatted = str(value)

    if formatted is None or formatted.strip() in _DROPPED_VALUES:
        return None
    return formatted


def _format_list(value: Any, base_type: str) -> Optional[str]:
    if isinstance(value, str) and value.strip().startswith("["):
        try:
            value = json.loads(value)
        except ValueError:
            pass

    items = _to_list(value)
    if base_type == "single_line_text_field":
        items = [item[:TEXT_LIMIT] for item in items]
    if not items:
        return None
    return json.dumps(items)


def _to_list(value: Any) -> list[str]:
    if isinstance(value, str):
        raw = value.split(",")
    elif isinstance(value, (list, tuple)):
        raw = list(value)
    else:
        raw = [value]
    items = []
    for item in raw:
        if item is None:
            continue
        text = str(item).strip()
        if text:
            items.append(text)
    return items


def _format_json(value: Any) -> Optional[str]:
    if isinstance(value, str):
        try:
            json.loads(value)
        except ValueError:
            logger.warning("Dropping invalid JSON custom attribute value")
            return None
        return value
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return None


def _to_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


def _to_decimal_string(value: Any) -> Optional[str]:
    number = _to_decimal(value)
    return None if number is None else format(number, "f")


def _to_int(value: Any) -> Optional[int]:
    number = _to_decimal(value)
    return None if number is None else int(number)


def _to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    return None
