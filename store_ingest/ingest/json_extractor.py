"""Extract product data from embedded JSON-LD in HTML pages."""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from selectolax.parser import HTMLParser

logger = logging.getLogger(__name__)


def _as_tree(html: Union[str, HTMLParser]) -> HTMLParser:
    return html if isinstance(html, HTMLParser) else HTMLParser(html)


def _type_of(obj: Dict[str, Any]) -> str:
    obj_type = obj.get("@type", "")
    if isinstance(obj_type, list):
        obj_type = obj_type[0] if obj_type else ""
    return str(obj_type)


def extract_json_ld(html: Union[str, HTMLParser]) -> List[Dict[str, Any]]:
    """
    Extract JSON-LD structured data from script tags.

    Top-level arrays and @graph containers are flattened, so the result is
    a flat list of JSON-LD objects.
    """
    results: List[Dict[str, Any]] = []
    tree = _as_tree(html)
    for script in tree.css('script[type="application/ld+json"]'):
        try:
            data = json.loads(script.text() or "")
        except json.JSONDecodeError:
            continue

        stack = data if isinstance(data, list) else [data]
        for obj in stack:
            if not isinstance(obj, dict):
                continue
            graph = obj.get("@graph")
            if isinstance(graph, list):
                results.extend(item for item in graph if isinstance(item, dict))
            else:
                results.append(obj)
    return results


def extract_products_from_json_ld(json_ld_objects: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Extract product data from JSON-LD structured data.

    Looks for Product (and ProductGroup) schema.org types, including those
    nested in an ItemList.
    """
    products = []

    for obj in json_ld_objects:
        obj_type = _type_of(obj)
        if obj_type in ("Product", "ProductGroup"):
            products.append(obj)
        elif obj_type == "ItemList":
            for item in obj.get("itemListElement", []):
                if isinstance(item, dict):
                    item_obj = item.get("item", {})
                    if isinstance(item_obj, dict) and _type_of(item_obj) == "Product":
                        products.append(item_obj)

    return products


def product_price(product: Dict[str, Any]) -> Optional[str]:
    """Price from a Product's offers (single offer, offer list or AggregateOffer)."""
    offers = product.get("offers")
    if isinstance(offers, list):
        offers = offers[0] if offers else None
    if not isinstance(offers, dict):
        return None

    for key in ("price", "lowPrice"):
        value = offers.get(key)
        if value not in (None, ""):
            return str(value)

    price_spec = offers.get("priceSpecification")
    if isinstance(price_spec, dict) and price_spec.get("price") not in (None, ""):
        return str(price_spec["price"])
    return None


def product_images(product: Dict[str, Any]) -> List[str]:
    """Image URLs from a Product, in document order."""
    image = product.get("image")
    if isinstance(image, str):
        return [image]
    images = []
    if isinstance(image, dict):
        image = [image]
    if isinstance(image, list):
        for item in image:
            if isinstance(item, str):
                images.append(item)
            elif isinstance(item, dict) and item.get("url"):
                images.append(str(item["url"]))
    return images


def breadcrumb_names(json_ld_objects: List[Dict[str, Any]]) -> List[str]:
    """Names from BreadcrumbList objects, in position order."""
    names = []
    for obj in json_ld_objects:
        if _type_of(obj) != "BreadcrumbList":
            continue
        elements = [e for e in obj.get("itemListElement", []) if isinstance(e, dict)]
        elements.sort(key=lambda e: e.get("position") or 0)
        for element in elements:
            name = element.get("name")
            if not name and isinstance(element.get("item"), dict):
                name = element["item"].get("name")
            if name:
                names.append(str(name).strip())
    return names
