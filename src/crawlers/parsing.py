"""HTML parsing helpers (selectolax)

Event pages and Eventbrite search pages embed schema.org data in
``<script type="application/ld+json">`` blocks. These helpers pull those
blocks out and map them to flat dicts the record parsers understand.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterator, List, Optional

from selectolax.parser import HTMLParser

from src.core.logging import logger

EVENTBRITE_BASE_URL = "https://www.eventbrite.com"
EVENTBRITE_ID_RE = re.compile(r"/e/(?:[^/?#]*-)?(\d+)")
EVENT_CARD_SELECTORS = (
    'article[class*="event-card"]',
    'div[class*="event-card"]',
    '[data-testid="event-card"]',
    "div.eds-event-card-content",
)


def iter_json_ld(html: str) -> Iterator[Dict[str, Any]]:
    """Yield every JSON-LD object on the page, flattening lists and @graph"""
    parser = HTMLParser(html)
    for node in parser.css('script[type="application/ld+json"]'):
        raw = node.text(deep=True, separator="", strip=True)
        if not raw:
            continue
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("[PARSING] Skipping malformed JSON-LD block")
            continue
        yield from _flatten(data)


def _flatten(data: Any) -> Iterator[Dict[str, Any]]:
    if isinstance(data, list):
        for item in data:
            yield from _flatten(item)
    elif isinstance(data, dict):
        if isinstance(data.get("@graph"), list):
            yield from _flatten(data["@graph"])
        else:
            yield data


def _is_event(obj: Dict[str, Any]) -> bool:
    kind = obj.get("@type")
    if isinstance(kind, list):
        return any(isinstance(k, str) and k.endswith("Event") for k in kind)
    return isinstance(kind, str) and kind.endswith("Event")


def json_ld_events(html: str) -> List[Dict[str, Any]]:
    """schema.org Event objects, including those wrapped in an ItemList"""
    events: List[Dict[str, Any]] = []
    for obj in iter_json_ld(html):
        if obj.get("@type") == "ItemList":
            for element in obj.get("itemListElement") or []:
                if isinstance(element, dict):
                    item = element.get("item") if isinstance(element.get("item"), dict) else element
                    if _is_event(item):
                        events.append(item)
        elif _is_event(obj):
            events.append(obj)
    return events


def eventbrite_id_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    match = EVENTBRITE_ID_RE.search(url)
    return match.group(1) if match else None


def json_ld_to_eventbrite_item(event: Dict[str, Any]) -> Dict[str, Any]:
    """Reshape a schema.org Event into the flat Eventbrite item layout"""
    location = event.get("location") if isinstance(event.get("location"), dict) else {}
    address = location.get("address")
    if isinstance(address, dict):
        address = ", ".join(
            part for part in (
                address.get("streetAddress"),
                address.get("addressLocality"),
                address.get("addressRegion"),
            ) if part
        )
    organizer = event.get("organizer")
    offers = event.get("offers")
    if isinstance(offers, list):
        offers = offers[0] if offers else {}
    if not isinstance(offers, dict):
        offers = {}
    price = offers.get("lowPrice", offers.get("price"))
    image = event.get("image")
    if isinstance(image, list):
        image = image[0] if image else None

    url = event.get("url")
    return {
        "id": eventbrite_id_from_url(url),
        "name": event.get("name"),
        "url": url,
        "start_date": event.get("startDate"),
        "end_date": event.get("endDate"),
        "summary": event.get("description") or "",
        "primary_venue": {"name": location.get("name"), "address": {"localized_address_display": address}},
        "is_online_event": "OnlineEventAttendanceMode" in str(event.get("eventAttendanceMode") or ""),
        "ticket_info": {"price": price, "is_free": str(price) in ("0", "0.0", "0.00")},
        "organizer": organizer if isinstance(organizer, dict) else {"name": organizer},
        "image_url": image if isinstance(image, str) else None,
    }


def eventbrite_cards(html: str, max_items: int) -> List[Dict[str, Any]]:
    """Fallback for search pages without JSON-LD: read the event cards

    Cards carry no machine-readable date, so these items usually need a
    detail backfill or get rejected downstream.
    """
    parser = HTMLParser(html)
    cards = []
    for selector in EVENT_CARD_SELECTORS:
        cards = parser.css(selector)
        if cards:
            break

    items: List[Dict[str, Any]] = []
    for card in cards[:max_items]:
        title_node = card.css_first("h3, h2")
        link_node = card.css_first('a[href*="/e/"]')
        title = title_node.text(strip=True) if title_node else ""
        href = (link_node.attributes.get("href") or "") if link_node else ""
        if len(title) < 3 or not href:
            continue
        url = href if href.startswith("http") else f"{EVENTBRITE_BASE_URL}{href}"
        venue_node = card.css_first('[class*="venue"], [class*="location"]')
        price_node = card.css_first('[class*="price"]')
        price_text = price_node.text(strip=True).lower() if price_node else ""
        items.append({
            "id": eventbrite_id_from_url(url),
            "name": title,
            "url": url.split("?")[0],
            "primary_venue": {"name": venue_node.text(strip=True) if venue_node else None},
            "is_free": "free" in price_text,
        })
    return items


def meta_content(html: str, *selectors: str) -> Optional[str]:
    """First non-empty ``content`` attribute among the given meta selectors"""
    parser = HTMLParser(html)
    for selector in selectors:
        node = parser.css_first(selector)
        if node is None:
            continue
        content = (node.attributes.get("content") or "").strip()
        if content:
            return content
    return None
