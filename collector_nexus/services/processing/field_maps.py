"""
Field name mapping tables, one per provider and record type.

Each table maps a provider field path to a canonical field name. Paths may
descend into nested objects (``seller.username``) and lists
(``card_faces.0.image_uris``); targets may name a key inside a canonical
map (``prices.eur``). Earlier entries win when several paths feed the same
target.
"""
from dataclasses import fields

from collector_nexus.services.sources.base import CanonicalCard, CardSet, MarketListing, PriceData

FieldMap = tuple[tuple[str, str], ...]

SCRYFALL_CARD: FieldMap = (
    ("set", "set_code"),
    ("image_uris", "images"),
    ("card_faces.0.image_uris", "images"),
    ("purchase_uris", "purchase_links"),
)

MTGJSON_CARD: FieldMap = (
    ("uuid", "id"),
    ("setCode", "set_code"),
    ("number", "collector_number"),
    ("text", "oracle_text"),
    ("type", "type_line"),
    ("manaCost", "mana_cost"),
    ("manaValue", "cmc"),
    ("convertedManaCost", "cmc"),
    ("colorIdentity", "color_identity"),
    ("purchaseUrls", "purchase_links"),
)

MTGJSON_SET: FieldMap = (
    ("releaseDate", "released_at"),
    ("type", "set_type"),
    ("totalSetSize", "card_count"),
    ("parentCode", "parent_set_code"),
    ("isOnlineOnly", "digital"),
    ("isFoilOnly", "foil_only"),
    ("isNonFoilOnly", "nonfoil_only"),
)

CARDTRADER_CARD: FieldMap = (
    ("expansion_code", "set_code"),
    ("expansion_name", "set_name"),
    ("number", "collector_number"),
    ("text", "oracle_text"),
    ("type", "type_line"),
    ("image_urls", "images"),
    ("price_eur", "prices.eur"),
    ("price_eur_foil", "prices.eur_foil"),
    ("url", "purchase_links.cardtrader"),
)

CARDTRADER_PRICE: FieldMap = (
    ("price_eur", "price"),
    ("price_eur_foil", "foil_price"),
)

# Browse API summaries plus the older Finding API names
EBAY_LISTING: FieldMap = (
    ("itemId", "id"),
    ("price.value", "price"),
    ("price.currency", "currency"),
    ("sellingStatus.currentPrice.value", "price"),
    ("sellingStatus.currentPrice.currencyId", "currency"),
    ("itemWebUrl", "url"),
    ("viewItemURL", "url"),
    ("image.imageUrl", "image_url"),
    ("galleryURL", "image_url"),
    ("categories.0.categoryName", "category"),
    ("primaryCategory.categoryName", "category"),
    ("conditionDisplayName", "condition"),
    ("seller.username", "seller_name"),
    ("sellerInfo.sellerUserName", "seller_name"),
    ("seller.feedbackPercentage", "seller_rating"),
    ("sellerInfo.positiveFeedbackPercent", "seller_rating"),
    ("shippingOptions.0.shippingCost.value", "shipping_cost"),
    ("shippingInfo.shippingServiceCost.value", "shipping_cost"),
    ("itemLocation.country", "location"),
    ("buyingOptions", "buying_options"),
)

FIELD_MAPS: dict[str, dict[str, FieldMap]] = {
    "scryfall": {"card": SCRYFALL_CARD},
    "mtgjson": {"card": MTGJSON_CARD, "set": MTGJSON_SET},
    "cardtrader": {"card": CARDTRADER_CARD, "price": CARDTRADER_PRICE},
    "ebay": {"listing": EBAY_LISTING},
}

CANONICAL_FIELDS = frozenset(
    f.name
    for model in (CanonicalCard, CardSet, PriceData, MarketListing)
    for f in fields(model)
) | {"created_at", "updated_at"}

# Non-canonical fields accepted without a warning
PASSTHROUGH_FIELDS = frozenset({
    "oracle_id",
    "lang",
    "layout",
    "artist",
    "border_color",
    "frame",
    "finishes",
    "reserved",
    "edhrec_rank",
    "identifiers",
    "foreign_data",
    "additional_images",
    "short_description",
    "marketplace_id",
})


def get_field_map(provider: str, record_type: str) -> FieldMap:
    """Mapping table for a provider and record type. Unknown pairs map nothing."""
    return FIELD_MAPS.get(provider, {}).get(record_type, ())


def aliases_for(provider: str, record_type: str, canonical: str) -> list[str]:
    """Provider paths that feed ``canonical`` for this provider and record type."""
    return [path for path, target in get_field_map(provider, record_type) if target == canonical]
