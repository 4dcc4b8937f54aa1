from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional


LICENSE_PREVIEW = "PREVIEW"
LICENSE_STANDARD = "STANDARD"
LICENSE_COMMERCIAL = "COMMERCIAL"
LICENSE_EXTENDED = "EXTENDED"

LICENSE_TIERS = (LICENSE_PREVIEW, LICENSE_STANDARD, LICENSE_COMMERCIAL, LICENSE_EXTENDED)

DEFAULT_CURRENCY = "USD"

LICENSE_PRICING: Dict[str, Dict] = {
    LICENSE_PREVIEW: {
        "tier": LICENSE_PREVIEW,
        "price": Decimal("0.00"),
        "name": "Preview License",
        "description": "Watermarked preview for evaluation",
        "rank": 0,
    },
    LICENSE_STANDARD: {
        "tier": LICENSE_STANDARD,
        "price": Decimal("29.99"),
        "name": "Standard License",
        "description": "High-quality download for personal use",
        "rank": 1,
    },
    LICENSE_COMMERCIAL: {
        "tier": LICENSE_COMMERCIAL,
        "price": Decimal("99.99"),
        "name": "Commercial License",
        "description": "Commercial use with full rights",
        "rank": 2,
    },
    LICENSE_EXTENDED: {
        "tier": LICENSE_EXTENDED,
        "price": Decimal("199.99"),
        "name": "Extended License",
        "description": "Unlimited commercial use and modifications",
        "rank": 3,
    },
}


def normalize_license_tier(tier) -> Optional[str]:
    value = str(tier or "").strip().upper()
    return value if value in LICENSE_PRICING else None


def get_license_pricing(tier: str) -> Dict:
    key = normalize_license_tier(tier)
    if key is None:
        raise KeyError(f"unknown license tier: {tier}")
    return LICENSE_PRICING[key]


def is_free_tier(tier: str) -> bool:
    return get_license_pricing(tier)["price"] == Decimal("0")


def tier_rank(tier: str) -> int:
    return int(get_license_pricing(tier)["rank"])


def tiers_covering(tier: str) -> List[str]:
    """Tiers whose license also grants ``tier``-quality downloads."""
    rank = tier_rank(tier)
    return [key for key in LICENSE_TIERS if LICENSE_PRICING[key]["rank"] >= rank]


def license_capabilities(tier: str) -> Dict[str, bool]:
    key = get_license_pricing(tier)["tier"]
    return {
        "commercial_use": key in (LICENSE_COMMERCIAL, LICENSE_EXTENDED),
        "resale_allowed": key == LICENSE_EXTENDED,
        "modification_allowed": True,
    }


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor) -> Decimal:
    return (Decimal(int(amount_minor or 0)) / 100).quantize(Decimal("0.01"))


def get_pricing_catalog() -> List[Dict]:
    data = []
    for tier in LICENSE_TIERS:
        entry = LICENSE_PRICING[tier]
        data.append(
            {
                "tier": tier,
                "name": entry["name"],
                "description": entry["description"],
                "price": str(entry["price"]),
                "price_text": f"${entry['price']:.2f}",
                "currency": DEFAULT_CURRENCY,
                "is_free": entry["price"] == Decimal("0"),
                **license_capabilities(tier),
            }
        )
    return data
