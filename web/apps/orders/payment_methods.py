"""Payment methods offered at checkout.

Every customer gets the universal methods; some countries add local ones.
Countries are matched on their ISO code or name as stored on the address.
"""

from typing import List, Optional

UNIVERSAL_METHODS = [
    {"id": "direct_bank", "name": "Direct bank transfer", "fee": "0.00", "processingTime": "1-3 days"},
    {"id": "crypto_direct", "name": "Cryptocurrency", "fee": "0.00", "processingTime": "instant"},
    {"id": "wallet_balance", "name": "Store wallet balance", "fee": "0.00", "processingTime": "instant"},
]

COUNTRY_METHODS = {
    "VE": [{"id": "bolivares_direct", "name": "Bolivares transfer", "fee": "0.00", "processingTime": "24 hours"}],
    "US": [{"id": "zelle_direct", "name": "Zelle", "fee": "0.00", "processingTime": "instant"}],
    "EU": [{"id": "sepa_direct", "name": "SEPA transfer", "fee": "0.00", "processingTime": "1-2 days"}],
}

COUNTRY_ALIASES = {
    "VENEZUELA": "VE",
    "UNITED STATES": "US",
    "USA": "US",
    "ES": "EU", "SPAIN": "EU",
    "DE": "EU", "GERMANY": "EU",
    "FR": "EU", "FRANCE": "EU",
    "IT": "EU", "ITALY": "EU",
    "PT": "EU", "PORTUGAL": "EU",
}


def available_methods(country: Optional[str]) -> List[dict]:
    key = (country or "").strip().upper()
    key = COUNTRY_ALIASES.get(key, key)
    return [dict(m) for m in UNIVERSAL_METHODS + COUNTRY_METHODS.get(key, [])]
