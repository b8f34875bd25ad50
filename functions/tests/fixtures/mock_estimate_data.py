"""Mock estimate data fixtures for testing.

Canned generator output for the Harbor Reno office renovation used across
the validator, generation client and orchestrator tests, plus SerpAPI
shopping payloads and ledger documents.
"""

import copy
import json
from typing import Dict, Any, List, Optional
from unittest.mock import MagicMock


# =============================================================================
# HARBOR RENO - 2000 sqft office renovation, Chicago
# =============================================================================

HARBOR_RENO_PROJECT = {
    "scope": "Harbor Reno",
    "location": "Chicago, IL",
    "description": "2000sqft office renovation",
}

HARBOR_RENO_ESTIMATE: Dict[str, Any] = {
    "projectSummary": "Harbor Reno - 2,000 sqft office renovation in Chicago, IL",
    "paymentTerms": "30% deposit, 40% at rough-in, 30% on completion",
    "items": [
        {
            "id": "item-1",
            "name": "5/8in Type X drywall",
            "qty": 180,
            "unit": "sheet",
            "rate": 18.5,
            # Deliberately wrong; the validator re-derives 3330.0
            "total": 9999.0,
            "category": "Material",
            "csi_division": "Div 09 00 00 Finishes",
            "retailerName": "Home Depot",
            "storeLink": "https://www.homedepot.com/p/drywall-type-x",
            "logic": "2000 sqft of partitions, both faces, 10% waste",
        },
        {
            "id": "item-2",
            "name": "Drywall hang and finish",
            "qty": 64,
            "unit": "hr",
            "rate": 72.0,
            "total": 4608.0,
            "category": "Labor",
            "csi_division": "Div 09 00 00 Finishes",
            "retailerName": "Crew",
            "storeLink": "#",
        },
        {
            "id": "item-3",
            "name": "City of Chicago alteration permit",
            "qty": 1,
            "unit": "ea",
            "rate": 1250.0,
            "total": 1250.0,
            "category": "Permit",
            "csi_division": "Div 01 00 00 General Requirements",
            "retailerName": "City of Chicago",
            "storeLink": "https://www.chicago.gov/permits",
        },
    ],
    "insights": [
        {
            "type": "risk",
            "title": "Occupied building",
            "text": "Phased work around tenants may extend the schedule.",
            "impact": "medium",
        },
        {
            "type": "compliance",
            "title": "Fire-rated corridors",
            "text": "Corridor partitions must keep a 1-hour rating.",
            "impact": "HIGH",
        },
        {
            "type": "market",
            "title": "Drywall pricing",
            "text": "Gypsum board prices are stable in the Chicago market.",
            "impact": "low",
        },
    ],
    "marketConfidence": 0.82,
    "regionalMultiplier": 1.18,
    "suggestedAgenda": ["Confirm working hours", "Walk the corridors"],
}

# 180 * 18.5 + 64 * 72 + 1 * 1250
HARBOR_RENO_BASE_COST = 3330.0 + 4608.0 + 1250.0

MARGIN_CONFLICT_INSIGHT = {
    "type": "market",
    "title": "Conflicting historical margins",
    "text": "Past bids for similar work won at 5% and 45% margin; the most recent bid was weighted.",
    "impact": "medium",
}

IDENTIFIED_MATERIALS: List[str] = [
    "5/8in Type X drywall",
    "metal studs 3-5/8in",
    "acoustic ceiling tile",
    "commercial carpet tile",
    "LED troffer",
]


def harbor_reno_estimate(**overrides: Any) -> Dict[str, Any]:
    """Fresh copy of the Harbor Reno estimate with top-level overrides."""
    data = copy.deepcopy(HARBOR_RENO_ESTIMATE)
    data.update(overrides)
    return data


def harbor_reno_estimate_json(**overrides: Any) -> str:
    return json.dumps(harbor_reno_estimate(**overrides))


# =============================================================================
# SerpAPI payloads
# =============================================================================


def shopping_payload(title: str = "USG Sheetrock Firecode X 5/8 in. x 4 ft. x 8 ft.", price: float = 18.48) -> Dict[str, Any]:
    """SerpAPI google_shopping response with one strong and one weak match."""
    return {
        "search_metadata": {"status": "Success"},
        "shopping_results": [
            {
                "position": 1,
                "title": title,
                "source": "Home Depot",
                "price": f"${price:,.2f}",
                "extracted_price": price,
                "link": "https://www.homedepot.com/p/sheetrock-firecode-x",
                "thumbnail": "https://images.example.com/sheetrock.jpg",
            },
            {
                "position": 2,
                "title": "Generic gypsum board",
                "source": "Menards",
                "price": "$14.10",
                "extracted_price": 14.10,
                "link": "https://www.menards.com/p/gypsum",
            },
        ],
    }


EMPTY_SHOPPING_PAYLOAD: Dict[str, Any] = {
    "search_metadata": {"status": "Success"},
    "shopping_results": [],
}


# =============================================================================
# Ledger documents
# =============================================================================

WON_BID_RECENT = {
    "id": "est-recent",
    "userId": "user-123",
    "status": "won",
    "projectSummary": "Lakeview office refresh",
    "margins": 45,
}

WON_BID_OLDER = {
    "id": "est-older",
    "userId": "user-123",
    "status": "won",
    "projectSummary": "Loop office buildout",
    "margins": 5,
}


def make_doc(doc_id: str, data: Optional[Dict[str, Any]], exists: bool = True) -> MagicMock:
    """Firestore DocumentSnapshot stand-in."""
    return MagicMock(exists=exists, id=doc_id, to_dict=lambda: data)
