# Team pass bundles: passes -> total price / per-pass price (USD)
PASS_PRICING = {
    3: {"price": 135, "per_pass": 45},
    6: {"price": 240, "per_pass": 40},
    9: {"price": 315, "per_pass": 35},
    12: {"price": 360, "per_pass": 30},
}

# Booking service ids -> Stripe price ids
SERVICE_PRICE_MAP = {
    "cryo-single": "price_1SukSWCoYuwTgPPSCOUg8KOe",
    "cryo-dual": "price_1SukSWCoYuwTgPPSKa0Rv99m",
    "cryo-full": "price_1SukSWCoYuwTgPPSCfv5rGHG",
    "compression": "price_1SukSWCoYuwTgPPSCd3uQNnt",
    "compression-addon": "price_1SukSWCoYuwTgPPS66tmuzY1",
    "redlight": "price_1SukSWCoYuwTgPPSoUrHiCNP",
    "redlight-addon": "price_1SukSWCoYuwTgPPSAZ1f9MG6",
    "vibration": "price_1SukSWCoYuwTgPPStMMD4Ome",
    "vibration-addon": "price_1SukSWCoYuwTgPPSdRZg8PXF",
    "body-sculpt": "price_1SukSWCoYuwTgPPSiPALX3UJ",
    "facial": "price_1SukSWCoYuwTgPPSQfK3DTQZ",
    "scalp": "price_1SukSWCoYuwTgPPSxkQ1S97I",
    "pkg-rapid": "price_1SukSWCoYuwTgPPSCOUg8KOe",
    "pkg-injury": "price_1SukSWCoYuwTgPPSCOUg8KOe",
    "pkg-elite": "price_1SukSWCoYuwTgPPSCOUg8KOe",
    "combo-express": "price_1SukSWCoYuwTgPPSCOUg8KOe",
    "combo-reset": "price_1SukSWCoYuwTgPPSCOUg8KOe",
    "combo-boost": "price_1SukSWCoYuwTgPPSCOUg8KOe",
    "combo-full": "price_1SukSWCoYuwTgPPSCOUg8KOe",
    "combo-lymph": "price_1SukSWCoYuwTgPPSCOUg8KOe",
}

DEFAULT_SERVICE_DURATION_MINUTES = 15
