"""Household electricity tariff classes (IDR per kWh)."""

ELECTRICITY_RATES: dict[str, float] = {
    "R1_900VA": 1352.0,
    "R1_1300VA": 1444.0,
    "R1_2200VA": 1444.0,
    "R2_3500VA": 1444.0,
    "R3_6600VA": 1444.0,
}

DEFAULT_SERVICE_TYPE = "R1_900VA"


def rate_for(service_type: str | None) -> float:
    """Unit rate for ``service_type``; unknown classes use the default class."""
    return ELECTRICITY_RATES.get(service_type or DEFAULT_SERVICE_TYPE, ELECTRICITY_RATES[DEFAULT_SERVICE_TYPE])
