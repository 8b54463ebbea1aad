"""Travel capability catalog: tool names, descriptions, and argument schemas.

The capabilities themselves (place search, hotel/flight/car lookup, weather,
distance) live outside this package. A deployment binds each name to an async
provider callable that takes the parsed argument dict and returns a result.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from travel_chat.ai.tools.base import Tool

Provider = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, Any]


def _object(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": required,
        "additionalProperties": False,
    }


_CITY = {"type": "string", "description": "City and country, e.g. 'Bali, Indonesia'"}


def _count(default: int) -> dict[str, Any]:
    return {"type": "number", "description": "Number of results to return", "default": default}


CATALOG: tuple[ToolSpec, ...] = (
    ToolSpec(
        name="calculate_distance",
        description="Calculate distances and durations between multiple locations in a route",
        parameters=_object(
            {
                "route": {
                    "type": "array",
                    "description": "Array of route segments with origin and destination points",
                    "items": {
                        "type": "object",
                        "properties": {
                            "origin": {
                                "type": "string",
                                "description": "Starting location (address, landmark, or coordinates)",
                            },
                            "destination": {
                                "type": "string",
                                "description": "Ending location (address, landmark, or coordinates)",
                            },
                        },
                        "required": ["origin", "destination"],
                    },
                },
                "mode": {
                    "type": "string",
                    "description": "Travel mode for the route calculation",
                    "enum": ["driving", "walking", "bicycling", "transit"],
                    "default": "driving",
                },
                "returnTotalOnly": {
                    "type": "boolean",
                    "description": "Return only total distance/duration instead of per-segment details",
                    "default": False,
                },
            },
            ["route"],
        ),
    ),
    ToolSpec(
        name="find_hotels",
        description="Find available hotels in a city",
        parameters=_object(
            {
                "city": _CITY,
                "stars": {"type": "number", "description": "Hotel star rating"},
                "checkIn": {"type": "string", "description": "Check-in date in YYYY-MM-DD format"},
                "checkOut": {"type": "string", "description": "Check-out date in YYYY-MM-DD format"},
                "adults": {"type": "number", "description": "Number of adult guests", "default": 2},
                "limit": {"type": "number", "description": "Maximum hotels to return", "default": 5},
            },
            ["city", "stars"],
        ),
    ),
    ToolSpec(
        name="find_top_rated_hotels",
        description="Find top-rated hotels in a city based on minimum star rating",
        parameters=_object(
            {
                "city": _CITY,
                "stars": {"type": "number", "description": "Minimum number of stars for hotels"},
                "count": _count(3),
            },
            ["city", "stars"],
        ),
    ),
    ToolSpec(
        name="find_car_rentals",
        description="Identify available vehicle rental services within a specified geographic location",
        parameters=_object({"city": _CITY, "count": _count(3)}, ["city", "count"]),
    ),
    ToolSpec(
        name="search_flights",
        description="Search available flights between two locations for given dates",
        parameters=_object(
            {
                "origin": {
                    "type": "string",
                    "description": "Airport code for departure (e.g., 'JOG' or 'CGK')",
                },
                "destination": {
                    "type": "string",
                    "description": "Airport code for arrival (e.g., 'DPS' or 'JOG')",
                },
                "departDate": {"type": "string", "description": "Departure date in YYYY-MM-DD format"},
                "returnDate": {
                    "type": "string",
                    "description": "Return date in YYYY-MM-DD format (optional)",
                },
            },
            ["origin", "destination", "departDate"],
        ),
    ),
    ToolSpec(
        name="find_restaurants",
        description="Find restaurants of a specific cuisine in a city",
        parameters=_object(
            {"city": _CITY, "cuisine": {"type": "string"}, "count": _count(3)},
            ["city", "cuisine"],
        ),
    ),
    ToolSpec(
        name="find_nightlife",
        description="Find nightlife venues in a city",
        parameters=_object(
            {"city": _CITY, "type": {"type": "string"}, "count": _count(3)},
            ["city", "type"],
        ),
    ),
    ToolSpec(
        name="find_meeting_venues",
        description="Find meeting venues in a city",
        parameters=_object(
            {"city": _CITY, "type": {"type": "string"}, "count": _count(3)},
            ["city", "type"],
        ),
    ),
    ToolSpec(
        name="find_top_rated_restaurants",
        description="Find top-rated restaurants of a specific cuisine in a city",
        parameters=_object(
            {"city": _CITY, "cuisine": {"type": "string"}, "count": _count(3)},
            ["city", "cuisine"],
        ),
    ),
    ToolSpec(
        name="find_top_rated_meeting_venues",
        description="Find top-rated meeting venues in a city",
        parameters=_object(
            {"city": _CITY, "type": {"type": "string"}, "count": _count(3)},
            ["city", "type"],
        ),
    ),
    ToolSpec(
        name="find_top_rated_attractions",
        description="Find top-rated tourist attractions in a city",
        parameters=_object({"city": _CITY, "count": _count(5)}, ["city"]),
    ),
    ToolSpec(
        name="find_travel_destinations",
        description="Suggest travel destinations and points of interest in a city",
        parameters=_object({"city": _CITY, "count": _count(5)}, ["city"]),
    ),
    ToolSpec(
        name="get_weather",
        description="Get weather information for a specific city",
        parameters=_object(
            {
                "city": {
                    "type": "string",
                    "description": "The name of the city to get weather information for",
                }
            },
            ["city"],
        ),
    ),
)

CATALOG_BY_NAME: dict[str, ToolSpec] = {spec.name: spec for spec in CATALOG}


class CapabilityTool(Tool):
    """A catalog entry bound to an external capability provider."""

    def __init__(self, spec: ToolSpec, provider: Provider):
        self._spec = spec
        self._provider = provider

    @property
    def name(self) -> str:
        return self._spec.name

    @property
    def description(self) -> str:
        return self._spec.description

    @property
    def input_schema(self) -> dict[str, Any]:
        return self._spec.parameters

    async def execute(self, **kwargs: Any) -> Any:
        return await self._provider(kwargs)
