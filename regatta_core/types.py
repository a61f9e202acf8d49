"""Type definitions for the event document and its records."""
from __future__ import annotations

from typing import Dict, List, Literal, Optional, TypedDict


EntityType = Literal["settings", "category", "team", "race", "result"]
Operation = Literal["ADD", "UPDATE", "DELETE"]
RaceStatus = Literal["scheduled", "active", "finished"]
CrewRole = Literal[
    "Apoio",
    "Bolineiro",
    "Estás Mestre",
    "Proeiro",
    "Topo de Proa",
    "Topo de Ré",
]

ENTITY_TYPES: tuple[str, ...] = ("settings", "category", "team", "race", "result")
OPERATIONS: tuple[str, ...] = ("ADD", "UPDATE", "DELETE")
RACE_STATUSES: tuple[str, ...] = ("scheduled", "active", "finished")
CREW_ROLES: tuple[str, ...] = (
    "Apoio",
    "Bolineiro",
    "Estás Mestre",
    "Proeiro",
    "Topo de Proa",
    "Topo de Ré",
)

# entity type -> document collection key
COLLECTIONS: Dict[str, str] = {
    "settings": "settings",
    "category": "categories",
    "team": "teams",
    "race": "races",
    "result": "results",
}


class Settings(TypedDict, total=False):
    """Championship settings. The active record is tracked by activeSettingsId."""
    id: str
    type: str
    championshipTitle: str
    location: str
    dates: Optional[str]
    organizer: Optional[str]
    description: Optional[str]
    timestamp: str


class Category(TypedDict, total=False):
    id: str
    type: str
    name: str
    description: Optional[str]


class CrewMember(TypedDict):
    name: str
    role: str


class Team(TypedDict, total=False):
    id: str
    type: str
    name: str
    cidade: str  # home city
    categoryId: str
    skipper: str
    crew: List[CrewMember]


class Race(TypedDict, total=False):
    """
    A race within one category.

    startTime is set the first time the race becomes active; weather fields
    are a snapshot taken when the race was scheduled.
    """
    id: str
    type: str
    name: str
    categoryId: str
    date: str  # ISO instant
    status: str  # 'scheduled' | 'active' | 'finished'
    startTime: Optional[str]
    windSpeed: Optional[float]
    windDirection: Optional[str]
    temperature: Optional[float]
    rain: Optional[float]
    humidity: Optional[int]
    obsVisible: bool
    timestamp: str


class Result(TypedDict, total=False):
    id: str
    type: str
    raceId: str
    teamId: str
    position: int
    finishTime: Optional[str]  # HH:MM:SS.t
    elapsedTimeMs: Optional[int]
    notes: Optional[str]
    timestamp: str


class Document(TypedDict, total=False):
    """
    The whole event record.

    Collections keep insertion order; records are replaced whole, keyed by id.
    """
    settings: List[Settings]
    categories: List[Category]
    teams: List[Team]
    races: List[Race]
    results: List[Result]
    # Pointer to the current settings record, updated on write
    activeSettingsId: Optional[str]


class InstructionDict(TypedDict, total=False):
    """Structured wire form of a change instruction."""
    operation: str
    entityType: str
    payload: dict


class WeatherForecast(TypedDict):
    windSpeed: float
    windDirection: str
    temperature: float
    rain: float
    humidity: int
