"""
Record and instruction schemas using Pydantic v2.

Records validate in two modes. Structural mode (context {"structural": True})
checks that required fields are present with the right shape, and is what the
interpreter runs on ADD. Full mode also checks domain values (crew roles, race
status, name lengths) and is what guards and builders run.
"""

import logging
import re
from typing import Any, ClassVar, Dict, List, Optional, Self, Type

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from .types import CREW_ROLES, ENTITY_TYPES, OPERATIONS, RACE_STATUSES

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255


def _structural_only(info: ValidationInfo) -> bool:
    return bool(info.context and info.context.get("structural"))


# ==================== RECORD SCHEMAS ====================


class CrewMemberSchema(BaseModel):
    """A crew member; older data stores the role under 'funcao'."""

    name: str
    role: str = Field(..., validation_alias=AliasChoices("role", "funcao"))

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str, info: ValidationInfo) -> str:
        if _structural_only(info):
            return v
        if not v.strip() or len(v) > MAX_NAME_LENGTH:
            raise ValueError(f"crew name must be 1-{MAX_NAME_LENGTH} characters")
        return v

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str, info: ValidationInfo) -> str:
        if _structural_only(info):
            return v
        if v not in CREW_ROLES:
            raise ValueError(f"role must be one of {CREW_ROLES}, got {v}")
        return v

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class RecordSchema(BaseModel):
    """Fields shared by every record: a discriminant type tag and a unique id."""

    id: str = Field(..., min_length=1, max_length=128, description="Record id")
    type: str = Field(..., min_length=1, max_length=20, description="Entity type tag")

    entity_type: ClassVar[str] = ""
    # Display fields that must be non-blank and bounded in full mode
    name_fields: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="after")
    def validate_type_tag(self) -> Self:
        if self.entity_type and self.type != self.entity_type:
            raise ValueError(f"type must be '{self.entity_type}', got '{self.type}'")
        return self

    @model_validator(mode="after")
    def validate_names(self, info: ValidationInfo) -> Self:
        if _structural_only(info):
            return self
        for field_name in self.name_fields:
            value = getattr(self, field_name)
            if not value.strip() or len(value) > MAX_NAME_LENGTH:
                raise ValueError(f"{field_name} must be 1-{MAX_NAME_LENGTH} characters")
        return self

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class SettingsSchema(RecordSchema):
    entity_type: ClassVar[str] = "settings"
    name_fields: ClassVar[tuple[str, ...]] = ("championshipTitle", "location")

    championshipTitle: str
    location: str
    dates: Optional[str] = None
    organizer: Optional[str] = None
    description: Optional[str] = None
    timestamp: Optional[str] = None


class CategorySchema(RecordSchema):
    entity_type: ClassVar[str] = "category"
    name_fields: ClassVar[tuple[str, ...]] = ("name",)

    name: str
    description: Optional[str] = None


class TeamSchema(RecordSchema):
    entity_type: ClassVar[str] = "team"
    name_fields: ClassVar[tuple[str, ...]] = ("name", "cidade", "skipper")

    name: str
    cidade: str = Field(..., description="Home city")
    categoryId: str = Field(..., min_length=1)
    skipper: str
    crew: List[CrewMemberSchema] = Field(default_factory=list)


class RaceSchema(RecordSchema):
    entity_type: ClassVar[str] = "race"
    name_fields: ClassVar[tuple[str, ...]] = ("name",)

    name: str
    categoryId: str = Field(..., min_length=1)
    date: str = Field(..., min_length=1, description="ISO instant")
    status: str = Field(..., description="'scheduled', 'active', 'finished'")
    startTime: Optional[str] = None
    windSpeed: Optional[float] = None
    windDirection: Optional[str] = None
    temperature: Optional[float] = None
    rain: Optional[float] = None
    humidity: Optional[float] = None
    obsVisible: bool = True
    timestamp: Optional[str] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str, info: ValidationInfo) -> str:
        if _structural_only(info):
            return v
        if v not in RACE_STATUSES:
            raise ValueError(f"status must be one of {RACE_STATUSES}, got {v}")
        return v


class ResultSchema(RecordSchema):
    entity_type: ClassVar[str] = "result"

    raceId: str = Field(..., min_length=1)
    teamId: str = Field(..., min_length=1)
    position: StrictInt
    finishTime: Optional[str] = None
    elapsedTimeMs: Optional[int] = None
    notes: Optional[str] = None
    timestamp: Optional[str] = None


RECORD_SCHEMAS: Dict[str, Type[RecordSchema]] = {
    "settings": SettingsSchema,
    "category": CategorySchema,
    "team": TeamSchema,
    "race": RaceSchema,
    "result": ResultSchema,
}


# ==================== INSTRUCTION SCHEMA ====================


class ValidatedInstruction(BaseModel):
    """Structured change instruction as received from a caller or the wire"""

    operation: str = Field(..., description="ADD, UPDATE or DELETE")
    entityType: str = Field(..., description="Entity type tag")
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("operation")
    @classmethod
    def validate_operation(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in OPERATIONS:
            raise ValueError(f"operation must be one of {OPERATIONS}, got {v}")
        return v

    @field_validator("entityType")
    @classmethod
    def validate_entity_type(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ENTITY_TYPES:
            raise ValueError(f"entityType must be one of {ENTITY_TYPES}, got {v}")
        return v

    @model_validator(mode="after")
    def validate_payload_id(self) -> Self:
        record_id = self.payload.get("id")
        if not isinstance(record_id, str) or not record_id.strip():
            raise ValueError(f"{self.operation} requires payload.id")
        return self

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class InputSanitizer:
    """Utility class for input sanitization"""

    @staticmethod
    def sanitize_string(value: Any, max_length: int = 255) -> str:
        """Sanitize string input"""
        if not isinstance(value, str):
            return str(value)[:max_length]

        value = value.strip()
        value = value[:max_length]
        value = value.replace("\0", "")

        return value

    @staticmethod
    def sanitize_name(name: Any) -> str:
        """Sanitize a display name, keeping accented letters (ç, ã, é...)"""
        name = InputSanitizer.sanitize_string(name, MAX_NAME_LENGTH)
        name = re.sub(r"[<>\x00-\x1f\x7f]", "", name)
        return name.strip()

    @staticmethod
    def validate_record(entity_type: str, record: dict, structural: bool = False) -> RecordSchema:
        """
        Check a record against the schema for its entity type.

        Args:
            structural: only check required fields and their shapes, skipping
                domain values such as crew roles and race status

        Returns:
            RecordSchema: the validated model (the record itself is not rewritten)

        Raises:
            ValueError: If the entity type is unknown or validation fails
        """
        schema = RECORD_SCHEMAS.get(entity_type)
        if schema is None:
            raise ValueError(f"Unknown entity type: {entity_type}")
        try:
            return schema.model_validate(record, context={"structural": structural})
        except ValidationError as e:
            logger.warning(f"Record validation failed for {entity_type}: {e}")
            raise ValueError(f"Invalid {entity_type} record: {str(e)}")

    @staticmethod
    def validate_instruction(data: dict) -> ValidatedInstruction:
        """
        Validate a structured instruction dictionary

        Raises:
            ValueError: If validation fails
        """
        try:
            return ValidatedInstruction.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Instruction validation failed: {e}")
            raise ValueError(f"Invalid instruction: {str(e)}")


# ==================== EXPORT ====================

__all__ = [
    "CrewMemberSchema",
    "RecordSchema",
    "SettingsSchema",
    "CategorySchema",
    "TeamSchema",
    "RaceSchema",
    "ResultSchema",
    "RECORD_SCHEMAS",
    "ValidatedInstruction",
    "InputSanitizer",
]
