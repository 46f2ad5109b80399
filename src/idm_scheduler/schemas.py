"""Base schema class and shared wire models.

Every model crossing the command/event channel serialises with camelCase
aliases (``queueLength``, ``cooldownEndsAt``) and accepts either the alias
or the Python field name on input.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SchemaBase(BaseModel):
    """Base class for all wire schemas."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """Dump to a JSON-compatible dict using camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class ApiResponse(SchemaBase):
    """Structured result of one remote API call.

    Returned by every Transport and, unchanged, to callers of the
    ``scheduleApiRequest`` command.
    """

    success: bool = Field(description="True for a 2xx response")
    status: int | None = Field(default=None, description="HTTP status (None on network error)")
    headers: dict[str, str] = Field(
        default_factory=dict, description="Response headers, lower-cased names"
    )
    data: Any = Field(default=None, description="Parsed JSON body")
    error: str | None = Field(default=None, description="Error message for failures")
    from_cache: bool = Field(default=False, description="Served from the result cache")
