"""Shared Pydantic v2 base — camelCase on the wire, snake_case in Python."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts either casing on input; serializes with camelCase aliases.

    Decimal fields are emitted as strings in JSON mode, so money never
    crosses the API boundary as a float.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )
