"""Shared base for API schemas."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serialises as camelCase on the wire; accepts either case on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
