"""camelCase wire format for all API schemas.

Python code uses snake_case; JSON in and out of the API uses camelCase.
Either spelling is accepted on input.
"""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

CAMEL_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CamelModel(BaseModel):
    """Request bodies."""
    model_config = CAMEL_CONFIG


class CamelORMModel(CamelModel):
    """Response bodies built from ORM rows."""
    model_config = ConfigDict(**CAMEL_CONFIG, from_attributes=True)

    @classmethod
    def serialize(cls, obj) -> dict:
        """ORM row -> JSON-ready camelCase dict."""
        return cls.model_validate(obj).model_dump(mode="json", by_alias=True)
