"""Shared schema base.

The web client speaks camelCase (categoryId, skillsNeeded, isRead), the
ORM speaks snake_case. CamelModel bridges the two: fields are declared
in snake_case, serialized by alias, and accepted under either name.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class StatusMessage(CamelModel):
    message: str
