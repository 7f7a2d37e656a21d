"""Request model base shared by the routers"""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Required and non-empty: empty strings are reported as missing fields
RequiredStr = Annotated[str, Field(min_length=1)]


class CamelModel(BaseModel):
    """Body model whose wire names are camelCase (contestId, userEmail, ...)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
