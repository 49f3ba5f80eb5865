"""
Base model shared by the DRACOON API schemas.

DRACOON speaks camelCase JSON, the models use snake_case attributes with camelCase aliases.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class DracoonModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_body(self, exclude_none: bool = True) -> dict:
        """Dump the model as a JSON request body using the camelCase aliases."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=exclude_none)
