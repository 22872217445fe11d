from pydantic import BaseModel, ConfigDict


class TermQueryBaseModel(BaseModel):
    model_config = ConfigDict(
        protected_namespaces=(),
        arbitrary_types_allowed=True,
        populate_by_name=True,
    )
