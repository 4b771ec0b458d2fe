from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class RequestModel(BaseModel):
    """Request bodies accept both camelCase and snake_case field names."""

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class VersionedRequest(RequestModel):
    version: int = Field(..., ge=1, description="Booking version the caller last read")
