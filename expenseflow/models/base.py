from typing import Annotated, Any, Dict, Optional, Type, TypeVar
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

# Stored ObjectIds and string references share one representation
PyObjectId = Annotated[str, BeforeValidator(str)]

ModelT = TypeVar("ModelT", bound="MongoModel")

class EmbeddedModel(BaseModel):
    """Sub-document stored inside a parent document; it has no `_id` of its own."""
    model_config = ConfigDict(use_enum_values=True)

class MongoModel(BaseModel):
    """
    Shared base for documents and embedded sub-documents.

    `id` maps onto Mongo's `_id`. Enum fields are held as their string
    values so documents can be written and queried without conversion.
    """
    id: Optional[PyObjectId] = Field(default=None, alias="_id")

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        use_enum_values=True,
    )

    @classmethod
    def from_mongo(cls: Type[ModelT], document: Optional[Dict[str, Any]]) -> Optional[ModelT]:
        if not document:
            return None
        fields = {k: v for k, v in document.items() if k != "_id"}
        return cls(id=document.get("_id"), **fields)

    def to_mongo(self, exclude_none: bool = False) -> Dict[str, Any]:
        """Document ready for insert/replace; an unset `_id` is left to the server."""
        document = self.model_dump(by_alias=True, exclude_none=exclude_none)
        if document.get("_id") is None:
            document.pop("_id", None)
        return document

    def to_api(self, exclude: Optional[set] = None) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude=exclude)
