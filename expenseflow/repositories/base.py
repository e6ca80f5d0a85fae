from datetime import datetime
from typing import Generic, TypeVar, Any, Dict, List, Optional, Sequence, Tuple
from motor.motor_asyncio import AsyncIOMotorCollection
from bson import ObjectId
from pymongo import ReturnDocument
from expenseflow.models.base import MongoModel

T = TypeVar("T", bound=MongoModel)

Sort = Sequence[Tuple[str, int]]

def to_object_id(id: Any) -> Optional[ObjectId]:
    """Coerce an id to ObjectId; malformed ids map to None."""
    if isinstance(id, ObjectId):
        return id
    if isinstance(id, str) and ObjectId.is_valid(id):
        return ObjectId(id)
    return None

class BaseRepository(Generic[T]):
    def __init__(self, collection: AsyncIOMotorCollection, model_cls: type[T]):
        self.collection = collection
        self.model_cls = model_cls

    async def get(self, id: str) -> Optional[T]:
        """Get a document by ID."""
        oid = to_object_id(id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid})
        return self.model_cls.from_mongo(doc) if doc else None

    async def get_by_field(self, field: str, value: Any) -> Optional[T]:
        """Get a document by a specific field."""
        doc = await self.collection.find_one({field: value})
        return self.model_cls.from_mongo(doc) if doc else None

    async def list(self, filter: Optional[Dict[str, Any]] = None, skip: int = 0, limit: int = 100,
                   sort: Optional[Sort] = None) -> List[T]:
        """List documents with optional filter, sort and pagination."""
        cursor = self.collection.find(filter or {})
        if sort:
            cursor = cursor.sort(list(sort))
        cursor = cursor.skip(skip).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [self.model_cls.from_mongo(doc) for doc in docs]

    async def create(self, model: T) -> T:
        """Create a new document."""
        data = model.to_mongo()
        result = await self.collection.insert_one(data)
        model.id = str(result.inserted_id)
        return model

    async def update(self, id: str, update_data: Dict[str, Any]) -> Optional[T]:
        """Partial update by ID; returns the updated document or None if missing."""
        return await self.find_one_and_set({"_id": id}, update_data)

    async def find_one_and_set(self, filter: Dict[str, Any], update_data: Dict[str, Any]) -> Optional[T]:
        """
        Apply `$set` to the single document matching `filter` and return it
        after the update. None means nothing matched.
        """
        filter = dict(filter)
        if "_id" in filter:
            oid = to_object_id(filter["_id"])
            if oid is None:
                return None
            filter["_id"] = oid
        update_data = dict(update_data)
        update_data.setdefault("updated_at", datetime.utcnow())
        doc = await self.collection.find_one_and_update(
            filter,
            {"$set": update_data},
            return_document=ReturnDocument.AFTER
        )
        return self.model_cls.from_mongo(doc) if doc else None

    async def delete(self, id: str) -> bool:
        """Delete a document by ID."""
        oid = to_object_id(id)
        if oid is None:
            return False
        result = await self.collection.delete_one({"_id": oid})
        return result.deleted_count > 0

    async def count(self, filter: Optional[Dict[str, Any]] = None) -> int:
        """Count documents matching a filter."""
        return await self.collection.count_documents(filter or {})

    async def aggregate(self, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Run an aggregation pipeline and return raw result documents."""
        return await self.collection.aggregate(pipeline).to_list(length=None)
