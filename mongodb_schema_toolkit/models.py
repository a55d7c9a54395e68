from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Optional, Any, Union

# Re-import ASCENDING/DESCENDING or use literals 1/-1
from pymongo import ASCENDING, DESCENDING

class IndexOptions(BaseModel):
    """Options accepted on a declared index (field-level or compound)."""
    model_config = ConfigDict(extra="forbid")

    unique: Optional[bool] = Field(None, description="Reject documents with a duplicate value for the indexed key.")
    sparse: Optional[bool] = Field(None, description="Only index documents that contain the indexed field.")
    partialFilterExpression: Optional[Dict[str, Any]] = Field(None, description="Only index documents matching this filter.")
    expireAfterSeconds: Optional[int] = Field(None, ge=0, description="TTL in seconds for date fields.")
    name: Optional[str] = Field(None, description="Explicit index name. Does not take part in index identity.")
    default_language: Optional[str] = Field(None, description="Text index default language.")
    language_override: Optional[str] = Field(None, description="Text index field holding a per-document language.")
    weights: Optional[Dict[str, int]] = Field(None, description="Text index field weights.")

class IndexDeclaration(BaseModel):
    """One index a schema wants to exist, or one index the store reports."""
    key: Dict[str, Union[int, float, str]] = Field(..., description=f"Ordered mapping of dot-path to direction ({ASCENDING}, {DESCENDING}, 'hashed' or 'text').")
    options: Dict[str, Any] = Field(default_factory=dict, description="Index options, e.g. {'unique': True}.")

class SyncResult(BaseModel):
    created: int = 0
    dropped: int = 0
    unchanged: int = 0

class ValidateDocumentInput(BaseModel):
    collection_name: str = Field(..., description="The name of the registered collection whose schema should be used.")
    document: Dict[str, Any] = Field(..., description="The full document to validate for insertion or replacement.")

class ValidateUpdateInput(BaseModel):
    collection_name: str = Field(..., description="The name of the registered collection whose schema should be used.")
    update_doc: Dict[str, Any] = Field(..., description="The update document, e.g. {'$set': {'name': 'x'}, '$inc': {'age': 1}}.")

class SyncIndexesInput(BaseModel):
    collection_name: Optional[str] = Field(None, description="Optional: Name of a specific collection to sync. If None, all registered collections are synced.")
    force: bool = Field(False, description="Re-list and re-diff indexes even if the collection was already synced.")
