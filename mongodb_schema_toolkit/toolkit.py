import sys
from functools import lru_cache
from typing import Any, Dict, List, Optional

from bson import json_util
from langchain_core.tools import StructuredTool
from pydantic import ValidationError as PydanticValidationError
from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import ConfigurationError as PymongoConfigurationError, ConnectionFailure, PyMongoError

from .collection import CollectionModel
from .exceptions import ConfigurationError, IndexSyncError, SchemaError, ValidationError
from .models import SyncIndexesInput, SyncResult, ValidateDocumentInput, ValidateUpdateInput
from .schema import DocumentSchema


class SchemaToolkit:
    """
    Schema-validated access to a single MongoDB database.

    Register a DocumentSchema per collection with model(), then write through
    the returned CollectionModel or hand get_tools() to a LangChain agent so it
    can check documents and update operators before they reach the database.
    """
    _client: Optional[MongoClient] = None
    _db: Optional[Database] = None

    def __init__(
        self,
        mongo_uri: str,
        db_name: str,
        auto_index: bool = True,
        server_selection_timeout_ms: int = 5000,
    ):
        """
        Initializes the toolkit with connection details.

        Args:
            mongo_uri (str): The MongoDB connection URI (e.g., "mongodb://...", "mongodb+srv://...").
                             Should be loaded securely (e.g., from environment variables).
            db_name (str): The name of the target database.
            auto_index (bool): Sync each collection's indexes before its first write.
            server_selection_timeout_ms (int): Timeout for the connection attempt.
        """
        if not mongo_uri:
            raise ConfigurationError("mongo_uri cannot be empty.")
        if not db_name:
            raise ConfigurationError("db_name cannot be empty.")
        if server_selection_timeout_ms <= 0:
            raise ConfigurationError("server_selection_timeout_ms must be positive.")

        self.mongo_uri = mongo_uri
        self.db_name = db_name
        self.auto_index = auto_index
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self._models: Dict[str, CollectionModel] = {}
        print(f"SchemaToolkit initialized for database '{self.db_name}'. Connection will be established on first use.")

    def _get_db(self) -> Database:
        """Establishes connection (if needed) and returns the Database object."""
        if self._client is None or self._db is None:
            print(f"Establishing new MongoDB connection to database '{self.db_name}'...")
            try:
                self._client = MongoClient(
                    self.mongo_uri,
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms
                )
                self._client.admin.command('ping')
                self._db = self._client[self.db_name]
                print("MongoDB connection successful.")
            except PymongoConfigurationError as e:
                self._client = None
                self._db = None
                print(f"Error: Invalid MongoDB URI configuration: {e}", file=sys.stderr)
                raise ConfigurationError(f"Invalid MongoDB URI configuration: {e}") from e
            except ConnectionFailure as e:
                self._client = None
                self._db = None
                print(f"Error: Could not connect to MongoDB server at {self.mongo_uri}. Details: {e}", file=sys.stderr)
                raise ConfigurationError(f"Could not connect to MongoDB: {e}") from e
            except PyMongoError as e:
                self._client = None
                self._db = None
                print(f"Error: An unexpected error occurred during MongoDB connection: {e}", file=sys.stderr)
                raise ConfigurationError(f"Unexpected error connecting to MongoDB: {e}") from e

        return self._db

    def connect(self, sync_indexes: bool = False) -> Database:
        """
        Connects eagerly instead of on first use.

        With `sync_indexes`, every registered collection has its indexes synced
        right after the connection is established.
        """
        db = self._get_db()
        if sync_indexes:
            self.sync_indexes()
        return db

    def close(self):
        """Closes the MongoDB client connection, if open."""
        if self._client:
            print("Closing MongoDB connection.")
            self._client.close()
            self._client = None
            self._db = None

    # --- Registry ---

    def model(self, collection_name: str, schema: DocumentSchema) -> CollectionModel:
        """
        Registers a schema for a collection and returns its CollectionModel.

        Registering the same name again replaces the previous schema.
        """
        if not collection_name:
            raise SchemaError("collection_name cannot be empty.")
        if not isinstance(schema, DocumentSchema):
            raise SchemaError(f"Collection '{collection_name}' needs a DocumentSchema, got {type(schema).__name__}.")
        model = CollectionModel(collection_name, schema, self._get_db, auto_index=self.auto_index)
        self._models[collection_name] = model
        return model

    def get_model(self, collection_name: str) -> CollectionModel:
        try:
            return self._models[collection_name]
        except KeyError:
            raise SchemaError(
                f"Collection '{collection_name}' has no registered schema. "
                f"Registered collections: {', '.join(self._models) or 'none'}."
            ) from None

    @property
    def models(self) -> Dict[str, CollectionModel]:
        return dict(self._models)

    # --- Validation ---

    def validate_document(self, collection_name: str, document: Dict[str, Any]) -> str:
        """
        Validates a full document against a registered collection schema.

        Returns:
            str: "Document is valid." followed by the parsed document, or the validation error found.
        """
        model = self.get_model(collection_name)
        try:
            parsed = model.parse(document)
        except ValidationError as e:
            return f"Validation Error: {e.message}"
        return f"Document is valid. Parsed document: {json_util.dumps(parsed)}"

    def validate_update(self, collection_name: str, update_doc: Dict[str, Any]) -> str:
        """
        Validates an update document (e.g. {'$set': {...}}) against a registered collection schema.

        Returns:
            str: "Update is valid." followed by the processed update, or the validation error found.
        """
        model = self.get_model(collection_name)
        try:
            processed = model.validate_update(update_doc)
        except ValidationError as e:
            return f"Validation Error: {e.message}"
        return f"Update is valid. Processed update: {json_util.dumps(processed)}"

    # --- Indexes ---

    def sync_indexes(self, collection_name: Optional[str] = None, force: bool = False) -> Dict[str, SyncResult]:
        """
        Syncs the indexes of one registered collection, or of all of them.

        Returns:
            Dict[str, SyncResult]: Per-collection created/dropped/unchanged counts.
        """
        if collection_name:
            models = [self.get_model(collection_name)]
        else:
            models = list(self._models.values())
            if not models:
                print("No collections registered. Nothing to sync.")

        results = {}
        for model in models:
            try:
                results[model.name] = model.sync_indexes(force=force)
            except IndexSyncError as e:
                print(f"Error: Index sync failed for '{model.name}': {e}", file=sys.stderr)
                raise
        return results

    # --- Tool wrappers ---

    def _validate_document_wrapper(self, **kwargs) -> str:
        """Internal wrapper to unpack args for validate_document from Pydantic."""
        try:
            validated_args = ValidateDocumentInput(**kwargs)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid input arguments for validate_mongodb_document: {e}") from e

        return self.validate_document(
            collection_name=validated_args.collection_name,
            document=validated_args.document
        )

    def _validate_update_wrapper(self, **kwargs) -> str:
        """Internal wrapper to unpack args for validate_update from Pydantic."""
        try:
            validated_args = ValidateUpdateInput(**kwargs)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid input arguments for validate_mongodb_update: {e}") from e

        return self.validate_update(
            collection_name=validated_args.collection_name,
            update_doc=validated_args.update_doc
        )

    def _sync_indexes_wrapper(self, **kwargs) -> str:
        """Internal wrapper to unpack args for sync_indexes and summarise the result."""
        try:
            validated_args = SyncIndexesInput(**kwargs)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid input arguments for sync_mongodb_indexes: {e}") from e

        try:
            results = self.sync_indexes(
                collection_name=validated_args.collection_name,
                force=validated_args.force
            )
        except IndexSyncError as e:
            return f"Index Sync Error: {e}"

        if not results:
            return "No collections registered. Nothing to sync."
        return "\n".join(
            f"- {name}: {r.created} created, {r.dropped} dropped, {r.unchanged} unchanged"
            for name, r in results.items()
        )

    @lru_cache(maxsize=1)
    def get_tools(self) -> List[StructuredTool]:
        """
        Returns a list of configured LangChain tools bound to this toolkit instance.
        """
        print("Generating LangChain tools for SchemaToolkit...")

        document_tool = StructuredTool.from_function(
            name="validate_mongodb_document",
            description=(
                f"Use this tool to validate a full document against the schema of a collection in the '{self.db_name}' MongoDB database "
                "before inserting it. "
                "ARGUMENTS: "
                "- collection_name (str): A registered collection. "
                "- document (dict): The document to validate. "
                "Returns 'Document is valid.' with the parsed document, or the first validation error with its field path."
            ),
            func=self._validate_document_wrapper,
            args_schema=ValidateDocumentInput
        )

        update_tool = StructuredTool.from_function(
            name="validate_mongodb_update",
            description=(
                f"Use this tool to validate a MongoDB update document (e.g. {{'$set': {{...}}, '$inc': {{...}}}}) against the schema "
                f"of a collection in the '{self.db_name}' database before running an update. Checks operators, field paths and value types. "
                "Returns 'Update is valid.' with the processed update, or the first error as '$operator.path: reason'."
            ),
            func=self._validate_update_wrapper,
            args_schema=ValidateUpdateInput
        )

        sync_tool = StructuredTool.from_function(
            name="sync_mongodb_indexes",
            description=(
                f"Use this tool to make the indexes in the '{self.db_name}' database match the registered schemas. "
                "Creates missing indexes and drops indexes the schema no longer declares. "
                "ARGUMENTS: "
                "- collection_name (Optional[str]): **OMIT this argument to sync ALL registered collections.** "
                "- force (bool, default=False): Re-check collections that were already synced."
            ),
            func=self._sync_indexes_wrapper,
            args_schema=SyncIndexesInput
        )

        return [document_tool, update_tool, sync_tool]
