import logging
from typing import Optional, Any, Dict, List, Callable

from google.api_core import exceptions as api_exceptions
from google.cloud.firestore_v1 import FieldFilter, Query
from google.cloud.firestore_v1.async_client import AsyncClient
from google.cloud.firestore_v1.async_query import AsyncQuery
from google.cloud.firestore_v1.base_document import BaseDocumentReference  # For type hint

from services.subscription import Subscription
from utils.exceptions import map_store_error

logger = logging.getLogger(__name__)

# Errors raised by the Firestore client that belong to the sync error taxonomy
STORE_ERRORS = (api_exceptions.GoogleAPICallError, api_exceptions.RetryError)


class BaseService:
    def __init__(self, db: AsyncClient, watch_db=None):
        self.db = db
        # Synchronous Client; only it exposes on_snapshot watch streams
        self.watch_db = watch_db

    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Retrieve a document from Firestore. None means the document does not exist."""
        try:
            doc_ref: BaseDocumentReference = self.db.collection(collection).document(doc_id)
            doc = await doc_ref.get()
        except STORE_ERRORS as e:
            raise map_store_error(e, f"{collection}/{doc_id}") from e
        return doc.to_dict() if doc.exists else None

    async def set_document(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        """Create or overwrite a document in Firestore."""
        try:
            doc_ref: BaseDocumentReference = self.db.collection(collection).document(doc_id)
            await doc_ref.set(data, merge=merge)
        except STORE_ERRORS as e:
            raise map_store_error(e, f"{collection}/{doc_id}") from e

    async def create_document(self, collection: str, doc_id: str, data: Dict[str, Any]) -> bool:
        """Create a document only if it does not exist yet.

        Returns False when another writer created it first.
        """
        try:
            doc_ref: BaseDocumentReference = self.db.collection(collection).document(doc_id)
            await doc_ref.create(data)
            return True
        except api_exceptions.Conflict:
            # AlreadyExists is a Conflict subclass
            return False
        except STORE_ERRORS as e:
            raise map_store_error(e, f"{collection}/{doc_id}") from e

    async def update_document(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Update fields in an existing document. Raises NotFoundError if it is missing."""
        try:
            doc_ref: BaseDocumentReference = self.db.collection(collection).document(doc_id)
            await doc_ref.update(data)
        except STORE_ERRORS as e:
            raise map_store_error(e, f"{collection}/{doc_id}") from e

    async def delete_document(self, collection: str, doc_id: str) -> None:
        """Delete a document from Firestore."""
        try:
            doc_ref: BaseDocumentReference = self.db.collection(collection).document(doc_id)
            await doc_ref.delete()
        except STORE_ERRORS as e:
            raise map_store_error(e, f"{collection}/{doc_id}") from e

    def _build_query(self, collection: str, filters: Optional[List[tuple]] = None,
                     order_by: Optional[tuple] = None, limit: Optional[int] = None, client=None):
        query = (client or self.db).collection(collection)

        if filters:
            for field, op, value in filters:
                query = query.where(filter=FieldFilter(field, op, value))

        if order_by:
            field, direction_str = order_by
            direction = Query.DESCENDING if direction_str == 'DESCENDING' else Query.ASCENDING
            query = query.order_by(field, direction=direction)

        if limit:
            query = query.limit(limit)
        return query

    async def query_documents(self, collection: str, filters: Optional[List[tuple]] = None,
                              order_by: Optional[tuple] = None,
                              limit: Optional[int] = None) -> List[tuple]:
        """Query a collection; returns (doc_id, data) pairs so callers keep the store-assigned ID."""
        try:
            query: AsyncQuery = self._build_query(collection, filters, order_by, limit)
            docs_snapshot = await query.get()
        except STORE_ERRORS as e:
            raise map_store_error(e, collection) from e
        return [(doc.id, doc.to_dict()) for doc in docs_snapshot if doc.exists]

    async def commit_batch(self, batch, resource: str) -> None:
        try:
            await batch.commit()
        except STORE_ERRORS as e:
            raise map_store_error(e, resource) from e

    # --- Live watches ---

    def watch_document(self, collection: str, doc_id: str,
                       transform: Callable[[str, Optional[Dict[str, Any]]], Any],
                       callback: Callable[[Any], None]) -> Subscription:
        """Watch one document. The callback receives transform(doc_id, data), data being None once deleted."""
        subscription = Subscription(f"{collection}/{doc_id}", callback)
        doc_ref = self.watch_db.collection(collection).document(doc_id)

        def on_snapshot(doc_snapshots, changes, read_time):
            snapshot = doc_snapshots[0] if doc_snapshots else None
            data = snapshot.to_dict() if snapshot is not None and snapshot.exists else None
            try:
                value = transform(doc_id, data)
            except Exception:
                logger.exception("Could not convert snapshot of %s/%s", collection, doc_id)
                return
            subscription.deliver(value)

        subscription.attach(doc_ref.on_snapshot(on_snapshot))
        return subscription

    def watch_query(self, collection: str,
                    transform: Callable[[List[tuple]], Any],
                    callback: Callable[[Any], None],
                    filters: Optional[List[tuple]] = None,
                    order_by: Optional[tuple] = None) -> Subscription:
        """Watch a query. The callback receives transform([(doc_id, data), ...]) for every full snapshot."""
        subscription = Subscription(collection, callback)
        query = self._build_query(collection, filters, order_by, client=self.watch_db)

        def on_snapshot(doc_snapshots, changes, read_time):
            rows = [(doc.id, doc.to_dict()) for doc in doc_snapshots if doc.exists]
            try:
                value = transform(rows)
            except Exception:
                logger.exception("Could not convert snapshot of %s", collection)
                return
            subscription.deliver(value)

        subscription.attach(query.on_snapshot(on_snapshot))
        return subscription
