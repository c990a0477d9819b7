import logging
import os
from typing import Optional

import firebase_admin
from firebase_admin import credentials
from google.cloud.firestore_v1.async_client import AsyncClient
from google.cloud.firestore_v1.client import Client

from config.settings import get_settings

logger = logging.getLogger(__name__)

_db_client: Optional[AsyncClient] = None  # Cache the client instances
_watch_client: Optional[Client] = None


def _credentials() -> credentials.Certificate:
    service_account_path = get_settings().service_account_path
    if not os.path.exists(service_account_path):
        raise ValueError(
            "Firebase credentials not found. Set FIREBASE_SERVICE_ACCOUNT_PATH to a service account file.")
    return credentials.Certificate(service_account_path)


def initialize_firebase() -> AsyncClient:
    """Initialize Firebase Admin SDK and return an Async Firestore client."""
    global _db_client
    if _db_client:
        logger.debug("Using cached Firestore AsyncClient.")
        return _db_client

    try:
        cred = _credentials()
        logger.info("Initializing Firebase from path: %s", get_settings().service_account_path)

        # Initialize Firebase Admin SDK only if not already initialized
        if not firebase_admin._apps:
            options = {}
            bucket = get_settings().storage_bucket
            if bucket:
                options['storageBucket'] = bucket
            firebase_admin.initialize_app(cred, options)
            logger.info("Firebase Admin App Initialized.")
        else:
            logger.info("Firebase Admin App already initialized.")

        _db_client = AsyncClient(project=cred.project_id, credentials=cred.get_credential())
        logger.info("Firestore AsyncClient Initialized for project: %s", _db_client.project)
        return _db_client
    except Exception as e:
        logger.error("Error initializing Firebase/Firestore: %s", e)
        raise


def get_watch_client() -> Client:
    """Synchronous Firestore client used only for on_snapshot watch streams.

    The async client has no watch API, so live subscriptions go through this one.
    """
    global _watch_client
    if _watch_client:
        return _watch_client
    initialize_firebase()
    cred = _credentials()
    _watch_client = Client(project=cred.project_id, credentials=cred.get_credential())
    logger.info("Firestore watch Client Initialized for project: %s", _watch_client.project)
    return _watch_client
