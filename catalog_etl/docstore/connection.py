"""
MongoDB connection management for the secondary document store.

``get_document_db()`` mirrors ``db.connection.get_connection()``: a context
manager that opens the store, proves it is reachable with a ``ping`` and
closes it on exit. Reachability failures surface as
``StoreUnavailableError`` so callers can tell "could not open the store"
apart from a failure in the middle of a run.

Tests and embedding applications may pass an already constructed client
(e.g. ``mongomock.MongoClient()``); such a client is neither pinged nor
closed.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from catalog_etl.config import DocumentStoreConfig

logger = logging.getLogger(__name__)


class StoreUnavailableError(RuntimeError):
    """A store could not be opened; nothing has been written."""


@contextmanager
def get_document_db(
    config: DocumentStoreConfig,
    client: Optional[MongoClient] = None,
) -> Generator[Database, None, None]:
    """Context manager yielding the configured MongoDB database.

    Args:
        config: Document store section of ``AppConfig``.
        client: Pre-built client to use instead of connecting to ``config.uri``.

    Yields:
        The ``pymongo.database.Database`` named ``config.db_name``.

    Raises:
        StoreUnavailableError: If the server cannot be reached.
    """
    owned = client is None
    if owned:
        client = MongoClient(
            config.uri,
            serverSelectionTimeoutMS=config.server_selection_timeout_ms,
        )
        try:
            client.admin.command("ping")
        except PyMongoError as exc:
            client.close()
            raise StoreUnavailableError(
                f"MongoDB unreachable at {config.uri}: {exc}"
            ) from exc
        logger.debug("Connected to MongoDB at %s (db=%s)", config.uri, config.db_name)

    try:
        yield client[config.db_name]
    finally:
        if owned:
            client.close()
