# timetable_sync/services/clients/document_store.py

"""
Удаленное хранилище документов (CRUD по коллекциям) и его реализация в памяти.
Протокол хранилища для движка непрозрачен: он видит только четыре операции.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

import aiohttp

from config import Config
from timetable_sync.errors import (
    FetchError, FetchHttpError, FetchNetworkError, FetchParseError, FetchTimeout, RemoteWriteError,
)


log = logging.getLogger(__name__)

DOCUMENT_ID_FIELD = "$id"


class DocumentStore:
    """Интерфейс хранилища. filters - равенство полей, например {'userId': '42'}."""

    async def list_documents(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[dict]:
        raise NotImplementedError

    async def create_document(self, collection: str, data: dict, document_id: Optional[str] = None) -> dict:
        raise NotImplementedError

    async def update_document(self, collection: str, document_id: str, data: dict) -> dict:
        raise NotImplementedError

    async def delete_document(self, collection: str, document_id: str) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class InMemoryDocumentStore(DocumentStore):
    """Хранилище для локального режима и тестов."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, dict]] = {}

    def _collection(self, name: str) -> Dict[str, dict]:
        return self.collections.setdefault(name, {})

    async def list_documents(self, collection, filters=None):
        filters = filters or {}
        return [
            dict(doc) for doc in self._collection(collection).values()
            if all(doc.get(field) == value for field, value in filters.items())
        ]

    async def create_document(self, collection, data, document_id=None):
        document_id = document_id or uuid.uuid4().hex
        doc = {**data, DOCUMENT_ID_FIELD: document_id}
        self._collection(collection)[document_id] = doc
        return dict(doc)

    async def update_document(self, collection, document_id, data):
        docs = self._collection(collection)
        if document_id not in docs:
            raise RemoteWriteError(f"Документ '{document_id}' не найден в '{collection}'")
        docs[document_id].update(data)
        return dict(docs[document_id])

    async def delete_document(self, collection, document_id):
        return self._collection(collection).pop(document_id, None) is not None


class RestDocumentStore(DocumentStore):
    """
    REST-клиент хранилища:
    GET/POST  {base}/databases/{db}/collections/{collection}/documents
    PATCH/DELETE .../documents/{id}
    Фильтры передаются параметрами equal=field,value.
    """

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 database_id: Optional[str] = None, timeout: Optional[float] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = (base_url or Config.REMOTE_STORE_URL).rstrip('/')
        self.api_key = api_key if api_key is not None else Config.REMOTE_STORE_API_KEY
        self.database_id = database_id or Config.REMOTE_DATABASE_ID
        self.timeout = timeout or Config.FETCH_TIMEOUT
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self._session

    def _headers(self) -> dict:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.api_key:
            headers["X-Api-Key"] = self.api_key
        return headers

    def _documents_url(self, collection: str, document_id: Optional[str] = None) -> str:
        url = f"{self.base_url}/databases/{self.database_id}/collections/{collection}/documents"
        return f"{url}/{document_id}" if document_id else url

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        session = self._get_session()
        try:
            async with session.request(method, url, headers=self._headers(), **kwargs) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    log.warning(f"Хранилище: {method} {url} -> {resp.status}: {text[:200]}")
                    raise FetchHttpError(resp.status, url)
        except asyncio.TimeoutError as e:
            raise FetchTimeout(self.timeout) from e
        except aiohttp.ClientError as e:
            raise FetchNetworkError(str(e)) from e

        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise FetchParseError(str(e)) from e

    async def _write(self, method: str, url: str, **kwargs) -> Any:
        """Запись в хранилище: любой сбой запроса превращается в RemoteWriteError."""
        try:
            return await self._request(method, url, **kwargs)
        except FetchError as e:
            raise RemoteWriteError(f"{method} {url}: {e}") from e

    async def list_documents(self, collection, filters=None):
        params = [("equal", f"{field},{value}") for field, value in (filters or {}).items()]
        data = await self._request("GET", self._documents_url(collection), params=params)
        if not isinstance(data, dict) or not isinstance(data.get('documents'), list):
            raise FetchParseError(f"Неожиданный ответ хранилища для '{collection}'")
        return data['documents']

    async def create_document(self, collection, data, document_id=None):
        body = {"documentId": document_id or "unique()", "data": data}
        return await self._write("POST", self._documents_url(collection), json=body)

    async def update_document(self, collection, document_id, data):
        return await self._write("PATCH", self._documents_url(collection, document_id), json={"data": data})

    async def delete_document(self, collection, document_id):
        try:
            await self._request("DELETE", self._documents_url(collection, document_id))
        except FetchHttpError as e:
            # Документа уже нет - удалять нечего
            if e.status == 404:
                return False
            raise RemoteWriteError(f"DELETE {collection}/{document_id}: {e}") from e
        except FetchError as e:
            raise RemoteWriteError(f"DELETE {collection}/{document_id}: {e}") from e
        return True

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()


def create_document_store() -> DocumentStore:
    """REST-хранилище, если синхронизация включена, иначе хранилище в памяти."""
    if Config.REMOTE_SYNC_ENABLED and Config.REMOTE_STORE_URL:
        return RestDocumentStore()
    log.info("Удаленная синхронизация выключена, используется хранилище в памяти.")
    return InMemoryDocumentStore()
