from __future__ import annotations

import asyncio
import copy
from functools import lru_cache
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from pydantic_settings import BaseSettings, SettingsConfigDict
from pymongo import ReturnDocument


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ADMIN_KEY: str = "change-me"
    ADMIN_EMAIL: str = "admin@example.com"
    ADMIN_PASSWORD: str = "change-me"
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:8080"
    CORS_ORIGIN_REGEX: Optional[str] = None

    MONGO_URL: Optional[str] = None
    MONGO_DB: str = "speed_trivia"

    AZURE_STORAGE_CONNECTION_STRING: Optional[str] = None

    PRELOAD_DELAY_MS: int = 500
    COUNTDOWN_INTERVAL_MS: int = 1000
    CLOCK_TICK_MS: int = 10
    SCOREBOARD_LIMIT: int = 10
    FALLBACK_QUESTIONS_ENABLED: bool = True
    SESSION_IDLE_TIMEOUT_MS: int = 120_000
    SESSION_REAP_INTERVAL_MS: int = 30_000

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False


@lru_cache
def get_settings() -> Settings:
    return Settings()


SortSpec = Union[str, Sequence[Tuple[str, int]]]
Document = Dict[str, Any]

# Query and update operators understood by the in-memory store. Anything else
# raises, so a query that would silently behave differently on MongoDB fails loudly.
_QUERY_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "$gt": lambda actual, bound: actual is not None and actual > bound,
    "$gte": lambda actual, bound: actual is not None and actual >= bound,
    "$lt": lambda actual, bound: actual is not None and actual < bound,
    "$ne": lambda actual, value: actual != value,
    "$in": lambda actual, values: actual in values,
}


def _matches(doc: Document, query: Optional[Document]) -> bool:
    for field, expected in (query or {}).items():
        actual = doc.get(field)
        if not isinstance(expected, dict):
            if actual != expected:
                return False
            continue
        for op, operand in expected.items():
            check = _QUERY_OPERATORS.get(op)
            if check is None:
                raise ValueError(f"Unsupported query operator: {op}")
            if not check(actual, operand):
                return False
    return True


def _apply_update(doc: Document, update: Document) -> Document:
    for op, fields in update.items():
        if op == "$set":
            doc.update(copy.deepcopy(fields))
        elif op == "$inc":
            for field, amount in fields.items():
                doc[field] = doc.get(field, 0) + amount
        else:
            raise ValueError(f"Unsupported update operator: {op}")
    return doc


def _seed_from_query(query: Document) -> Document:
    # An upsert starts from the equality parts of its filter, as MongoDB does.
    return {k: copy.deepcopy(v) for k, v in query.items() if not isinstance(v, dict)}


class InMemoryCursor:
    """Lazy result set supporting the ``sort``/``limit``/``async for`` subset of pymongo's cursor."""

    def __init__(self, collection: "InMemoryCollection", query: Document):
        self._collection = collection
        self._query = query
        self._order: List[Tuple[str, int]] = []
        self._limit = 0
        self._results: Optional[Iterator[Document]] = None

    def sort(self, key_or_list: SortSpec, direction: int = 1) -> "InMemoryCursor":
        # Same call shapes as pymongo: sort("field", -1) or sort([("a", -1), ("b", 1)])
        self._order = [(key_or_list, direction)] if isinstance(key_or_list, str) else list(key_or_list)
        return self

    def limit(self, limit: int) -> "InMemoryCursor":
        self._limit = limit
        return self

    async def _fetch(self) -> Iterator[Document]:
        if self._results is None:
            docs = await self._collection._select(self._query)
            for field, direction in reversed(self._order):
                docs.sort(key=lambda d: d.get(field), reverse=direction < 0)
            if self._limit:
                docs = docs[: self._limit]
            self._results = iter(docs)
        return self._results

    def __aiter__(self) -> "InMemoryCursor":
        return self

    async def __anext__(self) -> Document:
        try:
            return next(await self._fetch())
        except StopIteration as exc:
            raise StopAsyncIteration from exc

    async def to_list(self, length: Optional[int] = None) -> List[Document]:
        docs = [doc async for doc in self]
        return docs if length is None else docs[:length]


class InMemoryCollection:
    """A list of documents behind an asyncio lock; reads and writes hand out copies."""

    def __init__(self):
        self._docs: List[Document] = []
        self._lock = asyncio.Lock()

    def _index_of(self, query: Document) -> Optional[int]:
        return next((i for i, doc in enumerate(self._docs) if _matches(doc, query)), None)

    async def _select(self, query: Document) -> List[Document]:
        async with self._lock:
            return [copy.deepcopy(doc) for doc in self._docs if _matches(doc, query)]

    def find(self, query: Optional[Document] = None) -> InMemoryCursor:
        return InMemoryCursor(self, query or {})

    async def find_one(self, query: Document) -> Optional[Document]:
        async with self._lock:
            idx = self._index_of(query)
            return None if idx is None else copy.deepcopy(self._docs[idx])

    async def insert_one(self, document: Document) -> None:
        async with self._lock:
            self._docs.append(copy.deepcopy(document))

    async def update_one(self, query: Document, update: Document, upsert: bool = False) -> None:
        await self.find_one_and_update(query, update, upsert=upsert)

    async def find_one_and_update(
        self,
        query: Document,
        update: Document,
        *,
        upsert: bool = False,
        return_document: bool = ReturnDocument.BEFORE,
    ) -> Optional[Document]:
        async with self._lock:
            idx = self._index_of(query)
            if idx is None:
                if not upsert:
                    return None
                before = None
                after = _apply_update(_seed_from_query(query), update)
                self._docs.append(after)
            else:
                before = self._docs[idx]
                after = _apply_update(copy.deepcopy(before), update)
                self._docs[idx] = after
            chosen = after if return_document == ReturnDocument.AFTER else before
            return copy.deepcopy(chosen)

    async def delete_one(self, query: Document) -> None:
        async with self._lock:
            idx = self._index_of(query)
            if idx is not None:
                del self._docs[idx]

    async def delete_many(self, query: Document) -> None:
        async with self._lock:
            self._docs = [doc for doc in self._docs if not _matches(doc, query)]


class InMemoryDatabase:
    """Collections the trivia backend uses, held in process memory."""

    def __init__(self):
        self.quizzes = InMemoryCollection()
        self.questions = InMemoryCollection()
        self.scores = InMemoryCollection()
        self.counters = InMemoryCollection()
        self.change_events = InMemoryCollection()


def create_database(config: Settings) -> Any:
    """Return a MongoDB database when ``MONGO_URL`` is set, else an in-memory one."""

    if not config.MONGO_URL:
        return InMemoryDatabase()

    from pymongo import AsyncMongoClient

    client = AsyncMongoClient(config.MONGO_URL)
    return client[config.MONGO_DB]
