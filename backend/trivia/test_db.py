from __future__ import annotations

from unittest import IsolatedAsyncioTestCase, TestCase

from pymongo import ASCENDING, DESCENDING, ReturnDocument

from .db import InMemoryCollection, InMemoryDatabase, Settings, create_database


class InMemoryCollectionTests(IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.scores = InMemoryCollection()
        for doc in (
            {"id": 1, "quiz_id": "a", "score": 8, "time": 5000},
            {"id": 2, "quiz_id": "a", "score": 10, "time": 9000},
            {"id": 3, "quiz_id": "a", "score": 10, "time": 3000},
            {"id": 4, "quiz_id": "b", "score": 2, "time": 100},
        ):
            await self.scores.insert_one(doc)

    async def test_multi_key_sort_and_limit(self):
        cursor = self.scores.find({"quiz_id": "a"}).sort([("score", DESCENDING), ("time", ASCENDING)]).limit(2)
        self.assertEqual([d["id"] async for d in cursor], [3, 2])

    async def test_query_operators(self):
        self.assertEqual([d["id"] for d in await self.scores.find({"id": {"$gt": 2}}).to_list()], [3, 4])
        self.assertEqual([d["id"] for d in await self.scores.find({"id": {"$in": [1, 4]}}).to_list()], [1, 4])
        with self.assertRaises(ValueError):
            await self.scores.find_one({"id": {"$regex": "x"}})

    async def test_returned_documents_are_copies(self):
        doc = await self.scores.find_one({"id": 1})
        doc["score"] = 99
        self.assertEqual((await self.scores.find_one({"id": 1}))["score"], 8)

    async def test_find_one_and_update_with_upsert(self):
        counters = InMemoryCollection()
        first = await counters.find_one_and_update(
            {"_id": "ids:scores"}, {"$inc": {"seq": 1}}, upsert=True, return_document=ReturnDocument.AFTER
        )
        before = await counters.find_one_and_update({"_id": "ids:scores"}, {"$inc": {"seq": 1}})
        self.assertEqual(first, {"_id": "ids:scores", "seq": 1})
        self.assertEqual(before["seq"], 1)
        self.assertEqual((await counters.find_one({"_id": "ids:scores"}))["seq"], 2)
        self.assertIsNone(await counters.find_one_and_update({"_id": "missing"}, {"$set": {"seq": 1}}))

    async def test_deletes(self):
        await self.scores.delete_one({"quiz_id": "a"})
        self.assertIsNone(await self.scores.find_one({"id": 1}))
        await self.scores.delete_many({"quiz_id": "a"})
        self.assertEqual([d["id"] for d in await self.scores.find().to_list()], [4])


class CreateDatabaseTests(TestCase):
    def test_in_memory_without_mongo_url(self):
        self.assertIsInstance(create_database(Settings(MONGO_URL=None)), InMemoryDatabase)
