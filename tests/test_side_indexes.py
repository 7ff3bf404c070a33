from registry_fixtures import SqliteRegistryTestCase


class TestKeywordIndex(SqliteRegistryTestCase):
    async def test_upsert_refreshes_description(self) -> None:
        keywords = self.registry.keyword_index

        first = await keywords.upsert("a", "http", "old description")
        second = await keywords.upsert("a", "http", "new description")

        self.assertEqual(first.id, second.id)
        rows = await keywords.find_by_keyword("http")
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].description, "new description")

    async def test_find_by_keyword_newest_first_with_limit(self) -> None:
        keywords = self.registry.keyword_index
        for name in ("a", "b", "c"):
            await keywords.upsert(name, "http", f"{name} package")
        await keywords.upsert("d", "https", "not an exact match")

        self.assertEqual([row.name for row in await keywords.find_by_keyword("http")], ["c", "b", "a"])
        self.assertEqual([row.name for row in await keywords.find_by_keyword("http", limit=2)], ["c", "b"])


class TestStarRegistry(SqliteRegistryTestCase):
    async def test_add_is_idempotent(self) -> None:
        stars = self.registry.star_registry

        first = await stars.add("pkg", "alice")
        second = await stars.add("pkg", "alice")

        self.assertEqual(first.id, second.id)
        self.assertEqual(await stars.list_stargazers("pkg"), ["alice"])

    async def test_add_remove_round_trip(self) -> None:
        stars = self.registry.star_registry
        await stars.add("pkg", "alice")
        await stars.add("pkg", "bob")
        await stars.add("other", "bob")

        self.assertEqual(await stars.remove("pkg", "alice"), 1)
        self.assertEqual(await stars.remove("pkg", "alice"), 0)

        self.assertEqual(await stars.list_stargazers("pkg"), ["bob"])
        self.assertEqual(await stars.list_starred_names("bob"), ["pkg", "other"])
        self.assertEqual(await stars.list_starred_names("alice"), [])
