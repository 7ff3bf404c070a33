import asyncio
import json
from urllib.parse import quote

from registry_fixtures import SqliteRegistryTestCase, make_input

from registry_core.domain.models import ModuleInput
from registry_core.infrastructure.database import module_table, utcnow
from registry_core.infrastructure.module_store import ModuleStore


class _FailingKeywordIndex:
    def __init__(self) -> None:
        self.calls = 0

    async def add_keywords(self, name, description, keywords):
        self.calls += 1
        raise RuntimeError("keyword store unavailable")


class TestModuleStore(SqliteRegistryTestCase):
    async def _insert_raw(self, name: str, version: str, package: str) -> int:
        now = utcnow()
        async with self.engine.begin() as conn:
            result = await conn.execute(
                module_table.insert().values(
                    name=name, version=version, package=package, gmt_create=now, gmt_modified=now,
                )
            )
            return result.inserted_primary_key[0]

    async def test_save_then_get_round_trips_manifest(self) -> None:
        package = {
            "name": "round",
            "version": "1.0.0",
            "dependencies": {"left-pad": "^1.0.0"},
            "maintainers": [{"name": "alice", "email": "alice@example.com"}],
            "readme": "%7B%22 looks legacy but is a plain value",
            "nested": {"list": [1, 2.5, None, True], "empty": {}},
        }
        store = self.registry.module_store

        await store.save(ModuleInput(name="round", version="1.0.0", author="alice", package=package))
        mod = await store.get("round", "1.0.0")

        self.assertEqual(mod.package, package)
        self.assertEqual(mod.author, "alice")

    async def test_save_is_idempotent_per_name_and_version(self) -> None:
        store = self.registry.module_store
        first = await store.save(make_input("idem", "1.0.0"))
        second = await store.save(make_input("idem", "1.0.0"))

        self.assertEqual(first.id, second.id)
        self.assertGreaterEqual(second.gmt_modified, first.gmt_modified)
        self.assertEqual(len(await store.list_by_name("idem")), 1)

    async def test_concurrent_saves_of_same_version_both_succeed(self) -> None:
        store = self.registry.module_store

        first, second = await asyncio.gather(
            store.save(make_input("race", "1.0.0")),
            store.save(make_input("race", "1.0.0")),
        )

        self.assertEqual(first.id, second.id)
        self.assertEqual(len(await store.list_by_name("race")), 1)

    async def test_republish_keeps_create_time(self) -> None:
        store = self.registry.module_store
        await store.save(make_input("keep", "1.0.0"))
        created = (await store.get("keep", "1.0.0")).gmt_create

        await store.save(make_input("keep", "1.0.0", description="second"))
        mod = await store.get("keep", "1.0.0")

        self.assertEqual(mod.gmt_create, created)
        self.assertEqual(mod.description, "second")

    async def test_save_extracts_description_and_dist(self) -> None:
        store = self.registry.module_store
        await store.save(make_input(
            "dist", "1.0.0",
            description="Tarball holder",
            dist={"tarball": "http://r/dist/-/dist-1.0.0.tgz", "shasum": "deadbeef", "size": 1024},
        ))

        mod = await store.get("dist", "1.0.0")
        self.assertEqual(mod.description, "Tarball holder")
        self.assertEqual(mod.dist_tarball, "http://r/dist/-/dist-1.0.0.tgz")
        self.assertEqual(mod.dist_shasum, "deadbeef")
        self.assertEqual(mod.dist_size, 1024)
        self.assertIsNotNone(mod.publish_time)

    async def test_save_forwards_normalized_keywords(self) -> None:
        store = self.registry.module_store
        await store.save(make_input("kw", "1.0.0", description="d", keywords=[" http ", "", "server"]))

        http = await self.registry.keyword_index.find_by_keyword("http")
        server = await self.registry.keyword_index.find_by_keyword("server")
        self.assertEqual([row.name for row in http], ["kw"])
        self.assertEqual([row.name for row in server], ["kw"])
        self.assertEqual(http[0].description, "d")

    async def test_keyword_failure_does_not_fail_save(self) -> None:
        keyword_index = _FailingKeywordIndex()
        store = ModuleStore(self.engine, keyword_index=keyword_index)

        with self.assertLogs("registry_core.infrastructure.module_store", level="ERROR"):
            saved = await store.save(make_input("flaky", "1.0.0", keywords="http"))

        self.assertEqual(keyword_index.calls, 1)
        self.assertEqual((await store.get("flaky", "1.0.0")).id, saved.id)

    async def test_get_missing_returns_none(self) -> None:
        self.assertIsNone(await self.registry.module_store.get("nope", "1.0.0"))
        self.assertIsNone(await self.registry.module_store.get_by_id(12345))

    async def test_legacy_manifest_is_decoded_on_read(self) -> None:
        package = {"name": "old", "version": "0.1.0", "description": "from before"}
        await self._insert_raw("old", "0.1.0", quote(json.dumps(package), safe="!~*'()"))

        mod = await self.registry.module_store.get("old", "0.1.0")
        self.assertEqual(mod.package, package)

    async def test_undecodable_manifest_is_logged_and_left_empty(self) -> None:
        await self._insert_raw("bad", "1.0.0", "{oops")
        await self.registry.module_store.save(make_input("bad", "2.0.0"))

        with self.assertLogs("registry_core.infrastructure.module_store", level="WARNING"):
            versions = await self.registry.module_store.list_by_name("bad")

        self.assertEqual([mod.version for mod in versions], ["2.0.0", "1.0.0"])
        self.assertIsNotNone(versions[0].package)
        self.assertIsNone(versions[1].package)

    async def test_malformed_legacy_encoding_is_logged_and_left_empty(self) -> None:
        await self._insert_raw("mangled", "1.0.0", "%7B%22name%22%3A%22%FF%22%7D")

        with self.assertLogs("registry_core.infrastructure.module_store", level="WARNING"):
            mod = await self.registry.module_store.get("mangled", "1.0.0")

        self.assertIsNone(mod.package)

    async def test_update_package_fields_merges_shallowly(self) -> None:
        store = self.registry.module_store
        saved = await store.save(make_input("merge", "1.0.0", description="x", extra={"keep": True}))

        result = await store.update_package_fields(saved.id, {"deprecated": "use other", "extra": {"new": 1}})

        self.assertEqual(result.id, saved.id)
        mod = await store.get_by_id(saved.id)
        self.assertEqual(mod.package["deprecated"], "use other")
        self.assertEqual(mod.package["extra"], {"new": 1})
        self.assertEqual(mod.package["description"], "x")

    async def test_update_on_missing_id_returns_none(self) -> None:
        store = self.registry.module_store
        self.assertIsNone(await store.update_package_fields(999, {"a": 1}))
        self.assertIsNone(await store.update_readme(999, "readme"))
        self.assertIsNone(await store.update_description(999, "desc"))

    async def test_update_readme(self) -> None:
        store = self.registry.module_store
        saved = await store.save(make_input("readme", "1.0.0"))

        await store.update_readme(saved.id, "# Hello")

        self.assertEqual((await store.get_by_id(saved.id)).package["readme"], "# Hello")

    async def test_update_description_updates_column_and_manifest(self) -> None:
        store = self.registry.module_store
        saved = await store.save(make_input("descr", "1.0.0", description="old"))

        await store.update_description(saved.id, "new")

        mod = await store.get_by_id(saved.id)
        self.assertEqual(mod.description, "new")
        self.assertEqual(mod.package["description"], "new")

    async def test_touch_last_modified_advances_timestamp(self) -> None:
        store = self.registry.module_store
        await store.save(make_input("touch", "1.0.0"))
        await store.save(make_input("touch", "1.1.0"))
        before = await store.get_last_modified("touch")

        touched = await store.touch_last_modified("touch")

        self.assertIsNotNone(touched)
        self.assertEqual(touched.id, (await store.get("touch", "1.1.0")).id)
        self.assertGreaterEqual(await store.get_last_modified("touch"), before)

    async def test_touch_and_last_modified_of_unknown_package(self) -> None:
        store = self.registry.module_store
        self.assertIsNone(await store.touch_last_modified("ghost"))
        self.assertIsNone(await store.get_last_modified("ghost"))

    async def test_list_by_name_newest_first(self) -> None:
        store = self.registry.module_store
        for version in ("1.0.0", "1.1.0", "2.0.0"):
            await store.save(make_input("many", version))

        versions = [mod.version for mod in await store.list_by_name("many")]
        self.assertEqual(versions, ["2.0.0", "1.1.0", "1.0.0"])

    async def test_get_latest_prefers_latest_tag(self) -> None:
        await self.publish("pinned", "1.0.0")
        await self.publish("pinned", "2.0.0-beta", tag="beta")

        latest = await self.registry.module_store.get_latest("pinned")
        self.assertEqual(latest.version, "1.0.0")

    async def test_get_latest_without_tag_uses_most_recent_row(self) -> None:
        store = self.registry.module_store
        await store.save(make_input("untagged", "1.0.0"))
        await store.save(make_input("untagged", "1.1.0"))

        self.assertEqual((await store.get_latest("untagged")).version, "1.1.0")
        self.assertIsNone(await store.get_latest("missing"))

    async def test_remove_by_name_and_versions(self) -> None:
        store = self.registry.module_store
        for version in ("1.0.0", "1.1.0", "2.0.0"):
            await store.save(make_input("gone", version))

        removed = await store.remove_by_name_and_versions("gone", ["1.0.0", "2.0.0"])
        self.assertEqual(removed, 2)
        self.assertEqual([mod.version for mod in await store.list_by_name("gone")], ["1.1.0"])

        await store.remove_by_name("gone")
        self.assertEqual(await store.list_by_name("gone"), [])
