import pytest

from skillsync.registry import (
    MODE_COPY,
    MODE_LINK,
    SOURCE_LOCAL,
    Skill,
    SkillRegistry,
    SyncTarget,
    new_skill_id,
)


def _skill(name: str, tmp_path) -> Skill:
    return Skill(
        id=new_skill_id(name),
        name=name,
        source_type=SOURCE_LOCAL,
        source_ref=str(tmp_path / "src" / name),
        central_path=str(tmp_path / "central" / name),
    )


def test_new_skill_id_is_slug_prefixed_and_unique():
    first = new_skill_id("My Skill!")
    second = new_skill_id("My Skill!")
    assert first.startswith("my-skill-")
    assert first != second


@pytest.mark.asyncio
async def test_create_assigns_dense_sort_order_and_lists_in_order(tmp_path):
    registry = SkillRegistry(tmp_path / "registry.db")
    try:
        created = [await registry.create_skill(_skill(name, tmp_path)) for name in ("a", "b", "c")]
        assert [skill.sort_order for skill in created] == [0, 1, 2]

        listed = await registry.list_skills()
        assert [skill.name for skill in listed] == ["a", "b", "c"]
        assert await registry.count_skills() == 3
    finally:
        await registry.close()


@pytest.mark.asyncio
async def test_delete_closes_sort_order_gap_and_drops_targets(tmp_path):
    registry = SkillRegistry(tmp_path / "registry.db")
    try:
        a, b, c = [await registry.create_skill(_skill(name, tmp_path)) for name in ("a", "b", "c")]
        await registry.upsert_sync_target(
            SyncTarget(skill_id=b.id, tool_id="cursor", mode=MODE_LINK, target_path="/x/b")
        )

        assert await registry.delete_skill(b.id) is True
        assert await registry.delete_skill(b.id) is False

        listed = await registry.list_skills()
        assert [(skill.name, skill.sort_order) for skill in listed] == [("a", 0), ("c", 1)]
        assert await registry.list_sync_targets(b.id) == []
    finally:
        await registry.close()


@pytest.mark.asyncio
async def test_reorder_appends_unlisted_and_ignores_unknown_ids(tmp_path):
    registry = SkillRegistry(tmp_path / "registry.db")
    try:
        a, b, c = [await registry.create_skill(_skill(name, tmp_path)) for name in ("a", "b", "c")]

        order = await registry.reorder_skills([c.id, "missing", c.id, a.id])

        assert order == [c.id, a.id, b.id]
        listed = await registry.list_skills()
        assert [(skill.name, skill.sort_order) for skill in listed] == [("c", 0), ("a", 1), ("b", 2)]
    finally:
        await registry.close()


@pytest.mark.asyncio
async def test_sync_target_upsert_replaces_existing_pair(tmp_path):
    registry = SkillRegistry(tmp_path / "registry.db")
    try:
        skill = await registry.create_skill(_skill("alpha", tmp_path))
        await registry.upsert_sync_target(
            SyncTarget(skill_id=skill.id, tool_id="codex", mode=MODE_LINK, target_path="/t/alpha")
        )
        await registry.upsert_sync_target(
            SyncTarget(skill_id=skill.id, tool_id="codex", mode=MODE_COPY, target_path="/t/alpha")
        )

        targets = await registry.list_sync_targets(skill.id)
        assert len(targets) == 1
        assert targets[0].mode == MODE_COPY

        loaded = await registry.get_skill(skill.id)
        assert loaded is not None
        assert [target.tool_id for target in loaded.targets] == ["codex"]

        assert await registry.delete_sync_target(skill.id, "codex") is True
        assert await registry.delete_sync_target(skill.id, "codex") is False
    finally:
        await registry.close()


@pytest.mark.asyncio
async def test_repo_bookmarks_dedupe_by_owner_and_name(tmp_path):
    registry = SkillRegistry(tmp_path / "registry.db")
    try:
        await registry.add_skill_repo("anthropics", "skills")
        await registry.add_skill_repo("anthropics", "skills", "dev")
        await registry.add_skill_repo("openai", "skills", "")

        repos = {repo.key: repo for repo in await registry.get_skill_repos()}
        assert set(repos) == {"anthropics/skills", "openai/skills"}
        assert repos["anthropics/skills"].branch == "dev"
        assert repos["openai/skills"].branch == "main"

        assert await registry.remove_skill_repo("openai", "skills") is True
        assert [repo.key for repo in await registry.get_skill_repos()] == ["anthropics/skills"]
    finally:
        await registry.close()


@pytest.mark.asyncio
async def test_preferred_tools_round_trip_without_duplicates(tmp_path):
    db_path = tmp_path / "registry.db"
    registry = SkillRegistry(db_path)
    try:
        assert await registry.get_preferred_tools() == []
        saved = await registry.set_preferred_tools(["cursor", "codex", "cursor"])
        assert saved == ["cursor", "codex"]
    finally:
        await registry.close()

    reopened = SkillRegistry(db_path)
    try:
        assert await reopened.get_preferred_tools() == ["cursor", "codex"]
    finally:
        await reopened.close()
