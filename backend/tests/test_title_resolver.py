import pytest

from mediashelf.services.title_resolver import TitleResolver


@pytest.mark.asyncio
async def test_exact_match_is_case_insensitive_across_title_columns(db):
    resolver = TitleResolver(db)
    assert await resolver.resolve("naruto", "anime") == 1
    assert await resolver.resolve("YOUR NAME", "anime") == 3
    assert await resolver.resolve("  Berserk  ", "manga") == 1


@pytest.mark.asyncio
async def test_substring_match_covers_alternative_titles(db):
    resolver = TitleResolver(db)
    assert await resolver.resolve("Attack on Titan", "anime") == 4
    assert await resolver.resolve("Fullmetal", "anime") == 2


@pytest.mark.asyncio
async def test_unpublished_entries_never_match(db):
    resolver = TitleResolver(db)
    assert await resolver.resolve("Naruto Shippuden", "anime") is None


@pytest.mark.asyncio
async def test_unmatched_empty_and_unsupported_types(db):
    resolver = TitleResolver(db)
    assert await resolver.resolve("Cowboy Bebop", "anime") is None
    assert await resolver.resolve("   ", "anime") is None
    assert await resolver.resolve(None, "anime") is None
    assert await resolver.resolve("Chrono Trigger", "game") is None


@pytest.mark.asyncio
async def test_metadata_variants_used_only_after_local_miss(db, metadata):
    resolver = TitleResolver(db, metadata)

    assert await resolver.resolve("Naruto", "anime", external_id=20) == 1
    assert metadata.calls == []

    assert await resolver.resolve("Hagane no Renkinjutsushi FA", "anime", external_id=5114) == 2
    assert metadata.calls == [("anime", 5114)]


@pytest.mark.asyncio
async def test_metadata_failure_is_a_miss(db, metadata):
    metadata.fail = True
    resolver = TitleResolver(db, metadata)
    assert await resolver.resolve("Hagane no Renkinjutsushi FA", "anime", external_id=5114) is None


@pytest.mark.asyncio
async def test_like_wildcards_in_titles_are_literal(db):
    resolver = TitleResolver(db)
    assert await resolver.resolve("%", "anime") is None
    assert await resolver.resolve("_", "manga") is None
