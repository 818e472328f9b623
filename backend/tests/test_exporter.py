import pytest

from mediashelf.errors import ValidationError
from mediashelf.services.collections import CollectionService
from mediashelf.services.exporter import CollectionExporter, export_filename, xml_escape


def test_xml_escape_covers_reserved_characters():
    assert xml_escape('a & b < c > d " e \' f') == "a &amp; b &lt; c &gt; d &quot; e &apos; f"
    assert xml_escape(None) == ""


def test_export_filename():
    assert export_filename(42, "anime", now=1700000000) == "animelist_1700000000_-_42.xml"
    assert export_filename(42, "manga", now=1700000000) == "mangalist_1700000000_-_42.xml"


@pytest.mark.asyncio
async def test_anime_export_layout(db, cache):
    service = CollectionService(db, cache)
    await service.upsert(1, 1, "anime", "completed", rating=4.5)
    await service.upsert(1, 3, "anime", "watching", rating=3, notes="rewatch <soon> & often", progress=12)
    await service.upsert(1, 1, "manga", "watching")

    xml = await CollectionExporter(db).export_collection(1, "anime", now=1700000000)

    assert xml.startswith('<?xml version="1.0" encoding="UTF-8"?>\n<myanimelist>')
    assert "<user_id>1</user_id>" in xml
    assert "<user_export_type>1</user_export_type>" in xml
    assert "<user_total_anime>2</user_total_anime>" in xml
    assert xml.count("<anime>") == 2
    # Newest first
    assert xml.index("<series_animedb_id>3</series_animedb_id>") < xml.index("<series_animedb_id>1</series_animedb_id>")
    assert "<my_score>9</my_score>" in xml
    assert "<my_score>6</my_score>" in xml
    assert "<my_status>Watching</my_status>" in xml
    assert "<series_type>3</series_type>" in xml
    assert "<my_watched_episodes>12</my_watched_episodes>" in xml
    assert "<my_watched_episodes>0</my_watched_episodes>" in xml
    # Notes stay private: the MAL entry block has no comments element
    assert "my_comments" not in xml
    assert "rewatch" not in xml
    assert "<my_last_updated>1700000000</my_last_updated>" in xml
    assert xml.endswith("</myanimelist>")


@pytest.mark.asyncio
async def test_manga_export_layout(db, cache):
    await CollectionService(db, cache).upsert(1, 2, "manga", "watching", progress=1000)
    xml = await CollectionExporter(db).export_collection(1, "manga", now=1)

    assert "<user_export_type>2</user_export_type>" in xml
    assert "<user_total_manga>1</user_total_manga>" in xml
    assert "<manga_title>One Piece</manga_title>" in xml
    assert "<manga_volumes>105</manga_volumes>" in xml
    assert "<my_status>Reading</my_status>" in xml
    assert "<my_rereadingg>0</my_rereadingg>" in xml
    assert "<my_read_chapters>1000</my_read_chapters>" in xml
    assert "<my_score>0</my_score>" in xml


@pytest.mark.asyncio
async def test_titles_are_escaped(db, cache):
    await CollectionService(db, cache).upsert(1, 6, "anime", "completed")
    xml = await CollectionExporter(db).export_collection(1, "anime")
    assert "<series_title>Tom &amp; Jerry&apos;s &quot;&lt;Show&gt;&quot;</series_title>" in xml
    assert "<series_type>2</series_type>" in xml


@pytest.mark.asyncio
async def test_empty_collection_and_unsupported_type(db):
    xml = await CollectionExporter(db).export_collection(2, "anime")
    assert "<user_total_anime>0</user_total_anime>" in xml
    assert "<anime>" not in xml
    with pytest.raises(ValidationError):
        await CollectionExporter(db).export_collection(2, "game")
