# tests/test_search_service.py
"""Tests for the SearchService."""
import asyncio

import pytest

from quillnote_mcp.utils import make_snippet


@pytest.fixture
async def corpus(note_repository, owner, other):
    """A small set of notes across folders, oldest first."""
    notes = []
    for fields in [
        {"title": "Python basics", "content": "<p>Variables and <b>loops</b></p>", "tags": ["code"]},
        {"title": "Shopping", "content": "eggs, python book", "folder": "Home"},
        {"title": "Garden", "content": "tomatoes", "tags": ["python-free", "outdoors"]},
        {"title": "Unrelated", "content": "nothing to see"},
    ]:
        notes.append(await note_repository.create(owner, fields))
        await asyncio.sleep(0.005)
    await note_repository.create(other, {"title": "Python secrets", "is_public": True})
    return notes


@pytest.mark.anyio
class TestSearch:
    async def test_all_fields_newest_first(self, search_service, owner, corpus):
        hits = await search_service.search(owner, "PYTHON")
        assert [h.note.title for h in hits] == ["Garden", "Shopping", "Python basics"]

    async def test_title_only(self, search_service, owner, corpus):
        hits = await search_service.search(owner, "python", field="title")
        assert [h.note.title for h in hits] == ["Python basics"]

    async def test_content_only(self, search_service, owner, corpus):
        hits = await search_service.search(owner, "python", field="content")
        assert [h.note.title for h in hits] == ["Shopping"]

    async def test_tags_only(self, search_service, owner, corpus):
        hits = await search_service.search(owner, "outdoor", field="tags")
        assert [h.note.title for h in hits] == ["Garden"]

    async def test_unknown_field_means_all(self, search_service, owner, corpus):
        hits = await search_service.search(owner, "python", field="password")
        assert len(hits) == 3

    async def test_folder_filter(self, search_service, owner, corpus):
        hits = await search_service.search(owner, "python", folder="Home")
        assert [h.note.title for h in hits] == ["Shopping"]

    async def test_limit_clamped(self, search_service, owner, corpus):
        assert len(await search_service.search(owner, "python", limit=1)) == 1
        assert len(await search_service.search(owner, "python", limit=-4)) == 1
        assert len(await search_service.search(owner, "python", limit=0)) == 3
        assert len(await search_service.search(owner, "python", limit=1000)) == 3

    async def test_blank_query(self, search_service, owner, corpus):
        assert await search_service.search(owner, "   ") == []

    async def test_snippet_strips_html(self, search_service, owner, corpus):
        hits = await search_service.search(owner, "loops")
        assert hits[0].snippet == "Variables and loops"

    async def test_accented_capitals_match(self, search_service, note_repository, owner):
        await note_repository.create(owner, {"title": "Été à Paris", "content": "Croissants"})

        hits = await search_service.search(owner, "été", field="title")
        assert [h.note.title for h in hits] == ["Été à Paris"]
        hits = await search_service.search(owner, "ÉTÉ")
        assert [h.note.title for h in hits] == ["Été à Paris"]

    async def test_other_users_public_notes_not_searched(self, search_service, owner, corpus):
        hits = await search_service.search(owner, "secrets")
        assert hits == []


class TestMakeSnippet:
    def test_window_around_match(self):
        content = "a" * 80 + "needle" + "b" * 80
        snippet = make_snippet(content, "NEEDLE")
        assert snippet == "..." + "a" * 50 + "needle" + "b" * 50 + "..."

    def test_match_near_start(self):
        assert make_snippet("needle then text", "needle") == "needle then text"

    def test_preview_when_no_match(self):
        content = "x" * 150
        assert make_snippet(content, "zzz") == "x" * 100 + "..."
        assert make_snippet("short", "zzz") == "short"

    def test_no_query(self):
        assert make_snippet("<h1>Title</h1>") == "Title"
