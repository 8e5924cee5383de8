"""
tests.test_hsts
---------------
Unit tests for the HSTS preload loader.
"""

import asyncio
import base64
import json

import pytest
from aiohttp import web
from aiohttp import test_utils

from httpsify.hsts import (
    PreloadEntry,
    PreloadError,
    build_collection,
    decode_preload_text,
    fetch_preload_text,
    load_hsts_preload,
    parse_preload_entries,
    read_preload_file,
)

PRELOAD_JSON = """\
// Copyright header
// with several comment lines
{
  "pinsets": [],
  "entries": [
    // Google
    { "name": "google", "policy": "public-suffix", "mode": "force-https", "include_subdomains": true },
    { "name": "Accounts.Example.com", "policy": "custom", "mode": "force-https" },
    { "name": "pinned.example.org", "policy": "custom", "pins": "google" },
    { "name": "www.example.net", "policy": "bulk-18-weeks", "mode": "force-https", "include_subdomains": false },
    { "policy": "custom", "mode": "force-https" }
  ]
}
"""


def _encoded() -> str:
    return base64.b64encode(PRELOAD_JSON.encode("utf-8")).decode("ascii")


def _serve(handler, fetch):
    """Run `fetch(url)` against a local server answering with `handler`."""

    async def run():
        app = web.Application()
        app.router.add_get("/preload", handler)
        async with test_utils.TestServer(app) as server:
            return await fetch(str(server.make_url("/preload")))

    return asyncio.run(run())


class TestDecoding:
    """Payload decoding and entry parsing tests."""

    def test_decode_strips_comments(self):
        text = decode_preload_text(_encoded())
        assert "//" not in text
        assert json.loads(text)["entries"][0]["name"] == "google"

    def test_decode_accepts_bytes(self):
        text = decode_preload_text(_encoded().encode("ascii"))
        assert "entries" in text

    def test_decode_rejects_garbage(self):
        with pytest.raises(PreloadError):
            decode_preload_text("abc")

    def test_parse_entries(self):
        entries = parse_preload_entries(decode_preload_text(_encoded()))
        assert entries[0] == PreloadEntry("google", True, "force-https")
        assert entries[1] == PreloadEntry("accounts.example.com", False, "force-https")
        assert entries[2].force_https is False
        assert len(entries) == 4

    def test_parse_rejects_bad_json(self):
        with pytest.raises(PreloadError):
            parse_preload_entries("{not json")
        with pytest.raises(PreloadError):
            parse_preload_entries('{"pinsets": []}')

    def test_parse_skips_non_string_names(self):
        text = json.dumps(
            {
                "entries": [
                    {"name": 5, "mode": "force-https"},
                    {"name": ["a.org"], "mode": "force-https"},
                    {"name": None, "mode": "force-https"},
                    {"name": "b.org", "mode": "force-https"},
                ]
            }
        )
        assert parse_preload_entries(text) == [PreloadEntry("b.org", False, "force-https")]


class TestBuildCollection:
    """Collection construction tests."""

    def test_only_force_https_entries(self):
        collection = build_collection(parse_preload_entries(decode_preload_text(_encoded())))
        assert collection.simple_subdomain_hosts() == ["google"]
        assert collection.simple_hosts() == ["accounts.example.com", "www.example.net"]
        assert "pinned.example.org" not in collection
        assert collection.max_label_depth == 3

    def test_rewrites(self):
        collection = build_collection(parse_preload_entries(decode_preload_text(_encoded())))
        assert collection.rewrite("http://mail.google/") == ("https://mail.google/", True)
        assert collection.rewrite("http://accounts.example.com/login") == (
            "https://accounts.example.com/login",
            True,
        )
        assert collection.rewrite("http://pinned.example.org/") == ("http://pinned.example.org/", False)


class TestLocalFile:
    """Offline preload file tests."""

    def test_read_plain_json(self, tmp_path):
        path = tmp_path / "preload.json"
        path.write_text(PRELOAD_JSON, encoding="utf-8")
        assert json.loads(read_preload_file(path))["entries"][1]["mode"] == "force-https"

    def test_read_base64(self, tmp_path):
        path = tmp_path / "preload.txt"
        path.write_text(_encoded(), encoding="utf-8")
        collection = load_hsts_preload(preload_file=path)
        assert collection.simple_subdomain_hosts() == ["google"]


class TestFetch:
    """Remote fetch tests against a local aiohttp server."""

    def test_fetch_and_conditional_get(self, tmp_path):
        seen = []

        async def handler(request):
            seen.append(request.headers.get("If-None-Match"))
            if request.headers.get("If-None-Match") == '"v1"':
                return web.Response(status=304)
            return web.Response(text=_encoded(), headers={"ETag": '"v1"'})

        async def fetch_twice(url):
            first = await fetch_preload_text(url, cache_dir=tmp_path, retries=0)
            second = await fetch_preload_text(url, cache_dir=tmp_path, retries=0)
            return first, second

        first, second = _serve(handler, fetch_twice)
        assert first == _encoded()
        assert second == _encoded()
        assert seen == [None, '"v1"']
        assert (tmp_path / "meta.json").exists()

    def test_fallback_to_cache_on_failure(self, tmp_path):
        calls = []

        async def handler(request):
            calls.append(1)
            if len(calls) == 1:
                return web.Response(text=_encoded())
            return web.Response(status=500)

        async def fetch_twice(url):
            await fetch_preload_text(url, cache_dir=tmp_path, retries=0)
            return await fetch_preload_text(url, cache_dir=tmp_path, retries=0)

        assert _serve(handler, fetch_twice) == _encoded()
        assert len(calls) == 2

    def test_failure_without_cache_raises(self):
        async def handler(request):
            return web.Response(status=404)

        with pytest.raises(PreloadError):
            _serve(handler, lambda url: fetch_preload_text(url, retries=0))

    def test_corrupted_cache_is_refetched(self, tmp_path):
        """A cached copy that fails its checksum is neither revalidated nor reused."""
        seen = []

        async def handler(request):
            seen.append(request.headers.get("If-None-Match"))
            if request.headers.get("If-None-Match") == '"v1"':
                return web.Response(status=304)
            return web.Response(text=_encoded(), headers={"ETag": '"v1"'})

        async def fetch_twice(url):
            await fetch_preload_text(url, cache_dir=tmp_path, retries=0)
            for cached in tmp_path.glob("*.txt"):
                cached.write_text("tampered", encoding="utf-8")
            return await fetch_preload_text(url, cache_dir=tmp_path, retries=0)

        assert _serve(handler, fetch_twice) == _encoded()
        assert seen == [None, None]

    def test_corrupted_cache_is_not_a_fallback(self, tmp_path):
        calls = []

        async def handler(request):
            calls.append(1)
            if len(calls) == 1:
                return web.Response(text=_encoded())
            return web.Response(status=500)

        async def fetch_twice(url):
            await fetch_preload_text(url, cache_dir=tmp_path, retries=0)
            for cached in tmp_path.glob("*.txt"):
                cached.write_text("tampered", encoding="utf-8")
            return await fetch_preload_text(url, cache_dir=tmp_path, retries=0)

        with pytest.raises(PreloadError):
            _serve(handler, fetch_twice)
