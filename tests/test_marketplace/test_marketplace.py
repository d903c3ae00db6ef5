"""
Tests for marketplace search, result normalization and remote SKILL.md fetching.

HTTP goes through httpx.MockTransport; cloning is replaced by a fake
ephemeral_clone yielding a prepared directory.
"""

import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from skillman.config.schema import AppConfig, MarketplaceApiConfig
from skillman.errors import GitCloneError, MarketplaceError
from skillman.marketplace import (
    ManifestCache,
    MarketplaceClient,
    deduplicate_results,
    format_installs,
    normalize_result,
)
from skillman.skills import SearchResult


def api(url: str, name: str | None = None, priority: int = 0, enabled: bool = True) -> MarketplaceApiConfig:
    return MarketplaceApiConfig(url=url, name=name, priority=priority, enabled=enabled)


def client_for(handler, apis, **kwargs) -> MarketplaceClient:
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return MarketplaceClient(apis, http=http, **kwargs)


def write_skill(directory: Path, name: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "SKILL.md").write_text(f"---\nname: {name}\ndescription: The {name} skill\n---\n\n# {name}\n")
    return directory


class FakeClone:
    def __init__(self, repo: Path, error: Exception | None = None, gate: threading.Event | None = None):
        self.repo = repo
        self.error = error
        self.gate = gate
        self.entered = threading.Event()
        self.calls: list[str] = []

    @contextmanager
    def __call__(self, url, ref=None, **kwargs):
        self.calls.append(url)
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        yield self.repo


# ── Tests: formatting and normalization ──────────────────────────────


class TestFormatInstalls:
    @pytest.mark.parametrize(
        "count,expected",
        [
            (None, ""),
            (0, ""),
            (1, "1 install"),
            (950, "950 installs"),
            (1000, "1K installs"),
            (1200, "1.2K installs"),
            (3_000_000, "3M installs"),
            (2_500_000, "2.5M installs"),
        ],
    )
    def test_format(self, count, expected):
        assert format_installs(count) == expected


class TestNormalizeResult:
    def test_source_entry_github(self):
        result = normalize_result(
            {"source": "anthropics/skills", "skillId": "pdf", "name": "pdf", "installs": 1200},
            "Skills.sh",
        )
        assert result.id == "anthropics/skills#pdf"
        assert result.repository == "https://github.com/anthropics/skills.git"
        assert result.description == "1.2K installs"
        assert result.market_name == "Skills.sh"
        assert result.source == "anthropics/skills"

    def test_source_entry_gitlab(self):
        result = normalize_result({"source": "gitlab.com/g/r", "name": "x", "description": "desc"})
        assert result.id == "gitlab.com/g/r"
        assert result.description == "desc"

    def test_source_entry_default_description(self):
        result = normalize_result({"source": "o/r", "name": "x"})
        assert result.description == "A skill for AI coding assistants"

    def test_generic_entry(self):
        result = normalize_result({
            "id": "lint",
            "name": "Lint",
            "description": "Lints",
            "repository": "https://github.com/o/lint",
            "version": "1.0.0",
            "stars": 4,
            "updatedAt": "2026-01-01",
        })
        assert result.id == "lint"
        assert result.version == "1.0.0"
        assert result.stars == 4
        assert result.updated_at == "2026-01-01"
        assert result.skill_id is None

    def test_generic_entry_fallbacks(self):
        result = normalize_result({"repo": "https://x/y", "star_count": 2, "commit": "abc"})
        assert result.id == "unknown"
        assert result.name == "Unknown"
        assert result.repository == "https://x/y"
        assert result.stars == 2
        assert result.version == "abc"

    def test_wrongly_typed_fields_ignored(self):
        result = normalize_result({"id": "a", "name": 3, "stars": "many", "installs": True})
        assert result.name == "Unknown"
        assert result.stars is None
        assert result.installs is None


class TestDeduplication:
    def test_distinct_skills_in_one_repo_kept(self):
        results = [
            normalize_result({"source": "acme/config", "skillId": "config-basic", "name": "basic"}),
            normalize_result({"source": "acme/config", "skillId": "config-advanced", "name": "advanced"}),
        ]
        merged = deduplicate_results(results)
        assert [r.id for r in merged] == ["acme/config#config-basic", "acme/config#config-advanced"]

    def test_more_complete_listing_wins(self):
        sparse = SearchResult(id="a", name="a")
        rich = SearchResult(id="a", name="a", description="d", stars=3, version="1")
        merged = deduplicate_results([sparse, rich])
        assert merged == [rich]

    def test_tie_keeps_first(self):
        first = SearchResult(id="a", name="a", market_name="high")
        second = SearchResult(id="a", name="a", market_name="low")
        assert deduplicate_results([first, second]) == [first]

    def test_zero_stars_not_counted(self):
        assert SearchResult(id="a", name="a", stars=0).completeness() == 1


# ── Tests: search ────────────────────────────────────────────────────


class TestSearch:
    def test_queries_search_endpoint(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"skills": [{"source": "o/r", "skillId": "s", "name": "s"}]})

        with client_for(handler, [api("https://skills.example/some/path", "Example")], limit=7) as client:
            results = client.search("pdf")

        assert seen[0].url.path == "/api/search"
        assert seen[0].url.params["q"] == "pdf"
        assert seen[0].url.params["limit"] == "7"
        assert [r.id for r in results] == ["o/r#s"]
        assert results[0].market_name == "Example"

    def test_bare_list_payload(self):
        def handler(request):
            return httpx.Response(200, json=[{"id": "x", "name": "x"}])

        with client_for(handler, [api("https://m.example")]) as client:
            results = client.search("x")
        assert results[0].market_name == "m.example"

    def test_failing_marketplace_skipped(self):
        def handler(request):
            if request.url.host == "down.example":
                return httpx.Response(500)
            return httpx.Response(200, json={"skills": [{"id": "ok", "name": "ok"}]})

        apis = [api("https://down.example"), api("https://up.example")]
        with client_for(handler, apis) as client:
            results = client.search("q")
        assert [r.id for r in results] == ["ok"]

    def test_invalid_json_skipped(self):
        def handler(request):
            return httpx.Response(200, text="<html>")

        with client_for(handler, [api("https://m.example")]) as client:
            assert client.search("q") == []

    def test_priority_order_and_disabled(self):
        def handler(request):
            return httpx.Response(200, json=[{"id": request.url.host, "name": "n"}])

        apis = [
            api("https://low.example", priority=1),
            api("https://off.example", priority=9, enabled=False),
            api("https://high.example", priority=5),
        ]
        with client_for(handler, apis) as client:
            results = client.search("q")
        assert [r.id for r in results] == ["high.example", "low.example"]

    def test_no_enabled_marketplaces(self):
        with client_for(lambda r: httpx.Response(200, json=[]), [api("https://x.example", enabled=False)]) as client:
            assert client.search("q") == []

    def test_transport_errors_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json=[{"id": "ok", "name": "ok"}])

        with client_for(handler, [api("https://m.example")], retries=1) as client:
            results = client.search("q")
        assert len(attempts) == 2
        assert [r.id for r in results] == ["ok"]

    def test_from_config(self, tmp_path: Path):
        config = AppConfig.model_validate({"cache": {"dir": str(tmp_path / "cache")}})
        client = MarketplaceClient.from_config(config)
        try:
            assert client.limit == 10
            assert client.cache is not None
            assert [a.name for a in client.apis] == ["Skills.sh"]
        finally:
            client.close()


# ── Tests: remote SKILL.md ───────────────────────────────────────────


class TestRemoteManifest:
    @pytest.fixture
    def repo(self, tmp_path: Path) -> Path:
        root = tmp_path / "repo"
        write_skill(root / "skills" / "config-basic", "basic")
        write_skill(root / "skills" / "config-advanced", "advanced")
        return root

    def test_fetch_by_sub_skill(self, repo: Path):
        fake = FakeClone(repo)
        with patch("skillman.marketplace.client.ephemeral_clone", fake):
            with client_for(lambda r: httpx.Response(404), []) as client:
                content = client.fetch_remote_manifest("acme/config", "acme/config", "advanced")
        assert "name: advanced" in content
        assert fake.calls == ["https://github.com/acme/config.git"]

    def test_fetch_matches_skill_id(self, repo: Path):
        with patch("skillman.marketplace.client.ephemeral_clone", FakeClone(repo)):
            with client_for(lambda r: httpx.Response(404), []) as client:
                content = client.fetch_remote_manifest("acme/config", "acme/config#config-basic")
        assert "name: basic" in content

    def test_no_skills(self, tmp_path: Path):
        (tmp_path / "empty").mkdir()
        with patch("skillman.marketplace.client.ephemeral_clone", FakeClone(tmp_path / "empty")):
            with client_for(lambda r: httpx.Response(404), []) as client:
                with pytest.raises(MarketplaceError, match="No SKILL.md"):
                    client.fetch_remote_manifest("acme/none", "acme/none")

    def test_clone_error_wrapped(self, repo: Path):
        error = GitCloneError("denied", "https://github.com/acme/config.git", is_auth_error=True)
        with patch("skillman.marketplace.client.ephemeral_clone", FakeClone(repo, error)):
            with client_for(lambda r: httpx.Response(404), []) as client:
                with pytest.raises(MarketplaceError) as exc_info:
                    client.fetch_remote_manifest("acme/config", "acme/config")
        assert isinstance(exc_info.value.__cause__, GitCloneError)

    def test_cached_after_first_fetch(self, repo: Path, tmp_path: Path):
        fake = FakeClone(repo)
        cache = ManifestCache(tmp_path / "cache")
        with patch("skillman.marketplace.client.ephemeral_clone", fake):
            with client_for(lambda r: httpx.Response(404), [], cache=cache) as client:
                first = client.fetch_remote_manifest("acme/config", "acme/config", "basic")
                second = client.fetch_remote_manifest("acme/config", "acme/config", "basic")
        assert first == second
        assert len(fake.calls) == 1

    def test_concurrent_requests_share_one_clone(self, repo: Path):
        gate = threading.Event()
        fake = FakeClone(repo, gate=gate)
        results: list[str] = []

        def fetch(client):
            results.append(client.fetch_remote_manifest("acme/config", "acme/config", "basic"))

        with patch("skillman.marketplace.client.ephemeral_clone", fake):
            with client_for(lambda r: httpx.Response(404), []) as client:
                first = threading.Thread(target=fetch, args=(client,))
                first.start()
                assert fake.entered.wait(timeout=5)
                second = threading.Thread(target=fetch, args=(client,))
                second.start()
                time.sleep(0.2)
                gate.set()
                first.join(timeout=5)
                second.join(timeout=5)

        assert len(fake.calls) == 1
        assert len(results) == 2
        assert results[0] == results[1]

    def test_failure_reaches_waiters_and_is_not_remembered(self, repo: Path):
        error = GitCloneError("offline", "https://github.com/acme/config.git")
        with patch("skillman.marketplace.client.ephemeral_clone", FakeClone(repo, error)):
            with client_for(lambda r: httpx.Response(404), []) as client:
                with pytest.raises(MarketplaceError):
                    client.fetch_remote_manifest("acme/config", "acme/config")
                assert client._inflight == {}


# ── Tests: ManifestCache ─────────────────────────────────────────────


class TestManifestCache:
    def test_set_and_get(self, tmp_path: Path):
        cache = ManifestCache(tmp_path)
        path = cache.set("github/a/b@c", "content", "https://github.com/a/b.git")
        assert path is not None and path.exists()
        assert cache.get("github/a/b@c") == "content"

    def test_miss(self, tmp_path: Path):
        assert ManifestCache(tmp_path).get("nothing") is None

    def test_expired_entry_removed(self, tmp_path: Path):
        cache = ManifestCache(tmp_path, ttl_days=1)
        path = cache.set("k", "v")
        old = time.time() - 2 * 86400
        os.utime(path, (old, old))
        assert cache.get("k") is None
        assert not path.exists()

    def test_corrupt_entry(self, tmp_path: Path):
        cache = ManifestCache(tmp_path)
        cache.set("k", "v").write_text("{broken")
        assert cache.get("k") is None

    def test_invalidate_and_clear(self, tmp_path: Path):
        cache = ManifestCache(tmp_path)
        cache.set("a", "1")
        cache.set("b", "2")
        cache.invalidate("a")
        assert cache.get("a") is None
        assert cache.stats()["entries"] == 1
        assert cache.clear() == 1
        assert cache.stats()["entries"] == 0
