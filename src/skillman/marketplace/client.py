"""
Marketplace client -- search fan-out and remote SKILL.md fetching.

search() queries every enabled marketplace (GET <origin>/api/search) in
parallel and merges the listings. Listings that point at one skill inside a
multi-skill repository keep their own identity (`<base>#<skillId>`), so two
skills from the same repository never collapse into one.

fetch_remote_manifest() clones a repository to read one skill's SKILL.md.
Concurrent requests for the same skill share a single clone.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx
import structlog
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config.schema import AppConfig, MarketplaceApiConfig
from ..errors import GitCloneError, MarketplaceError
from ..git.fetcher import CLONE_TIMEOUT, ephemeral_clone
from ..skills.discovery import DiscoveredSkill, discover_skills
from ..skills.models import SearchResult
from ..sources.parser import normalize_repository_url, parse_source
from ..sources.types import (
    DirectUrlSource,
    GitHubSource,
    GitLabSource,
    GitSource,
    LocalSource,
    WellKnownSource,
)
from .cache import ManifestCache

logger = structlog.get_logger()

SEARCH_ENDPOINT = "/api/search"
DEFAULT_DESCRIPTION = "A skill for AI coding assistants"

_RETRYABLE_ERRORS = (httpx.TransportError,)


def format_installs(count: int | None) -> str:
    """Compact install count: 950 installs, 1.2K installs, 3M installs."""
    if not count or count <= 0:
        return ""

    def compact(value: float) -> str:
        text = f"{value:.1f}"
        return text[:-2] if text.endswith(".0") else text

    if count >= 1_000_000:
        return f"{compact(count / 1_000_000)}M installs"
    if count >= 1_000:
        return f"{compact(count / 1_000)}K installs"
    return f"{count} install{'' if count == 1 else 's'}"


def build_result_id(base_id: str, skill_id: str | None) -> str:
    if not skill_id or not skill_id.strip():
        return base_id
    return f"{base_id}#{skill_id}"


def deduplicate_results(results: list[SearchResult]) -> list[SearchResult]:
    """Merge listings by `id::skill_id`, keeping the more complete one.

    On equal completeness the first listing (highest-priority marketplace)
    wins. Output order follows the first occurrence of each key.
    """
    merged: dict[str, SearchResult] = {}
    for result in results:
        key = result.dedup_key
        existing = merged.get(key)
        if existing is None or result.completeness() > existing.completeness():
            merged[key] = result
    return list(merged.values())


def _string(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _integer(value: Any) -> int | None:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


def normalize_result(item: dict[str, Any], market_name: str | None = None) -> SearchResult:
    """Turn one marketplace entry into a SearchResult.

    Entries with a `source` field (skills.sh style) are resolved through
    parse_source(); other entries are taken as-is.
    """
    skill_id = _string(item.get("skillId")) or _string(item.get("skill_id"))
    installs = _integer(item.get("installs"))
    source = _string(item.get("source"))

    if source is None:
        base_id = _string(item.get("id")) or _string(item.get("repository")) or _string(item.get("name")) or "unknown"
        return SearchResult(
            id=build_result_id(base_id, skill_id),
            name=_string(item.get("name")) or "Unknown",
            description=_string(item.get("description")) or "",
            repository=_string(item.get("repository")) or _string(item.get("repo")),
            skill_id=skill_id,
            version=_string(item.get("version")) or _string(item.get("commit")) or _string(item.get("tag")),
            stars=_integer(item.get("stars")) or _integer(item.get("star_count")),
            installs=installs,
            updated_at=_string(item.get("updatedAt")) or _string(item.get("updated_at")),
            market_name=market_name,
        )

    parsed = parse_source(source)
    match parsed:
        case GitHubSource():
            repository = parsed.url
            base_id = f"{parsed.owner}/{parsed.repo}"
        case GitLabSource():
            repository = parsed.url
            base_id = f"{parsed.hostname}/{parsed.repo_path}"
        case LocalSource():
            repository = parsed.local_path
            base_id = parsed.local_path
        case GitSource() | DirectUrlSource() | WellKnownSource():
            repository = parsed.url
            base_id = _string(item.get("id")) or source
        case _:
            raise TypeError(f"Unsupported source: {parsed!r}")

    if installs:
        description = format_installs(installs)
    else:
        description = _string(item.get("description")) or DEFAULT_DESCRIPTION

    return SearchResult(
        id=build_result_id(base_id, skill_id),
        name=_string(item.get("name")) or "Unknown",
        description=description,
        repository=repository,
        skill_id=skill_id,
        installs=installs,
        market_name=market_name,
        source=source,
    )


def _origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


class MarketplaceClient:
    """Searches marketplaces and fetches remote SKILL.md documents.

    Args:
        apis: Marketplace endpoints; disabled ones are skipped
        limit: Results requested per marketplace
        timeout: HTTP timeout per request, in seconds
        retries: Extra attempts on transport errors
        cache: Optional disk cache for fetched manifests
        clone_timeout: Seconds per git clone attempt
        http: Preconfigured httpx client (tests pass one with a MockTransport)
    """

    def __init__(
        self,
        apis: list[MarketplaceApiConfig],
        *,
        limit: int = 10,
        timeout: float = 10.0,
        retries: int = 2,
        cache: ManifestCache | None = None,
        clone_timeout: int = CLONE_TIMEOUT,
        http: httpx.Client | None = None,
    ):
        self.apis = apis
        self.limit = limit
        self.retries = retries
        self.cache = cache
        self.clone_timeout = clone_timeout
        self.http = http or httpx.Client(
            headers={"Accept": "application/json", "User-Agent": "skillman"},
            timeout=timeout,
            follow_redirects=True,
        )
        self.log = logger.bind(component="marketplace")
        self._inflight: dict[str, Future] = {}
        self._inflight_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: AppConfig) -> "MarketplaceClient":
        cache = None
        if config.cache.enabled:
            cache = ManifestCache(config.cache.dir, ttl_days=config.cache.ttl_days)
        return cls(
            config.marketplace.apis,
            limit=config.marketplace.search_limit,
            timeout=config.marketplace.request_timeout,
            retries=config.marketplace.retries,
            cache=cache,
            clone_timeout=config.install.clone_timeout,
        )

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "MarketplaceClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ── Search ───────────────────────────────────────────────────────────

    def search(self, query: str) -> list[SearchResult]:
        """Query all enabled marketplaces, highest priority first.

        A marketplace that fails is logged and skipped.
        """
        enabled = sorted((api for api in self.apis if api.enabled), key=lambda api: api.priority, reverse=True)
        if not enabled:
            return []

        with ThreadPoolExecutor(max_workers=len(enabled)) as executor:
            futures = [executor.submit(self._search_api, api, query) for api in enabled]

        results: list[SearchResult] = []
        for api, future in zip(enabled, futures):
            try:
                results.extend(future.result())
            except (httpx.HTTPError, ValueError) as e:
                self.log.warning("marketplace.search_failed", url=api.url, error=str(e))

        merged = deduplicate_results(results)
        self.log.info("marketplace.search", query=query, apis=len(enabled), results=len(merged))
        return merged

    def _search_api(self, api: MarketplaceApiConfig, query: str) -> list[SearchResult]:
        market_name = api.name or urlparse(api.url).hostname
        response = self._get_with_retry(
            _origin(api.url) + SEARCH_ENDPOINT,
            params={"q": query, "limit": str(self.limit)},
        )
        response.raise_for_status()
        data = response.json()

        if isinstance(data, dict) and isinstance(data.get("skills"), list):
            items = data["skills"]
        elif isinstance(data, list):
            items = data
        else:
            return []
        return [normalize_result(item, market_name) for item in items if isinstance(item, dict)]

    def _on_retry_sleep(self, retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        self.log.warning(
            "marketplace.retry",
            attempt=retry_state.attempt_number,
            error=str(exc) if exc else None,
        )

    def _get_with_retry(self, url: str, params: dict[str, str]) -> httpx.Response:
        for attempt in Retrying(
            retry=retry_if_exception_type(_RETRYABLE_ERRORS),
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            before_sleep=self._on_retry_sleep,
            reraise=True,
        ):
            with attempt:
                return self.http.get(url, params=params)

    # ── Remote manifests ─────────────────────────────────────────────────

    def fetch_remote_manifest(self, repository_url: str, skill_id: str, sub_skill: str | None = None) -> str:
        """Return the SKILL.md text of a skill in a remote repository.

        Args:
            repository_url: Any source string; normalized before cloning
            skill_id: Identifier of the listing
            sub_skill: Skill name or directory in a multi-skill repository

        Raises:
            MarketplaceError: Cloning failed or no matching SKILL.md exists
        """
        full_id = f"{skill_id}@{sub_skill}" if sub_skill else skill_id

        if self.cache is not None:
            cached = self.cache.get(full_id)
            if cached is not None:
                return cached

        with self._inflight_lock:
            future = self._inflight.get(full_id)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[full_id] = future

        if not owner:
            self.log.debug("marketplace.fetch_joined", skill_id=full_id)
            return future.result()

        try:
            content = self._fetch_with_clone(normalize_repository_url(repository_url), skill_id, sub_skill)
            if self.cache is not None:
                self.cache.set(full_id, content, repository_url)
            future.set_result(content)
            return content
        except Exception as e:
            future.set_exception(e)
            raise
        finally:
            with self._inflight_lock:
                self._inflight.pop(full_id, None)

    def _fetch_with_clone(self, repository_url: str, skill_id: str, sub_skill: str | None) -> str:
        self.log.info("marketplace.fetch", url=repository_url, skill_id=skill_id, sub_skill=sub_skill)
        try:
            with ephemeral_clone(repository_url, timeout=self.clone_timeout) as checkout:
                skills = discover_skills(checkout)
                if not skills:
                    raise MarketplaceError(
                        f"No SKILL.md found in {repository_url} "
                        "(checked the repository root, skills/, .agents/skills/, .claude/skills/)"
                    )
                selected = _select_skill(skills, checkout, skill_id, sub_skill)
                return selected.manifest_path.read_text(encoding="utf-8")
        except GitCloneError as e:
            raise MarketplaceError(str(e)) from e


def _select_skill(
    skills: list[DiscoveredSkill], checkout: Path, skill_id: str, sub_skill: str | None,
) -> DiscoveredSkill:
    """Pick the skill a listing refers to; the first one if nothing matches."""
    if len(skills) == 1:
        return skills[0]

    if sub_skill:
        for skill in skills:
            if sub_skill in (skill.name, skill.path.name):
                return skill

    for skill in skills:
        rel = skill.path.relative_to(checkout).as_posix()
        if skill.name in skill_id or (rel != "." and rel in skill_id):
            return skill

    return skills[0]
