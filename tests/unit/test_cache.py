"""
Tests for the context bundle cache.
"""

import json
import threading
import time

import pytest

from pam_cli.core.cache import ContextCacheManager, SingleFlight
from pam_cli.exceptions import NotFoundError
from pam_cli.models.enums import StaleReason


@pytest.fixture
def cache(config, bundle_source, paths, clock):
    return ContextCacheManager(config, bundle_source, paths.cache_dir, clock=clock)


class TestReads:
    """Tests for local reads that never touch the network."""

    def test_get_missing_bundle_raises_not_found(self, cache, bundle_source):
        """Test get() on a never-fetched bundle fails without a network call."""
        with pytest.raises(NotFoundError) as exc_info:
            cache.get("github")

        assert exc_info.value.kind == "context bundle"
        assert bundle_source.network_calls == 0

    def test_get_after_refresh(self, cache, bundle_source):
        """Test get() returns refreshed content without fetching again."""
        cache.refresh("github")
        calls = bundle_source.network_calls

        bundle = cache.get("github")

        assert bundle.content == "# github\ncontent for github\n"
        assert bundle.object_name == "github_ai_garage.md"
        assert bundle.remote_version == '"v1-github"'
        assert bundle_source.network_calls == calls

    def test_aliases_resolve(self, cache):
        """Test friendly aliases map to canonical bundle names."""
        assert cache.resolve("git") == "github"
        assert cache.resolve("DB") == "database"
        assert cache.resolve("daily-ambition") == "daily"
        assert cache.resolve("jira") == "jira"

    def test_status_without_freshness_is_local_only(self, cache, bundle_source):
        """Test unqualified status makes no network calls."""
        cache.refresh()
        calls = bundle_source.network_calls

        statuses = cache.status()

        assert bundle_source.network_calls == calls
        assert set(statuses) == set(cache.config.context_bundles)
        assert all(not s.is_stale for s in statuses.values())

    def test_never_fetched_bundle_reported_stale(self, cache):
        """Test a configured but uncached bundle is stale and not cached."""
        status = cache.status("jira")["jira"]

        assert status.cached is False
        assert status.is_stale is True
        assert status.stale_reason is StaleReason.NOT_CACHED

    def test_status_of_unknown_bundle_raises(self, cache):
        """Test status for a name neither configured nor cached fails."""
        with pytest.raises(NotFoundError):
            cache.status("nonexistent")

    def test_unreadable_entry_treated_as_absent(self, cache, paths):
        """Test a corrupted cache entry does not break status."""
        paths.cache_dir.mkdir(parents=True)
        (paths.cache_dir / "github.json").write_text("{not json")

        assert cache.status("github")["github"].cached is False


class TestFreshness:
    """Tests for age and remote-version staleness."""

    def test_stale_exactly_at_window(self, cache, clock):
        """Test a bundle is fresh before T+window and stale at T+window."""
        cache.refresh("github")

        clock.advance(seconds=3599)
        assert cache.status("github")["github"].is_stale is False

        clock.advance(seconds=1)
        status = cache.status("github")["github"]
        assert status.is_stale is True
        assert status.stale_reason is StaleReason.AGE

    def test_remote_change_detected_within_window(self, cache, bundle_source):
        """Test a changed remote version marks the bundle stale immediately."""
        cache.refresh("github")
        bundle_source.objects["github_ai_garage.md"] = ("new content", '"v2-github"')

        assert cache.status("github")["github"].is_stale is False

        status = cache.status("github", freshness=True)["github"]
        assert status.is_stale is True
        assert status.stale_reason is StaleReason.REMOTE_CHANGED
        assert status.remote_checked is True

    def test_freshness_check_uses_head_only(self, cache, bundle_source):
        """Test the remote check issues one HEAD per cached bundle and no fetch."""
        cache.refresh()
        fetches = bundle_source.fetch_calls

        cache.status(freshness=True)

        assert bundle_source.fetch_calls == fetches
        assert bundle_source.head_calls == len(cache.config.context_bundles)

    def test_remote_check_failure_reported_per_bundle(self, cache, bundle_source):
        """Test one failing HEAD does not fail the whole status call."""
        cache.refresh()
        bundle_source.failing.add("jira_summary.md")

        statuses = cache.status(freshness=True)

        assert statuses["jira"].remote_check_error is not None
        assert statuses["jira"].remote_checked is False
        assert statuses["github"].remote_check_error is None

    def test_zero_window_means_always_stale(self, config, bundle_source, paths, clock):
        """Test freshness_window_seconds=0 makes every cached bundle stale."""
        ContextCacheManager(config, bundle_source, paths.cache_dir, clock=clock).refresh()
        zero = config.model_copy(update={"freshness_window_seconds": 0})

        statuses = ContextCacheManager(zero, bundle_source, paths.cache_dir, clock=clock).status()

        assert all(s.is_stale for s in statuses.values())


class TestRefresh:
    """Tests for refresh, the only mutator."""

    def test_refresh_is_idempotent(self, cache, clock):
        """Test repeated refresh keeps content and advances fetched_at."""
        cache.refresh("github")
        first = cache.get("github")

        clock.advance(minutes=5)
        cache.refresh("github")
        second = cache.get("github")

        assert second.content == first.content
        assert second.fetched_at > first.fetched_at

    def test_fetched_at_never_regresses(self, cache, clock):
        """Test a clock going backwards does not move fetched_at back."""
        cache.refresh("github")
        first = cache.get("github").fetched_at

        clock.advance(minutes=-10)
        cache.refresh("github")

        assert cache.get("github").fetched_at == first

    def test_bulk_refresh_isolates_failures(self, cache, bundle_source):
        """Test one failing bundle does not abort the others."""
        bundle_source.failing.add("jira_summary.md")

        report = cache.refresh()

        assert [o.name for o in report.failed] == ["jira"]
        assert len(report.succeeded) == len(cache.config.context_bundles) - 1
        assert report.all_ok is False
        assert "not found" in report.failed[0].error or "404" in report.failed[0].error

    def test_failed_refresh_keeps_previous_copy(self, cache, bundle_source):
        """Test a failed fetch leaves the cached bundle untouched."""
        cache.refresh("github")
        before = cache.get("github")
        bundle_source.failing.add("github_ai_garage.md")

        report = cache.refresh("github")

        assert report.all_ok is False
        assert cache.get("github") == before

    def test_write_failure_reported(self, cache, mocker):
        """Test a failing atomic write becomes a CacheWriteError outcome."""
        mocker.patch("pam_cli.core.cache.atomic_write_json", side_effect=OSError("disk full"))

        report = cache.refresh("github")

        assert report.failed[0].error.startswith("Failed to write")
        with pytest.raises(NotFoundError):
            cache.get("github")

    def test_unconfigured_name_fetched_verbatim(self, cache, bundle_source):
        """Test names outside the configuration are used as object names."""
        bundle_source.objects["notes.md"] = ("notes", None)

        cache.refresh("notes.md")

        assert cache.get("notes.md").object_name == "notes.md"
        assert "notes.md" in cache.known_bundles()

    def test_entry_file_is_json(self, cache, paths):
        """Test each bundle is stored as one JSON entry."""
        cache.refresh("github")

        data = json.loads((paths.cache_dir / "github.json").read_text())
        assert data["name"] == "github"
        assert data["remote_version"] == '"v1-github"'


class TestMaintenance:
    """Tests for stats, eviction and clearing."""

    def test_stats(self, cache, clock):
        """Test stats aggregate local state only."""
        cache.refresh("github")
        clock.advance(hours=2)
        cache.refresh("jira")

        stats = cache.stats()

        assert stats.bundle_count == 2
        assert stats.stale_count == 1
        assert stats.estimated_tokens == stats.total_bytes // 4
        assert stats.oldest_fetched_at == cache.get("github").fetched_at

    def test_evict_and_clear(self, cache):
        """Test evict removes one entry and clear removes the rest."""
        cache.refresh()

        assert cache.evict("git") is True
        assert cache.evict("github") is False
        assert cache.clear() == len(cache.config.context_bundles) - 1
        assert cache.stats().bundle_count == 0


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        time.sleep(0.01)


class TestSingleFlight:
    """Tests for the per-key in-flight guard."""

    def test_concurrent_refresh_fetches_once(self, cache, bundle_source):
        """Test two concurrent refreshes of one bundle share one fetch."""
        bundle_source.fetch_gate = threading.Event()
        reports = []

        threads = [threading.Thread(target=lambda: reports.append(cache.refresh("github"))) for _ in range(2)]
        threads[0].start()
        assert bundle_source.fetch_started.wait(timeout=5)
        threads[1].start()
        wait_until(lambda: cache._flights.waiting("github") == 1)

        bundle_source.fetch_gate.set()
        for thread in threads:
            thread.join(timeout=5)

        assert bundle_source.fetch_calls == 1
        assert len(reports) == 2
        assert reports[0].outcomes[0] == reports[1].outcomes[0]

    def test_error_shared_with_waiters(self):
        """Test followers receive the leader's exception."""
        flights = SingleFlight()
        started = threading.Event()
        release = threading.Event()
        errors = []

        def leader():
            started.set()
            release.wait(timeout=5)
            raise RuntimeError("boom")

        def run(fn):
            try:
                flights.do("key", fn)
            except RuntimeError as e:
                errors.append(e)

        t1 = threading.Thread(target=run, args=(leader,))
        t1.start()
        assert started.wait(timeout=5)
        t2 = threading.Thread(target=run, args=(lambda: "unused",))
        t2.start()
        wait_until(lambda: flights.waiting("key") == 1)
        release.set()
        t1.join(timeout=5)
        t2.join(timeout=5)

        assert len(errors) == 2
        assert errors[0] is errors[1]
        assert not flights.in_flight("key")

    def test_key_released_after_failure(self):
        """Test a failed call does not wedge its key."""
        flights = SingleFlight()

        def fail():
            raise ValueError("fetch failed")

        with pytest.raises(ValueError):
            flights.do("key", fail)

        assert flights.do("key", lambda: 42) == 42
