"""
Property-based tests for the state store.
"""

import json
import threading

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from domain_dash.exceptions import PersistenceError, TamperingError
from domain_dash.models import LookupResult
from domain_dash.state_store import StateStore


SECRET = "test-secret"


@st.composite
def lookup_result_strategy(draw):
    """Generate a lookup result as the engine would store it."""
    available = draw(st.sampled_from([True, False, None]))
    return LookupResult(
        available=available,
        via=draw(st.sampled_from(["rdap", "whois", "dns"])),
        fqdn="example.com",
        extension=".com",
        duration_ms=draw(st.floats(min_value=0, max_value=60_000, allow_nan=False)),
        error=None if available is not None else draw(st.sampled_from([None, "rdap_timeout", "check_timeout"])),
        warning=draw(st.sampled_from([None, "no_signals", "conflicting_signals"])),
    )


class TestPersistenceProperty:
    """Saved state loads back identically and is protected by an HMAC."""

    @given(result=lookup_result_strategy())
    @settings(max_examples=30, deadline=None)
    def test_state_survives_reload(self, result, tmp_path_factory):
        path = tmp_path_factory.mktemp("state") / "state.json"
        store = StateStore(file_path=path, hmac_secret=SECRET)
        store.add_domain("example", [".com", ".io"])
        store.update_domain_extension_status("example", ".com", result)
        store.set_setting("checkInterval", 9)

        reloaded = StateStore(file_path=path, hmac_secret=SECRET)

        domain = reloaded.get_domain("example")
        assert domain.extensions == [".com", ".io"]
        stored = domain.results[".com"]
        assert stored.available == result.available
        assert stored.via == result.via
        assert stored.error == result.error
        assert stored.warning == result.warning
        assert reloaded.get_setting("checkInterval") == 9

    def test_tampered_file_is_rejected(self, tmp_path):
        path = tmp_path / "state.json"
        store = StateStore(file_path=path, hmac_secret=SECRET)
        store.add_domain("example", [".com"])

        data = json.loads(path.read_text(encoding="utf-8"))
        data["domains"]["example"]["extensions"].append(".evil")
        path.write_text(json.dumps(data), encoding="utf-8")

        with pytest.raises(TamperingError) as exc_info:
            StateStore(file_path=path, hmac_secret=SECRET)
        assert exc_info.value.code == "hmac_mismatch"

    def test_wrong_secret_is_rejected(self, tmp_path):
        path = tmp_path / "state.json"
        StateStore(file_path=path, hmac_secret=SECRET).add_domain("example", [".com"])
        with pytest.raises(TamperingError):
            StateStore(file_path=path, hmac_secret="other-secret")

    def test_unsigned_store_round_trips(self, tmp_path):
        path = tmp_path / "state.json"
        StateStore(file_path=path).add_domain("example", [".com"])
        assert "hmac" not in json.loads(path.read_text(encoding="utf-8"))
        assert StateStore(file_path=path).get_domain("example") is not None

    def test_corrupt_file_raises_persistence_error(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(PersistenceError) as exc_info:
            StateStore(file_path=path, hmac_secret=SECRET)
        assert exc_info.value.code == "parse_error"

    def test_memory_store_never_touches_disk(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        store = StateStore()
        store.add_domain("example", [".com"])
        assert list(tmp_path.iterdir()) == []
        assert store.file_path is None


class TestDomainOperationsProperty:
    """Domain bookkeeping."""

    @given(name=st.text(alphabet="abcdefghijklmnopqrstuvwxyz", min_size=1, max_size=12))
    @settings(max_examples=50)
    def test_names_are_normalized(self, name):
        store = StateStore()
        store.add_domain("  " + name.upper() + " ", ["com", ".COM", ".io"])
        domain = store.get_domain(name)
        assert domain.name == name
        assert domain.extensions == [".com", ".io"]

    def test_add_merges_extensions(self):
        store = StateStore()
        store.add_domain("example", [".com"])
        store.add_domain("example", [".com", ".dev"])
        assert store.get_domain("example").extensions == [".com", ".dev"]
        assert len(store.get_domains()) == 1

    def test_default_extensions_come_from_settings(self):
        store = StateStore()
        store.set_setting("extensions", [".xyz"])
        assert store.add_domain("example").extensions == [".xyz"]

    def test_remove(self):
        store = StateStore()
        store.add_domain("example", [".com"])
        assert store.remove_domain("EXAMPLE")
        assert not store.remove_domain("example")
        assert store.get_domain("example") is None

    def test_update_on_missing_domain_returns_false(self):
        store = StateStore()
        assert not store.update_domain_extension_status(
            "ghost", ".com", LookupResult(available=True, via="rdap")
        )

    def test_returned_domains_are_copies(self):
        store = StateStore()
        store.add_domain("example", [".com"])
        copy = store.get_domain("example")
        copy.extensions.append(".evil")
        copy.results[".com"] = LookupResult(available=True)
        fresh = store.get_domain("example")
        assert fresh.extensions == [".com"]
        assert fresh.results == {}

    def test_concurrent_updates_are_not_lost(self):
        store = StateStore()
        extensions = [f".t{i}" for i in range(40)]
        store.add_domain("example", extensions)

        def write(ext):
            store.update_domain_extension_status("example", ext, LookupResult(available=False, via="dns"))

        threads = [threading.Thread(target=write, args=(ext,)) for ext in extensions]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert set(store.get_domain("example").results) == set(extensions)

    def test_exchange_returns_replaced_result(self):
        store = StateStore()
        store.add_domain("example", [".com"])
        first = LookupResult(available=False, via="rdap")
        second = LookupResult(available=True, via="rdap")

        assert store.exchange_extension_status("example", ".com", first) == (True, None)
        stored, previous = store.exchange_extension_status("example", ".com", second)

        assert stored is True
        assert previous.available is False
        assert store.get_domain("example").results[".com"].available is True
        assert store.exchange_extension_status("ghost", ".com", first) == (False, None)

    def test_concurrent_exchanges_see_every_replaced_result_once(self):
        store = StateStore()
        store.add_domain("example", [".com"])
        previous_writers = []

        def write(writer):
            result = LookupResult(available=False, via="dns", details={"writer": writer})
            _, previous = store.exchange_extension_status("example", ".com", result)
            previous_writers.append(None if previous is None else previous.details["writer"])

        threads = [threading.Thread(target=write, args=(i,)) for i in range(40)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        final = store.get_domain("example").results[".com"].details["writer"]
        assert previous_writers.count(None) == 1
        seen = [w for w in previous_writers if w is not None]
        assert len(seen) == len(set(seen)) == 39
        assert set(seen) | {final} == set(range(40))


class TestHistoryAndStatsProperty:
    """History trail and aggregate counts."""

    def test_history_is_capped(self):
        store = StateStore()
        store.add_domain("example", [".com"])
        for i in range(StateStore.MAX_HISTORY + 50):
            store.set_setting("counter", i)
        history = store.get_history()
        assert len(history) == StateStore.MAX_HISTORY
        assert history[-1].data == {"key": "counter", "value": StateStore.MAX_HISTORY + 49}

    def test_status_changes_are_recorded(self):
        store = StateStore()
        store.add_domain("example", [".com"])
        store.update_domain_extension_status("example", ".com", LookupResult(available=False, via="rdap"))
        store.update_domain_extension_status("example", ".com", LookupResult(available=False, via="rdap"))
        store.update_domain_extension_status("example", ".com", LookupResult(available=True, via="rdap"))

        changes = [e for e in store.get_history() if e.action == "status_change"]
        assert [(e.data["from"], e.data["to"]) for e in changes] == [(None, False), (False, True)]

    def test_history_limit_keeps_newest(self):
        store = StateStore()
        for i in range(5):
            store.add_domain(f"name{i}", [".com"])
        assert [e.data["domain"] for e in store.get_history(2)] == ["name3", "name4"]
        assert store.get_history(0) == []

    def test_stats(self):
        store = StateStore()
        store.add_domain("alpha", [".com", ".io", ".dev"])
        store.update_domain_extension_status("alpha", ".com", LookupResult(available=True, via="rdap"))
        store.update_domain_extension_status("alpha", ".io", LookupResult(available=None, via="dns", error="dns_timeout"))

        stats = store.get_stats()

        assert stats["domains"] == 1
        assert stats["extensions"] == 3
        assert stats["checked"] == 2
        assert stats["available"] == 1
        assert stats["taken"] == 0
        assert stats["unknown"] == 2
        assert stats["errors"] == 1
        assert stats["last_checked"] is not None
