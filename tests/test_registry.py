from __future__ import annotations

import threading

from concurrent.futures import ThreadPoolExecutor

import pytest

from polyrun.exceptions import ResolutionError
from polyrun.registry import (
    MATCH_EXTENSION,
    MATCH_NAME,
    MATCH_PREFIX,
    MATCH_TYPE,
    RunnerRegistry,
)
from tests.sample_runners import RecordingRunner


def test_resolution_is_deterministic(registry, fake_runner):
    results = {registry.find("script.fake") for _ in range(20)}
    assert results == {fake_runner}


def test_name_takes_precedence_over_type():
    by_name = RecordingRunner(name="Foo", type="text/foo", extensions=("foo",))
    by_type = RecordingRunner(name="Bar", type="Foo", extensions=("bar",))
    registry = RunnerRegistry([by_type, by_name])
    resolution = registry.resolve("Foo")
    assert resolution.runner is by_name
    assert resolution.matched_by == MATCH_NAME


def test_type_match():
    runner = RecordingRunner(name="Foo", type="text/foo", extensions=("foo",))
    registry = RunnerRegistry([runner])
    resolution = registry.resolve("text/foo")
    assert resolution.runner is runner
    assert resolution.matched_by == MATCH_TYPE


def test_extension_tie_break_uses_registration_order():
    first = RecordingRunner(name="A", type="text/a", extensions=("x",))
    second = RecordingRunner(name="B", type="text/b", extensions=("x",))
    registry = RunnerRegistry([first, second])
    assert registry.find("script.x") is first
    assert registry.find("/tmp/deep/dir/script.X") is first
    assert registry.find(".x") is first
    assert registry.find("x") is first
    assert registry.find("file:///tmp/script.x") is first
    assert registry.resolve("script.x").matched_by == MATCH_EXTENSION


def test_unsupported_runner_is_never_returned():
    hidden = RecordingRunner(
        name="Hidden", type="text/x", extensions=("x",), supported=False
    )
    visible = RecordingRunner(name="Visible", type="text/x", extensions=("x",))
    registry = RunnerRegistry([hidden, visible])
    assert hidden in registry
    assert registry.find("Hidden") is None
    assert registry.find("script.x") is visible
    assert registry.find("text/x") is visible
    assert registry.find("Hidden: code") is None
    assert registry.supported_runners() == (visible,)


def test_only_unsupported_match_reports_unsupported():
    hidden = RecordingRunner(
        name="Hidden", type="text/x", extensions=("x",), supported=False
    )
    registry = RunnerRegistry([hidden])
    with pytest.raises(ResolutionError, match="unsupported"):
        registry.resolve("script.x")


def test_unknown_identifier_fails(registry):
    assert registry.find("script.unknown") is None
    with pytest.raises(ResolutionError, match="no runner can handle"):
        registry.resolve("script.unknown")
    with pytest.raises(ResolutionError):
        registry.resolve("   ")


def test_prefix_form_strips_runner_name(registry, fake_runner):
    resolution = registry.resolve("Fake: do_something()")
    assert resolution.runner is fake_runner
    assert resolution.matched_by == MATCH_PREFIX
    assert resolution.target == "do_something()"
    assert registry.resolve("Fakedo_it").target == "do_it"


def test_prefix_prefers_longest_name():
    java = RecordingRunner(name="Java", type="text/java", extensions=("java",))
    javascript = RecordingRunner(
        name="JavaScript", type="text/javascript", extensions=("js",)
    )
    registry = RunnerRegistry([java, javascript])
    assert registry.find("JavaScript: console.log(1)") is javascript
    assert registry.find("Java: System.exit(0)") is java


def test_prefixed_path_keeps_file_target(registry, fake_runner):
    resolution = registry.resolve("Fake:/tmp/script.fake")
    assert resolution.runner is fake_runner
    assert resolution.matched_by == MATCH_EXTENSION
    assert resolution.target == "/tmp/script.fake"


def test_resolve_prefix_ignores_plain_code(registry):
    assert registry.resolve_prefix("print('x.fake')") is None
    assert registry.resolve_prefix("Fake: go()").target == "go()"


def test_duplicate_name_is_ignored(caplog):
    first = RecordingRunner(name="Dup", extensions=("a",))
    clash = RecordingRunner(name="Dup", extensions=("b",))
    registry = RunnerRegistry([first])
    with caplog.at_level("WARNING"):
        assert registry.register(clash) is False
    assert "already registered" in caplog.text
    assert registry.runners == (first,)
    assert registry.find("script.b") is None


def test_supported_runner_needs_extensions():
    registry = RunnerRegistry()
    with pytest.raises(ValueError):
        registry.register(RecordingRunner(name="Empty", extensions=()))
    registry.register(
        RecordingRunner(name="Off", extensions=(), supported=False)
    )
    assert len(registry) == 1


def test_exclude_and_include(registry, fake_runner):
    registry.exclude(fake_runner)
    assert registry.is_excluded(fake_runner)
    assert registry.find("Fake") is None
    assert registry.resolve("Fake", include_excluded=True).runner is fake_runner
    registry.include(fake_runner)
    assert registry.find("Fake") is fake_runner


def test_unregister_removes_all_entries(registry, fake_runner):
    registry.unregister(fake_runner)
    assert len(registry) == 0
    assert registry.get("Fake") is None
    assert registry.find("script.fake") is None


def test_nameless_runner_resolves_by_extension_only():
    runner = RecordingRunner(name=None, type="text/anon", extensions=("anon",))
    registry = RunnerRegistry([runner])
    assert registry.find("file.anon") is runner
    assert registry.get("None") is None


def test_concurrent_lookups_during_registration(registry, fake_runner):
    stop = threading.Event()

    def register_many() -> None:
        for index in range(50):
            registry.register(
                RecordingRunner(
                    name=f"Extra{index}",
                    type=f"text/extra{index}",
                    extensions=(f"e{index}",),
                )
            )
        stop.set()

    def lookup(_: int) -> bool:
        return registry.find("script.fake") is fake_runner

    writer = threading.Thread(target=register_many)
    writer.start()
    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(lookup, range(400)))
    writer.join()
    assert stop.is_set()
    assert all(results)
    assert len(registry) == 51


def test_exact_type_beats_case_insensitive_name():
    typed = RecordingRunner(name="Alpha", type="beta", extensions=("al",))
    named = RecordingRunner(name="Beta", type="text/beta", extensions=("be",))
    registry = RunnerRegistry([typed, named])
    resolution = registry.resolve("beta")
    assert resolution.runner is typed
    assert resolution.matched_by == MATCH_TYPE
    assert registry.resolve("Beta").runner is named
    assert registry.resolve("BETA").runner is named
