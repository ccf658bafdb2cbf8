import asyncio

import pytest

from sitewatch.logger import BuildError, FatalBuildError, WatchError
from sitewatch.watch_core.config import WatchOptions
from sitewatch.watch_core.coordinator import WatchCoordinator
from sitewatch.watch_core.events import LifecycleEvent

ENV_KEYS = ("SITEWATCH_VERSION", "SITEWATCH_ROOT", "SITEWATCH_SOURCE", "SITEWATCH_RUN_MODE")

DEPENDENCIES = {
    "./sitewatch.config.py": ["./lib/filters.py"],
    "./content/post.md": ["./lib/shared.py"],
    "./_data/site.py": ["./_data/helpers.py", "./lib/data_helpers.py"],
}


async def _until(predicate, timeout=2.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def coordinator_for(
    make_config, writer_factory, reload_server, fake_observer, resolver_cls, console, tmp_path, monkeypatch
):
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "")
    cons, _ = console

    def _make(config=None, resolver=None, **options):
        options.setdefault("debounce_secs", 0.02)
        coordinator = WatchCoordinator(
            config or make_config(),
            writer_factory,
            WatchOptions(**options),
            reload_server=reload_server,
            resolver=resolver or resolver_cls(DEPENDENCIES),
            observer_factory=lambda: fake_observer,
            console=cons,
            root=tmp_path,
        )
        return coordinator

    return _make


def _batches(coordinator):
    seen = []
    coordinator.events.on(LifecycleEvent.BEFORE_WATCH, lambda payload: seen.append(payload.queue))
    return seen


@pytest.mark.unit
@pytest.mark.asyncio
async def test_template_change_runs_one_cycle_without_reset(coordinator_for, make_config, reload_server):
    config = make_config()
    coordinator = coordinator_for(config=config)
    batches = _batches(coordinator)
    await coordinator.watch()

    coordinator.on_change("content/post.md")
    await asyncio.wait_for(coordinator.queue.wait_idle(), 2)

    assert batches == [["./content/post.md"]]
    assert config.reset_count == 0
    assert reload_server.payloads[-1]["changedFiles"] == ["./content/post.md"]
    assert reload_server.payloads[-1]["subtype"] is None
    await coordinator.stop_watch()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_config_change_resets_before_rebuild(coordinator_for, make_config, writer_factory):
    config = make_config()
    coordinator = coordinator_for(config=config)
    await coordinator.watch()

    coordinator.on_change("./sitewatch.config.py")
    await asyncio.wait_for(coordinator.queue.wait_idle(), 2)

    assert config.reset_count == 1
    first, rebuilt = writer_factory.writers
    # no carryover into the pipeline built after a reset
    assert rebuilt.page_cache is not first.page_cache
    await coordinator.stop_watch()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_config_dependency_change_resets(coordinator_for, make_config):
    config = make_config()
    coordinator = coordinator_for(config=config)
    modified = []
    coordinator.events.on(LifecycleEvent.RESOURCE_MODIFIED, modified.append)
    await coordinator.watch()

    coordinator.on_change("./lib/filters.py")
    await asyncio.wait_for(coordinator.queue.wait_idle(), 2)

    assert config.reset_count == 1
    assert modified[0].path == "./lib/filters.py"
    assert modified[0].dependants == ["./sitewatch.config.py"]
    assert modified[0].via_config_reset is True
    await coordinator.stop_watch()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_css_burst_collapses_to_style_only_reload(coordinator_for, reload_server):
    coordinator = coordinator_for()
    batches = _batches(coordinator)
    await coordinator.watch()

    coordinator.on_change("./css/a.css")
    coordinator.on_change("./css/b.css")
    coordinator.on_change("./css/a.css")
    await asyncio.wait_for(coordinator.queue.wait_idle(), 2)

    assert batches == [["./css/a.css", "./css/b.css"]]
    assert reload_server.payloads[-1]["subtype"] == "css"
    await coordinator.stop_watch()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_change_during_cycle_reruns_immediately(coordinator_for, writer_factory, capsys):
    coordinator = coordinator_for()
    batches = _batches(coordinator)
    await coordinator.watch()

    gate = asyncio.Event()
    writer_factory.gate = gate
    coordinator.on_change("./content/post.md")
    await _until(lambda: len(writer_factory.writers) == 2 and writer_factory.last.started.is_set())

    coordinator.on_change("./c.liquid")
    coordinator.queue.delay = 60
    gate.set()
    await asyncio.wait_for(coordinator.queue.wait_idle(), 2)

    assert batches == [["./content/post.md"], ["./c.liquid"]]
    assert "running again. (1 change)" in capsys.readouterr().out
    await coordinator.stop_watch()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_programmatic_build_error_is_reraised(coordinator_for, writer_factory):
    writer_factory.kwargs = {"error": BuildError("bad template")}
    coordinator = coordinator_for(source="script")

    with pytest.raises(BuildError):
        await coordinator.write()

    assert coordinator.session.telemetry.failures == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failed_initial_build_does_not_watch(coordinator_for, writer_factory, fake_observer):
    writer_factory.kwargs = {"error": RuntimeError("disk full")}
    coordinator = coordinator_for(source="cli", run_mode="watch")

    with pytest.raises(WatchError):
        await coordinator.watch()

    assert coordinator.queue is None
    assert not fake_observer.started
    assert coordinator.session.exit_code == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unexpected_cycle_error_stops_watching(coordinator_for, writer_factory, reload_server, fake_observer):
    coordinator = coordinator_for()
    await coordinator.watch()
    assert fake_observer.started

    writer_factory.kwargs = {"error": RuntimeError("boom")}
    coordinator.on_change("./content/post.md")
    code = await asyncio.wait_for(coordinator.wait_closed(), 2)

    assert code == 1
    assert reload_server.closed
    assert fake_observer.stopped
    assert isinstance(reload_server.errors[-1]["error"], RuntimeError)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_build_error_in_cycle_keeps_watching(coordinator_for, writer_factory, reload_server):
    coordinator = coordinator_for()
    await coordinator.watch()

    writer_factory.kwargs = {"error": BuildError("bad template")}
    coordinator.on_change("./content/post.md")
    await asyncio.wait_for(coordinator.queue.wait_idle(), 2)

    assert not coordinator.queue.stopped
    assert isinstance(reload_server.errors[-1]["error"], BuildError)

    writer_factory.kwargs = {}
    coordinator.on_change("./content/post.md")
    await asyncio.wait_for(coordinator.queue.wait_idle(), 2)
    assert reload_server.payloads[-1]["changedFiles"] == ["./content/post.md"]
    await coordinator.stop_watch()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_plain_render_error_in_script_watch_is_recoverable(coordinator_for, writer_factory, reload_server, fake_observer):
    coordinator = coordinator_for()
    assert coordinator.options.source == "script"
    await coordinator.watch()

    writer_factory.kwargs = {"error": ValueError("unknown filter 'slugify'")}
    coordinator.on_change("./content/post.md")
    await asyncio.wait_for(coordinator.queue.wait_idle(), 2)

    assert not coordinator.queue.stopped
    assert not fake_observer.stopped
    assert isinstance(reload_server.errors[-1]["error"], ValueError)

    writer_factory.kwargs = {}
    coordinator.on_change("./content/post.md")
    await asyncio.wait_for(coordinator.queue.wait_idle(), 2)
    assert reload_server.payloads[-1]["changedFiles"] == ["./content/post.md"]
    await coordinator.stop_watch()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_write_pipeline_in_cycle_stops_watching(coordinator_for, fake_observer):
    coordinator = coordinator_for(source="cli")
    await coordinator.watch()

    coordinator.session.writer_factory = lambda config: None
    coordinator.on_change("./content/post.md")
    await _until(lambda: fake_observer.stopped)

    assert coordinator.queue.stopped
    assert coordinator.queue.add("./content/post.md") is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_incremental_cycle_builds_first_changed_file(coordinator_for, writer_factory):
    coordinator = coordinator_for(incremental=True)
    await coordinator.watch()

    coordinator.on_change("./content/post.md")
    await asyncio.wait_for(coordinator.queue.wait_idle(), 2)

    writer = writer_factory.last
    assert writer.incremental_history == ["./content/post.md"]
    assert writer.incremental_file is None
    await coordinator.stop_watch()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_init_watch_targets(coordinator_for):
    coordinator = coordinator_for()
    await coordinator.init_watch()

    targets = coordinator.get_watched_files()
    for expected in (
        "./pyproject.toml",
        "./content/**/*.md",
        "./.gitignore",
        "./sitewatch.config.py",
        "./_data/site.py",
        "./lib/filters.py",
        "./lib/shared.py",
        "./lib/data_helpers.py",
    ):
        assert expected in targets
    # the data directory is watched wholesale; its own modules are not tracked as edges
    assert "./_data/helpers.py" not in targets


@pytest.mark.unit
@pytest.mark.asyncio
async def test_dependency_watching_can_be_disabled(coordinator_for, make_config, resolver_cls):
    resolver = resolver_cls(DEPENDENCIES)
    coordinator = coordinator_for(config=make_config(watch_dependencies=False), resolver=resolver)
    await coordinator.init_watch()

    assert resolver.calls == []
    assert "./lib/filters.py" not in coordinator.get_watched_files()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_new_dependencies_are_watched_after_cycle(coordinator_for, resolver_cls):
    resolver = resolver_cls(dict(DEPENDENCIES))
    coordinator = coordinator_for(resolver=resolver)
    await coordinator.watch()

    resolver.graph["./content/post.md"] = ["./lib/shared.py", "./lib/new.py"]
    coordinator.on_change("./content/post.md")
    await asyncio.wait_for(coordinator.queue.wait_idle(), 2)

    assert "./content/post.md" in resolver.cleared
    assert "./lib/new.py" in coordinator.watched_targets
    assert coordinator.accepts("./lib/new.py")
    await coordinator.stop_watch()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_accepts_filters_output_and_unknown_files(coordinator_for):
    coordinator = coordinator_for()
    await coordinator.init_watch()

    assert coordinator.accepts("./content/2024/post.md")
    assert coordinator.accepts("./lib/filters.py")
    assert not coordinator.accepts("./_site/post/index.html")
    assert not coordinator.accepts("./notes.txt")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_add_and_unlink_update_existence_index(coordinator_for):
    coordinator = coordinator_for()
    await coordinator.watch()

    coordinator.on_add("content/new.md")
    assert "./content/new.md" in coordinator.existence_index
    coordinator.on_unlink("./content/new.md")
    assert "./content/new.md" not in coordinator.existence_index

    await asyncio.wait_for(coordinator.queue.wait_idle(), 2)
    await coordinator.stop_watch()


@pytest.mark.unit
def test_notification_before_watch_is_rejected(coordinator_for):
    coordinator = coordinator_for()
    with pytest.raises(WatchError):
        coordinator.on_change("./content/post.md")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_watch_twice_and_stop_twice(coordinator_for, reload_server):
    coordinator = coordinator_for()
    await coordinator.watch()

    with pytest.raises(WatchError):
        await coordinator.watch()

    await coordinator.stop_watch()
    await coordinator.stop_watch()
    assert reload_server.closed
    assert await coordinator.wait_closed() == 0
