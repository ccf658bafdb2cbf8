import pytest

from sitewatch.watch_core.dependency_graph import DependencyGraph
from sitewatch.watch_core.reset_gate import ConfigResetGate


async def _graph(resolver_cls):
    resolver = resolver_cls(
        {
            "./sitewatch.config.py": ["./lib/filters.py"],
            "./content/post.md": ["./lib/shared.py"],
            "./_data/site.py": ["./lib/data_helpers.py"],
        }
    )
    graph = DependencyGraph(resolver)
    await graph.add_dependencies(["./sitewatch.config.py", "./content/post.md", "./_data/site.py"])
    return graph


@pytest.mark.unit
@pytest.mark.asyncio
async def test_config_file_change_resets(resolver_cls):
    graph = await _graph(resolver_cls)
    gate = ConfigResetGate(graph, lambda: ["sitewatch.config.py"])

    assert gate.should_reset(["./sitewatch.config.py"])
    # Windows separators and a missing ./ prefix still match
    assert gate.should_reset([".\\sitewatch.config.py", "./content/post.md"])


@pytest.mark.unit
@pytest.mark.asyncio
async def test_config_dependency_change_resets(resolver_cls):
    graph = await _graph(resolver_cls)
    gate = ConfigResetGate(graph, lambda: ["./sitewatch.config.py"])

    assert gate.should_reset(["lib/filters.py"])


@pytest.mark.unit
@pytest.mark.asyncio
async def test_template_and_data_dependencies_do_not_reset(resolver_cls):
    graph = await _graph(resolver_cls)
    gate = ConfigResetGate(graph, lambda: ["./sitewatch.config.py"])

    assert not gate.should_reset(["./lib/shared.py"])
    assert not gate.should_reset(["./lib/data_helpers.py", "./content/post.md"])


@pytest.mark.unit
def test_empty_queue_never_resets():
    gate = ConfigResetGate(DependencyGraph(), lambda: ["./sitewatch.config.py"])
    assert not gate.should_reset([])


@pytest.mark.unit
def test_config_entries_are_read_on_every_call():
    entries = ["./sitewatch.config.py"]
    gate = ConfigResetGate(DependencyGraph(), lambda: entries)

    assert not gate.should_reset(["./alt.config.py"])
    entries.append("alt.config.py")
    assert gate.should_reset(["./alt.config.py"])
