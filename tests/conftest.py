import asyncio
import io
import sys
from pathlib import Path

import pytest
from rich.console import Console

# Ensure repository root is on sys.path so `import sitewatch...` works locally
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sitewatch.watch_core.carryover import DeclaredFieldsCarryover  # noqa: E402
from sitewatch.watch_core.collaborators import ProjectDirectories, StaticProjectConfig  # noqa: E402
from sitewatch.watch_core.models import TemplateResult  # noqa: E402


class FakeWriter(DeclaredFieldsCarryover):
    """In-memory write pipeline; results are computed from ``templates``."""

    CARRYOVER_FIELDS = ("page_cache",)

    def __init__(self, templates=None, copies=None, error=None, skipped=0):
        self.templates = list(templates if templates is not None else ["./content/post.md"])
        self.copies = list(copies or [])
        self.error = error
        self.skipped = skipped
        self.write_count = 0
        self.skipped_count = 0
        self.copy_count = 0
        self.page_cache = {}
        self.incremental_file = None
        self.incremental_history = []
        self.run_initial_build = None
        self.incremental_build = None
        self.calls = 0
        self.gate = None
        self.started = asyncio.Event()

    def _results(self):
        results = [
            TemplateResult(
                input_path=path,
                output_url="/" + Path(path).stem + "/",
                output_path="./_site/" + Path(path).stem + "/index.html",
            )
            for path in self.templates
        ]
        # nested lists and empty entries, like a real pipeline returns
        return [list(self.copies), results[:1], None, results[1:], []]

    async def _run(self):
        self.calls += 1
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        self.write_count = len(self.templates)
        self.skipped_count = self.skipped
        self.copy_count = len(self.copies)
        self.page_cache.setdefault("builds", 0)
        self.page_cache["builds"] += 1
        return self._results()

    async def write(self):
        return await self._run()

    async def get_document(self, mode):
        return await self._run()

    def set_incremental_file(self, path):
        self.incremental_file = path
        self.incremental_history.append(path)

    def reset_incremental_file(self):
        self.incremental_file = None

    def set_run_initial_build(self, value):
        self.run_initial_build = value

    def set_incremental_build(self, value):
        self.incremental_build = value


class FakeWriterFactory:
    """Creates a FakeWriter per call; ``kwargs``/``gate`` apply to writers made afterwards."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.gate = None
        self.writers = []

    def __call__(self, config):
        writer = FakeWriter(**self.kwargs)
        writer.gate = self.gate
        self.writers.append(writer)
        return writer

    @property
    def last(self):
        return self.writers[-1]


class FakeReloadServer:
    def __init__(self):
        self.output_dir = None
        self.passthrough = None
        self.payloads = []
        self.errors = []
        self.served = []
        self.closed = False

    def set_output_dir(self, path):
        self.output_dir = path

    def watch_passthrough_copy(self, globs):
        self.passthrough = list(globs)

    async def reload(self, payload):
        self.payloads.append(payload)

    async def send_error(self, message):
        self.errors.append(message)

    async def serve(self, port=None):
        self.served.append(port)

    async def close(self):
        self.closed = True


class FakeResolver:
    """Dependency closures from a dict; paths listed in ``failing`` raise."""

    def __init__(self, graph=None, failing=()):
        self.graph = dict(graph or {})
        self.failing = set(failing)
        self.cleared = []
        self.calls = []

    async def resolve(self, path):
        self.calls.append(path)
        if path in self.failing:
            raise OSError(f"cannot read {path}")
        return list(self.graph.get(path, []))

    def clear(self, paths):
        self.cleared.extend(paths)


class FakeObserver:
    def __init__(self):
        self.scheduled = []
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        self.scheduled.append((handler, path, recursive))

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        return None


@pytest.fixture
def make_config():
    def _make(**overrides):
        params = dict(
            config_files=["./sitewatch.config.py"],
            directories=ProjectDirectories(
                input="./",
                output="./_site/",
                data="./_data/",
                includes="./_includes/",
            ),
            template_files=["./content/post.md"],
            watch_globs=["./content/**/*.md", "./css/*.css", "./*.liquid"],
            data_files=["./_data/site.py"],
        )
        params.update(overrides)
        return StaticProjectConfig(**params)

    return _make


@pytest.fixture
def writer_factory():
    return FakeWriterFactory()


@pytest.fixture
def reload_server():
    return FakeReloadServer()


@pytest.fixture
def fake_observer():
    return FakeObserver()


@pytest.fixture
def resolver_cls():
    return FakeResolver


@pytest.fixture
def writer_cls():
    return FakeWriter


@pytest.fixture
def console():
    buf = io.StringIO()
    return Console(file=buf, force_terminal=False, width=200), buf
