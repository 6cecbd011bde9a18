import pytest

from avrinit.registry import load_registry
from avrinit.snapshot import parse_snapshot


@pytest.fixture(scope="session")
def registry():
    return load_registry()


@pytest.fixture(scope="session")
def board(registry):
    return registry.board


@pytest.fixture
def snapshot(registry):
    """ Parse plain data into a snapshot using the bundled models """
    def make(data):
        return parse_snapshot(data, registry)
    return make


def write_model(directory, name, text):
    path = directory / name
    path.write_text(text, encoding="utf-8")
    return path
