"""Shared test fixtures for Arbor."""

import pytest

from arbor_core.config.models import ArborConfig, CacheConfig
from arbor_core.hierarchy import EventRecorder, HierarchyCacheMaintainer, read_record
from arbor_core.interfaces import Node
from arbor_lite.store import InMemoryNodeStore


@pytest.fixture
def sample_config():
    return ArborConfig()


@pytest.fixture
def store():
    return InMemoryNodeStore()


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def maintainer(store, recorder):
    return HierarchyCacheMaintainer(store, CacheConfig(), sinks=[recorder])


@pytest.fixture
def make_node(maintainer):
    """Create and save a node through the maintainer, returning its id."""

    def _make(short_name: str, parent: int = 0, **fields) -> int:
        node = Node(
            parent=parent,
            short_name=short_name,
            display_name=fields.pop("display_name", short_name.title()),
            published=fields.pop("published", True),
            **fields,
        )
        assert maintainer.save(node)
        return node.id

    return _make


@pytest.fixture
def record_of(store):
    """Read the cache record of a stored node by id."""

    def _record(node_id: int):
        node = store.get(node_id)
        assert node is not None
        return read_record(node.properties)

    return _record
