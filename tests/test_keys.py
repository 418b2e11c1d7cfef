"""
Tests for cache key derivation.
"""

import datetime
import re

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from querycache import QueryBuilder, Resource
from querycache.descriptor import QueryDescriptor, SortSpec, VirtualProjection
from querycache.keys import CacheKeyDeriver, compute_digest
from querycache.namespace import NamespaceVersionStore


KEY_PATTERN = re.compile(r"^qc:[0-9a-f]{64}$")

field_names = st.text(alphabet="abcdefghijklmnopqrstuvwxyz_", min_size=1, max_size=12)
filter_values = st.one_of(
    st.none(),
    st.booleans(),
    st.integers(min_value=-1000, max_value=1000),
    st.text(max_size=10),
    st.dictionaries(st.sampled_from(["gt", "lt", "ne"]), st.integers(), min_size=1, max_size=2),
)
filter_maps = st.dictionaries(field_names, filter_values, max_size=6)


class _StubClient:
    """Just enough of QueryCache for building descriptors."""

    class settings:
        default_ttl = 60


RESOURCE = Resource("User", virtual_fields={"totalViews": "SELECT 1"})


def _builder():
    return QueryBuilder(RESOURCE, _StubClient())


class TestComputeDigest:
    """Test cases for compute_digest()."""

    def test_digest_is_stable_sha256_hex(self):
        digest = compute_digest("User", 1, "fetch_many", QueryDescriptor(filters={"status": "active"}))

        assert re.fullmatch(r"[0-9a-f]{64}", digest)
        assert digest == compute_digest("User", 1, "fetch_many", QueryDescriptor(filters={"status": "active"}))

    @pytest.mark.parametrize("resource,version,operation,descriptor", [
        ("Post", 1, "fetch_many", QueryDescriptor(filters={"status": "active"})),
        ("User", 2, "fetch_many", QueryDescriptor(filters={"status": "active"})),
        ("User", 1, "fetch_one", QueryDescriptor(filters={"status": "active"})),
        ("User", 1, "fetch_many", QueryDescriptor(filters={"status": "banned"})),
        ("User", 1, "fetch_many", QueryDescriptor(filters={"status": "active"}, limit=10)),
        ("User", 1, "fetch_many", QueryDescriptor(filters={"status": "active"}, sort=(SortSpec("id"),))),
    ])
    def test_any_component_change_changes_digest(self, resource, version, operation, descriptor):
        baseline = compute_digest("User", 1, "fetch_many", QueryDescriptor(filters={"status": "active"}))
        assert compute_digest(resource, version, operation, descriptor) != baseline

    def test_string_and_int_filter_values_differ(self):
        assert compute_digest("User", 1, "fetch_many", QueryDescriptor(filters={"id": 1})) != \
            compute_digest("User", 1, "fetch_many", QueryDescriptor(filters={"id": "1"}))

    @pytest.mark.parametrize("first,second", [
        ({"token": b"\x01\xff"}, {"token": "01ff"}),
        ({"day": datetime.date(2024, 1, 1)}, {"day": "datetime.date(2024, 1, 1)"}),
        ({"day": datetime.date(2024, 1, 1)}, {"day": "2024-01-01"}),
        ({"bucket": {1: "x"}}, {"bucket": {"1": "x"}}),
    ])
    def test_look_alike_filter_values_differ(self, first, second):
        assert compute_digest("User", 1, "fetch_many", QueryDescriptor(filters=first)) != \
            compute_digest("User", 1, "fetch_many", QueryDescriptor(filters=second))

    def test_opaque_virtual_expressions_are_stable_across_registries(self):
        class Expr:
            def __init__(self, sql):
                self.sql = sql

        digests = set()
        for _ in range(2):
            resource = Resource("User", virtual_fields={"totalViews": Expr("SELECT 1")})
            _, virtual = resource.partition_fields(["totalViews"])
            descriptor = QueryDescriptor(virtual=tuple(VirtualProjection(*pair) for pair in virtual))
            digests.add(compute_digest("User", 1, "fetch_many", descriptor))

        assert len(digests) == 1


class TestCacheKeyDeriver:
    """Test cases for CacheKeyDeriver."""

    @pytest.fixture
    def deriver(self, store):
        return CacheKeyDeriver(NamespaceVersionStore(store))

    @pytest.mark.asyncio
    async def test_key_embeds_current_version(self, deriver):
        descriptor = QueryDescriptor(columns=("id", "name"))

        key_v1 = await deriver.derive_key("User", "fetch_many", descriptor)
        assert KEY_PATTERN.match(key_v1)
        assert key_v1 == "qc:" + compute_digest("User", 1, "fetch_many", descriptor)

        await deriver.versions.bump_version("User")
        key_v2 = await deriver.derive_key("User", "fetch_many", descriptor)

        assert key_v2 != key_v1
        assert key_v2 == "qc:" + compute_digest("User", 2, "fetch_many", descriptor)

    @pytest.mark.asyncio
    async def test_custom_prefix(self, store):
        deriver = CacheKeyDeriver(NamespaceVersionStore(store), key_prefix="app:qc:")
        key = await deriver.derive_key("User", "fetch_one", QueryDescriptor())
        assert key.startswith("app:qc:")
        assert len(key) == len("app:qc:") + 64


class TestKeyDerivationProperties:
    """Property-based tests: keys depend only on final descriptor state."""

    @given(filters=filter_maps, data=st.data())
    @settings(max_examples=100, deadline=None)
    def test_filter_call_order_does_not_matter_for_equal_final_state(self, filters, data):
        items = list(filters.items())
        shuffled = data.draw(st.permutations(items))
        split = data.draw(st.integers(min_value=0, max_value=len(shuffled)))

        first = _builder().filter(dict(items))
        second = _builder().filter(dict(shuffled[:split])).filter(dict(shuffled[split:]))

        assert compute_digest("User", 1, "fetch_many", first.descriptor()) == \
            compute_digest("User", 1, "fetch_many", second.descriptor())

    @given(
        columns=st.lists(field_names, min_size=1, max_size=5, unique=True),
        page=st.integers(min_value=1, max_value=50),
        page_size=st.integers(min_value=1, max_value=100),
    )
    @settings(max_examples=100, deadline=None)
    def test_configuration_call_order_does_not_matter(self, columns, page, page_size):
        first = (
            _builder()
            .select(columns)
            .sort([("id", "DESC")])
            .paginate(page=page, page_size=page_size)
            .filter({"status": "active"})
        )
        second = (
            _builder()
            .paginate(page=page, page_size=page_size)
            .filter({"status": "active"})
            .sort(["name"])
            .select(columns)
            .sort([("id", "desc")])
        )

        assert compute_digest("User", 3, "fetch_many", first.descriptor()) == \
            compute_digest("User", 3, "fetch_many", second.descriptor())

    @given(columns=st.lists(field_names, min_size=1, max_size=6, unique=True))
    @settings(max_examples=100, deadline=None)
    def test_unregistered_fields_stay_ordinary_alongside_virtual(self, columns):
        descriptor = _builder().select(columns + ["totalViews"]).descriptor()

        assert descriptor.projected_fields == tuple(columns)
        assert list(descriptor.virtual_fields) == ["totalViews"]

    @given(a=filter_maps, b=filter_maps)
    @settings(max_examples=100, deadline=None)
    def test_distinct_filters_give_distinct_keys(self, a, b):
        da = QueryDescriptor(filters=a)
        db = QueryDescriptor(filters=b)
        if da.canonical() != db.canonical():
            assert compute_digest("User", 1, "fetch_many", da) != compute_digest("User", 1, "fetch_many", db)
