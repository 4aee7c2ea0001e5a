"""Seed dataset builder: deterministic per seed, no global RNG, sane graph."""
import importlib.util
import random
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "seed_data.py"


@pytest.fixture(scope="module")
def seed_data():
    loader_spec = importlib.util.spec_from_file_location("seed_data", SCRIPT)
    module = importlib.util.module_from_spec(loader_spec)
    loader_spec.loader.exec_module(module)
    return module


def test_same_seed_same_dataset(seed_data):
    assert seed_data.build_dataset(7) == seed_data.build_dataset(7)
    assert seed_data.build_dataset(7) != seed_data.build_dataset(8)


def test_global_random_state_untouched(seed_data):
    random.seed(1234)
    before = random.getstate()

    seed_data.build_dataset(99)

    assert random.getstate() == before


def test_follow_graph_has_no_self_or_duplicate_edges(seed_data):
    plan = seed_data.build_dataset(42)

    assert all(a != b for a, b in plan.user_follows)
    assert len(set(plan.user_follows)) == len(plan.user_follows)
    assert len(set(plan.band_follows)) == len(plan.band_follows)


def test_locations_and_memberships_are_valid(seed_data):
    plan = seed_data.build_dataset(42)

    for u in plan.users:
        assert -90 <= u.latitude <= 90 and -180 <= u.longitude <= 180
    for band in plan.bands:
        assert band.creator not in band.members
        assert 1 <= len(band.members) <= 3
    for band_index, member, _ in plan.band_posts:
        assert member == plan.bands[band_index].creator
