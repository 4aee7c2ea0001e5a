"""Proximity search: store-computed haversine distance + bounding-box pre-filter."""
import pytest

from musicnet.database import haversine_m
from musicnet.errors import ValidationFailedError
from musicnet.models import EntityKind
from musicnet.services import geo

SF = (37.7749, -122.4194)
OAKLAND = (37.8044, -122.2712)


async def _seed_bay_area(make_user):
    return {
        "centre": await make_user(*SF, username="centre"),
        "near": await make_user(SF[0] + 0.0045, SF[1], username="near"),       # ~500 m
        "two_km": await make_user(SF[0] + 0.018, SF[1], username="two_km"),    # ~2 km
        "oakland": await make_user(*OAKLAND, username="oakland"),              # ~13 km
        "nowhere": await make_user(username="nowhere"),
    }


async def test_nearby_users_within_one_km(db, make_user):
    users = await _seed_bay_area(make_user)

    matches = await geo.find_nearby(db, EntityKind.USER, *SF, radius_km=1, limit=20)

    assert [m.entity.username for m in matches] == ["centre", "near"]
    assert matches[0].distance_m == pytest.approx(0.0, abs=1e-6)
    assert 450 < matches[1].distance_m < 550
    assert users["nowhere"].id not in {m.entity.id for m in matches}


@pytest.mark.parametrize("radius_km", [1, 3, 15, 500])
async def test_results_respect_radius_and_are_sorted(db, make_user, radius_km):
    await _seed_bay_area(make_user)

    matches = await geo.find_nearby(db, EntityKind.USER, *SF, radius_km=radius_km, limit=100)

    distances = [m.distance_m for m in matches]
    assert all(d <= radius_km * 1000 for d in distances)
    assert distances == sorted(distances)
    for m in matches:
        expected = haversine_m(SF[0], SF[1], m.entity.latitude, m.entity.longitude)
        assert m.distance_m == pytest.approx(expected)


async def test_entities_without_location_never_match(db, make_user):
    await make_user(username="ghost")

    assert await geo.find_nearby(db, EntityKind.USER, 0.0, 0.0, radius_km=500, limit=100) == []


async def test_limit_caps_after_filtering(db, make_user):
    await _seed_bay_area(make_user)

    matches = await geo.find_nearby(db, EntityKind.USER, *SF, radius_km=20, limit=2)

    assert [m.entity.username for m in matches] == ["centre", "near"]


async def test_equal_distances_ordered_by_id(db, make_user):
    a = await make_user(*SF)
    b = await make_user(*SF)

    matches = await geo.find_nearby(db, EntityKind.USER, *SF, radius_km=1, limit=10)

    assert [m.entity.id for m in matches] == sorted([a.id, b.id])


async def test_search_across_antimeridian(db, make_user):
    east = await make_user(0.0, 179.995)
    west = await make_user(0.0, -179.995)

    matches = await geo.find_nearby(db, EntityKind.USER, 0.0, 179.999, radius_km=5, limit=10)

    assert [m.entity.id for m in matches] == [east.id, west.id]


async def test_search_near_pole_covers_all_longitudes(db, make_user):
    far_side = await make_user(89.999, 180.0)

    matches = await geo.find_nearby(db, EntityKind.USER, 89.999, 0.0, radius_km=1, limit=10)

    assert [m.entity.id for m in matches] == [far_side.id]


async def test_nearby_bands(db, make_band):
    band = await make_band(*OAKLAND, name="Lake Merritt Quartet")
    await make_band(52.52, 13.405, name="Spree Static")

    matches = await geo.find_nearby(db, EntityKind.BAND, *SF, radius_km=50, limit=10)

    assert [m.entity.id for m in matches] == [band.id]
    assert 12_000 < matches[0].distance_m < 15_000


def test_bounding_box_splits_at_antimeridian():
    min_lat, max_lat, ranges = geo.bounding_box(0.0, 179.9, 50_000)

    assert min_lat < 0 < max_lat
    assert len(ranges) == 2
    (lo1, hi1), (lo2, hi2) = ranges
    assert hi1 == 180.0 and lo2 == -180.0
    assert lo1 < 179.9 and -180.0 < hi2 < -179.0


def test_bounding_box_single_range_mid_latitudes():
    _, _, ranges = geo.bounding_box(*SF, 10_000)

    assert len(ranges) == 1
    lo, hi = ranges[0]
    assert lo < SF[1] < hi


# -- Facade validation -----------------------------------------------------

@pytest.mark.parametrize(
    "kwargs, field",
    [
        ({"radius_km": 501}, "radius_km"),
        ({"radius_km": 0.5}, "radius_km"),
        ({"limit": 0}, "limit"),
        ({"limit": 101}, "limit"),
    ],
)
async def test_nearby_rejects_out_of_contract_parameters(service, kwargs, field):
    with pytest.raises(ValidationFailedError) as info:
        await service.get_nearby_users(*SF, **kwargs)
    assert info.value.field == field


async def test_nearby_rejects_bad_coordinates(service):
    with pytest.raises(ValidationFailedError):
        await service.get_nearby_bands(91.0, 0.0)


async def test_nearby_uses_defaults(service, make_user):
    await _seed_bay_area(make_user)

    matches = await service.get_nearby_users(*SF)

    # default radius 50 km reaches Oakland, not the unlocated user
    assert {m.entity.username for m in matches} == {"centre", "near", "two_km", "oakland"}
