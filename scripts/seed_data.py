#!/usr/bin/env python3
"""
Seed script — creates a realistic dataset for exploring the MusicNet API.

Creates:
  • 12 musicians scattered around a few cities
  • 4 bands (creator is Admin, 1-3 extra members each)
  • A follow graph (each user follows 3-5 users and 1-2 bands)
  • 3 posts per user and 2 per band
  • Some likes and reposts across posts

Run after docker compose up:
  python scripts/seed_data.py --api-url http://localhost:8000 --seed 42

The same --seed always produces the same dataset. All IDs are printed so
you can use them in curl commands.
"""
import argparse
import json
import time
import urllib.request
import urllib.error
from dataclasses import dataclass, field
from random import Random
from typing import Optional


CITIES = {
    "San Francisco": ("United States", 37.7749, -122.4194),
    "Oakland": ("United States", 37.8044, -122.2712),
    "Berlin": ("Germany", 52.5200, 13.4050),
    "London": ("United Kingdom", 51.5074, -0.1278),
}

BASE_USERS = [
    ("ava_drums", "Ava Chen", ["Drummer"]),
    ("ben_bass", "Ben Martinez", ["Bassist"]),
    ("cora_keys", "Cora Singh", ["Keyboardist", "Producer"]),
    ("dan_riffs", "Dan Kim", ["Guitarist"]),
    ("eli_vox", "Eli Johnson", ["Vocalist"]),
    ("fay_fiddle", "Fay Williams", ["Violinist"]),
    ("gus_synth", "Gus Li", ["Producer"]),
    ("hana_horns", "Hana Brown", ["Trumpet"]),
    ("ivo_strings", "Ivo Davis", ["Guitarist", "Vocalist"]),
    ("jo_beats", "Jo Wilson", ["Drummer", "Producer"]),
    ("kai_cello", "Kai Moreno", ["Cellist"]),
    ("lu_lyrics", "Lu Novak", ["Songwriter"]),
]

BASE_BANDS = [
    ("The Fog Horns", "San Francisco", ["Indie", "Rock"], ["Drummer"]),
    ("Spree Static", "Berlin", ["Techno", "Electronic"], ["Vocalist"]),
    ("Thames Delta", "London", ["Blues"], ["Bassist", "Keyboardist"]),
    ("Lake Merritt Quartet", "Oakland", ["Jazz"], []),
]

GENRES = ["Rock", "Jazz", "Indie", "Electronic", "Blues", "Folk", "Hip-Hop", "Metal"]

SAMPLE_POSTS = [
    "Rehearsal tonight went long but the new bridge finally clicks 🎸",
    "Looking for a drummer who can handle odd time signatures. DM me!",
    "Just tracked vocals for our first single. Mixing starts next week.",
    "Open mic at the corner bar on Thursday, come say hi.",
    "New pedalboard layout. Fewer cables, more fuzz.",
    "Anyone up for a jam session this weekend? Bring your own amp.",
    "Our EP is out on all platforms. Thanks for the support ❤️",
    "Practising scales for two hours and my fingers hate me.",
    "Booked our first out-of-town gig!",
    "Demo of a new song, feedback welcome.",
    "Found a vintage Rhodes at a flea market. Best day ever.",
    "Sound check done, doors open at 8.",
    "Writing lyrics on the train again. The city is a good muse.",
    "Recording drums in a stairwell for that natural reverb.",
    "Who else tunes down to drop D for every song?",
]

# ~2 km of jitter around a city centre
JITTER_DEGREES = 0.02


@dataclass
class SeedUser:
    username: str
    display_name: str
    skills: list[str]
    city: str
    country: str
    latitude: float
    longitude: float
    genres: list[str]


@dataclass
class SeedBand:
    name: str
    city: str
    country: str
    latitude: float
    longitude: float
    genres: list[str]
    looking_for: list[str]
    creator: int                     # index into users
    members: list[int] = field(default_factory=list)


@dataclass
class SeedPlan:
    users: list[SeedUser]
    bands: list[SeedBand]
    user_follows: list[tuple[int, int]]     # (follower, followee) user indexes
    band_follows: list[tuple[int, int]]     # (follower user, band) indexes
    user_posts: list[tuple[int, str]]
    band_posts: list[tuple[int, int, str]]  # (band, posting member, content)
    like_ratio: float = 0.3
    repost_ratio: float = 0.1


def build_dataset(seed: int) -> SeedPlan:
    """Deterministic dataset for `seed`; uses its own Random, never the global one."""
    rng = Random(seed)
    city_names = list(CITIES)

    users = []
    for username, display_name, skills in BASE_USERS:
        city = rng.choice(city_names)
        country, lat, lng = CITIES[city]
        users.append(
            SeedUser(
                username=username,
                display_name=display_name,
                skills=skills,
                city=city,
                country=country,
                latitude=round(lat + rng.uniform(-JITTER_DEGREES, JITTER_DEGREES), 6),
                longitude=round(lng + rng.uniform(-JITTER_DEGREES, JITTER_DEGREES), 6),
                genres=rng.sample(GENRES, k=2),
            )
        )

    indexes = list(range(len(users)))
    bands = []
    for name, city, genres, looking_for in BASE_BANDS:
        country, lat, lng = CITIES[city]
        creator = rng.choice(indexes)
        others = [i for i in indexes if i != creator]
        bands.append(
            SeedBand(
                name=name,
                city=city,
                country=country,
                latitude=lat,
                longitude=lng,
                genres=genres,
                looking_for=looking_for,
                creator=creator,
                members=rng.sample(others, k=rng.randint(1, 3)),
            )
        )

    user_follows = []
    band_follows = []
    for follower in indexes:
        # 3-5 other users, never themselves
        others = [i for i in indexes if i != follower]
        for followee in rng.sample(others, k=rng.randint(3, 5)):
            user_follows.append((follower, followee))
        for band in rng.sample(range(len(bands)), k=rng.randint(1, 2)):
            band_follows.append((follower, band))

    posts = SAMPLE_POSTS[:]
    rng.shuffle(posts)
    user_posts = [
        (i, posts[(i * 3 + n) % len(posts)]) for i in indexes for n in range(3)
    ]
    band_posts = []
    for b, band in enumerate(bands):
        for n in range(2):
            band_posts.append((b, band.creator, posts[(b * 2 + n + 5) % len(posts)]))

    return SeedPlan(users, bands, user_follows, band_follows, user_posts, band_posts)


@dataclass
class ApiClient:
    base_url: str

    def request(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
        user_id: Optional[str] = None,
    ) -> dict:
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json"}
        if user_id:
            headers["X-User-Id"] = user_id
        body = json.dumps(data).encode() if data is not None else None
        req = urllib.request.Request(url, data=body, headers=headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=10) as resp:
                raw = resp.read()
                return json.loads(raw) if raw else {}
        except urllib.error.HTTPError as e:
            print(f"  HTTP {e.code} on {method} {path}: {e.read().decode()}")
            return {}

    def post(self, path: str, data: Optional[dict] = None, user_id: Optional[str] = None) -> dict:
        return self.request("POST", path, data, user_id)

    def get(self, path: str) -> dict:
        return self.request("GET", path)


def wait_for_api(client: ApiClient, retries: int = 15) -> None:
    print(f"Waiting for API at {client.base_url} ...")
    for i in range(retries):
        try:
            result = client.get("/health")
            if result.get("status") == "ok":
                print("  API is ready!\n")
                return
        except (urllib.error.URLError, OSError):
            pass
        time.sleep(3)
    raise RuntimeError(f"API not reachable at {client.base_url} after {retries} retries")


def main(api_url: str, seed: int) -> None:
    client = ApiClient(api_url)
    wait_for_api(client)
    plan = build_dataset(seed)
    rng = Random(seed + 1)

    # ── Create users ─────────────────────────────────────────────────────
    print("Creating users...")
    user_ids: list[str] = []
    for u in plan.users:
        result = client.post("/users/", {
            "username": u.username,
            "email": f"{u.username}@example.com",
            "display_name": u.display_name,
            "skills": u.skills,
            "genres": u.genres,
            "city": u.city,
            "country": u.country,
            "location": {"latitude": u.latitude, "longitude": u.longitude},
        })
        uid = result.get("id", "")
        if not uid:
            print(f"  ✗ Failed to create {u.username} — aborting")
            return
        user_ids.append(uid)
        print(f"  ✓ {u.username} ({uid}) in {u.city}")

    # ── Create bands ─────────────────────────────────────────────────────
    print("\nCreating bands...")
    band_ids: list[str] = []
    for b in plan.bands:
        result = client.post("/bands/", {
            "name": b.name,
            "city": b.city,
            "country": b.country,
            "genres": b.genres,
            "looking_for": b.looking_for,
            "location": {"latitude": b.latitude, "longitude": b.longitude},
        }, user_id=user_ids[b.creator])
        bid = result.get("id", "")
        if not bid:
            print(f"  ✗ Failed to create {b.name} — aborting")
            return
        band_ids.append(bid)
        for member in b.members:
            client.post(f"/bands/{bid}/join", user_id=user_ids[member])
        print(f"  ✓ {b.name} ({bid}) with {len(b.members) + 1} members")

    # ── Create follow graph ───────────────────────────────────────────────
    print("\nCreating follow relationships...")
    for follower, followee in plan.user_follows:
        client.post("/follows/", {"kind": "user", "id": user_ids[followee]},
                    user_id=user_ids[follower])
    for follower, band in plan.band_follows:
        client.post("/follows/", {"kind": "band", "id": band_ids[band]},
                    user_id=user_ids[follower])
    print(f"  ✓ {len(plan.user_follows)} user follows, {len(plan.band_follows)} band follows")

    # ── Create posts ──────────────────────────────────────────────────────
    print("\nCreating posts...")
    post_ids: list[str] = []
    for author, content in plan.user_posts:
        result = client.post("/posts/", {"content": content}, user_id=user_ids[author])
        if result.get("id"):
            post_ids.append(result["id"])
    for band, member, content in plan.band_posts:
        result = client.post("/posts/", {"content": content, "band_id": band_ids[band]},
                             user_id=user_ids[member])
        if result.get("id"):
            post_ids.append(result["id"])
    print(f"  ✓ {len(post_ids)} posts created")

    # ── Likes and reposts ─────────────────────────────────────────────────
    print("\nAdding likes and reposts...")
    likes = reposts = 0
    for post_id in post_ids:
        for user_id in user_ids:
            if rng.random() < plan.like_ratio:
                client.post(f"/posts/{post_id}/like", user_id=user_id)
                likes += 1
            if rng.random() < plan.repost_ratio:
                client.post(f"/posts/{post_id}/repost", user_id=user_id)
                reposts += 1
    print(f"  ✓ {likes} likes, {reposts} reposts added")

    # ── Print summary ─────────────────────────────────────────────────────
    print("\n" + "=" * 60)
    print("Seed complete! Here are some commands to try:\n")
    u = user_ids[0]
    print(f"# Get the feed for user '{plan.users[0].username}':")
    print(f"  curl -s -H 'X-User-Id: {u}' '{api_url}/feed/' | python3 -m json.tool\n")
    print("# Musicians within 10 km of downtown San Francisco:")
    print(f"  curl -s '{api_url}/users/nearby?lat=37.7749&lng=-122.4194&radius_km=10' "
          "| python3 -m json.tool\n")
    print("# Bands within 50 km of Berlin:")
    print(f"  curl -s '{api_url}/bands/nearby?lat=52.52&lng=13.405&radius_km=50' "
          "| python3 -m json.tool\n")
    print("# Check Jaeger traces: http://localhost:16686")
    print("# Check Prometheus: http://localhost:9090")
    print("# Check MinIO: http://localhost:9001 (minioadmin/minioadmin)")
    print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the MusicNet API")
    parser.add_argument("--api-url", default="http://localhost:8000", help="API base URL")
    parser.add_argument("--seed", type=int, default=42, help="Dataset seed")
    args = parser.parse_args()
    main(args.api_url, args.seed)
