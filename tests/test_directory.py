"""Users and posts as records: creation, edits, permissions, profile pictures."""
import asyncio
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from musicnet.config import settings
from musicnet.errors import (
    ConflictError,
    ForbiddenError,
    InfrastructureError,
    NotFoundError,
    ValidationFailedError,
)
from musicnet.models import EntityRef, Post
from musicnet.operations import SocialService


def _attrs(username, **extra):
    return {"username": username, "email": f"{username}@example.com", **extra}


async def test_create_and_get_user(service):
    user = await service.create_user(
        _attrs("ava_drums", display_name="Ava", latitude=37.77, longitude=-122.42)
    )

    profile = await service.get_user(user.id)

    assert profile.user.username == "ava_drums"
    assert (profile.user.latitude, profile.user.longitude) == (37.77, -122.42)
    assert profile.followers_count == profile.following_count == 0


async def test_duplicate_username_conflicts(service):
    await service.create_user(_attrs("ben_bass"))

    with pytest.raises(ConflictError):
        await service.create_user({"username": "ben_bass", "email": "other@example.com"})


async def test_half_a_location_is_rejected(service):
    with pytest.raises(ValidationFailedError):
        await service.create_user(_attrs("cora_keys", latitude=10.0))


async def test_get_missing_user(service):
    with pytest.raises(NotFoundError):
        await service.get_user("nobody")


async def test_users_edit_only_themselves(service, make_user):
    alice, mallory = await make_user(), await make_user()

    with pytest.raises(ForbiddenError):
        await service.update_user(mallory.id, alice.id, {"bio": "pwned"})

    updated = await service.update_user(
        alice.id, alice.id, {"bio": "jazz cellist", "latitude": None, "longitude": None}
    )
    assert updated.bio == "jazz cellist"


async def test_create_post_validates_content(service, make_user):
    author = await make_user()

    with pytest.raises(ValidationFailedError):
        await service.create_post(author.id, "")
    with pytest.raises(ValidationFailedError):
        await service.create_post(author.id, "x" * 2001)
    with pytest.raises(ValidationFailedError):
        await service.create_post(author.id, "clip", media_urls=["a.mp3"], media_types=[])


async def test_create_and_fetch_post(service, make_user):
    author, reader = await make_user(), await make_user()

    created = await service.create_post(
        author.id, "new single", media_urls=["https://cdn/x.mp3"], media_types=["audio"]
    )
    fetched = await service.get_post(reader.id, created.post.id)

    assert fetched.post.content == "new single"
    assert fetched.post.media_types == ["audio"]
    assert fetched.author.id == author.id
    assert (fetched.likes_count, fetched.is_liked) == (0, False)


async def test_only_author_deletes_post(service, make_user, count_rows):
    author, other = await make_user(), await make_user()
    item = await service.create_post(author.id, "mine")

    with pytest.raises(ForbiddenError):
        await service.delete_post(other.id, item.post.id)

    await service.delete_post(author.id, item.post.id)
    assert await count_rows(Post) == 0
    with pytest.raises(NotFoundError):
        await service.get_post(None, item.post.id)


async def test_set_profile_picture(session_factory, make_user):
    user = await make_user()
    storage = MagicMock()
    storage.upload_image.return_value = "https://cdn.example.com/media/pic.png"
    service = SocialService(session_factory, settings, storage=storage)

    url = await service.set_profile_picture(
        user.id, EntityRef.user(user.id), "aGVsbG8=", "image/png"
    )

    assert url == "https://cdn.example.com/media/pic.png"
    storage.upload_image.assert_called_once_with(user.id, "aGVsbG8=", "image/png")
    profile = await service.get_user(user.id)
    assert profile.user.profile_picture_url == url


async def test_profile_picture_for_someone_else(session_factory, make_user):
    alice, mallory = await make_user(), await make_user()
    storage = MagicMock()
    service = SocialService(session_factory, settings, storage=storage)

    with pytest.raises(ForbiddenError):
        await service.set_profile_picture(
            mallory.id, EntityRef.user(alice.id), "aGVsbG8=", "image/png"
        )
    storage.upload_image.assert_not_called()


async def test_profile_picture_without_storage(service, make_user):
    user = await make_user()

    with pytest.raises(InfrastructureError):
        await service.set_profile_picture(
            user.id, EntityRef.user(user.id), "aGVsbG8=", "image/png"
        )


async def test_list_users_newest_first(service, make_user):
    oldest = await make_user(created_at=datetime(2024, 1, 1))
    newest = await make_user(created_at=datetime(2024, 3, 1))
    middle = await make_user(created_at=datetime(2024, 2, 1))

    first = await service.list_users(limit=2)
    rest = await service.list_users(limit=2, offset=2)

    assert [u.id for u in first] == [newest.id, middle.id]
    assert [u.id for u in rest] == [oldest.id]


async def test_list_users_page_bounds(service):
    with pytest.raises(ValidationFailedError):
        await service.list_users(limit=0)


async def test_profile_picture_target_deleted_during_upload(session_factory, make_user):
    admin = await make_user()
    storage = MagicMock()
    service = SocialService(session_factory, settings, storage=storage)
    band = await service.create_band(admin.id, {"name": "Short Lived"})
    loop = asyncio.get_running_loop()

    def upload_while_band_is_deleted(owner_id, media_base64, content_type):
        asyncio.run_coroutine_threadsafe(
            service.delete_band(admin.id, band.id), loop
        ).result()
        return "https://cdn.example.com/media/orphan.png"

    storage.upload_image.side_effect = upload_while_band_is_deleted

    with pytest.raises(NotFoundError):
        await service.set_profile_picture(
            admin.id, EntityRef.band(band.id), "aGVsbG8=", "image/png"
        )


async def test_add_post_media(session_factory, make_user):
    author = await make_user()
    storage = MagicMock()
    storage.upload_media.return_value = ("https://cdn.example.com/audio/a.mp3", "audio")
    service = SocialService(session_factory, settings, storage=storage)
    item = await service.create_post(author.id, "new demo")

    updated = await service.add_post_media(author.id, item.post.id, "aGVsbG8=", "audio/mpeg")

    assert updated.post.media_urls == ["https://cdn.example.com/audio/a.mp3"]
    assert updated.post.media_types == ["audio"]
    storage.upload_media.assert_called_once_with(author.id, "aGVsbG8=", "audio/mpeg")
    fetched = await service.get_post(None, item.post.id)
    assert fetched.post.media_types == ["audio"]


async def test_add_post_media_to_someone_elses_post(session_factory, make_user):
    author, other = await make_user(), await make_user()
    storage = MagicMock()
    service = SocialService(session_factory, settings, storage=storage)
    item = await service.create_post(author.id, "mine")

    with pytest.raises(ForbiddenError):
        await service.add_post_media(other.id, item.post.id, "aGVsbG8=", "image/png")
    storage.upload_media.assert_not_called()


async def test_add_post_media_rejects_unknown_type(session_factory, make_user):
    author = await make_user()
    service = SocialService(session_factory, settings, storage=MagicMock())
    item = await service.create_post(author.id, "mine")

    with pytest.raises(ValidationFailedError):
        await service.add_post_media(author.id, item.post.id, "aGVsbG8=", "video/mp4")
