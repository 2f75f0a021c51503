import pytest

from app.core.storage import DOWNLOAD_TOKENS_KEY
from app.services.user_data import ObjectMirror


@pytest.mark.asyncio
async def test_mirror_copies_and_maps_references(blob_store):
    blob_store.put("meals/guest123/a.jpg", {DOWNLOAD_TOKENS_KEY: "tok-a"})
    blob_store.put("selfies/guest123/me.jpg")
    blob_store.put("meals/someone-else/x.jpg")
    mirror = ObjectMirror(blob_store, folders=["meals", "selfies"])

    result = await mirror.mirror("guest123", "auth456")

    assert result.mirrored == 2
    assert result.errors == []
    assert "meals/auth456/a.jpg" in blob_store.objects
    assert "selfies/auth456/me.jpg" in blob_store.objects
    # sources stay in place
    assert "meals/guest123/a.jpg" in blob_store.objects

    old_url = blob_store.download_url("meals/guest123/a.jpg", "tok-a")
    assert result.references[old_url] == blob_store.download_url("meals/auth456/a.jpg", "tok-a")
    assert result.references["meals/guest123/a.jpg"] == blob_store.download_url("meals/auth456/a.jpg", "tok-a")
    assert result.references[blob_store.gs_uri("meals/guest123/a.jpg")] == blob_store.gs_uri("meals/auth456/a.jpg")


@pytest.mark.asyncio
async def test_mirror_generates_token_when_missing(blob_store):
    blob_store.put("selfies/guest123/me.jpg")
    mirror = ObjectMirror(blob_store, folders=["selfies"])

    result = await mirror.mirror("guest123", "auth456")

    token = blob_store.objects["selfies/auth456/me.jpg"][DOWNLOAD_TOKENS_KEY]
    assert token
    assert result.references["selfies/guest123/me.jpg"] == blob_store.download_url("selfies/auth456/me.jpg", token)
    # tokenless old URL is mapped too
    assert blob_store.download_url("selfies/guest123/me.jpg") in result.references


@pytest.mark.asyncio
async def test_failing_folder_yields_partial_map(blob_store):
    blob_store.put("meals/guest123/a.jpg")
    blob_store.put("selfies/guest123/me.jpg")
    blob_store.failing_prefixes.add("meals/guest123/")
    mirror = ObjectMirror(blob_store, folders=["meals", "selfies"])

    result = await mirror.mirror("guest123", "auth456")

    assert result.mirrored == 1
    assert len(result.errors) == 1
    assert "selfies/guest123/me.jpg" in result.references
    assert "meals/guest123/a.jpg" not in result.references


@pytest.mark.asyncio
async def test_failing_object_does_not_stop_folder(blob_store):
    blob_store.put("meals/guest123/a.jpg")
    blob_store.put("meals/guest123/b.jpg")
    blob_store.failing_copies.add("meals/guest123/a.jpg")
    mirror = ObjectMirror(blob_store, folders=["meals"])

    result = await mirror.mirror("guest123", "auth456")

    assert result.mirrored == 1
    assert "meals/auth456/b.jpg" in blob_store.objects
    assert result.errors and "meals/guest123/a.jpg" in result.errors[0]
