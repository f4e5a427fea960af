import asyncio

import pytest
import yaml

from config_loader import ConfigLoader
from dedup_manager import WallpaperDatabase, content_hash, load_database
from downloader import UrlOutcome, UrlState, WallpaperDownloader, parse_urls
from errors import ConnectionFailed
from fakes import FakeClient, image_response, json_response

POST = "https://wallhaven.cc/w/abc123"
API = "https://wallhaven.cc/api/v1/w/abc123"
IMAGE = "https://w.wallhaven.cc/full/ab/wallhaven-abc123.jpg"
IMAGE_BYTES = b"\xff\xd8\xff wallpaper bytes"


def wallhaven(post_id="abc123", image=IMAGE, tags=("forest", "4k")):
    api = f"https://wallhaven.cc/api/v1/w/{post_id}"
    return api, json_response(api, {
        "data": {
            "id": post_id,
            "path": image,
            "tags": [{"name": tag} for tag in tags],
        }
    })


def make_downloader(tmp_path, root, client, sort="hostname", genres=None, database=None):
    data = {"download": {"path": str(root), "sort": sort, "delay": 0}}
    if genres is not None:
        data["genres"] = genres
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump(data))
    return WallpaperDownloader(
        ConfigLoader(config_path),
        database if database is not None else WallpaperDatabase(),
        tmp_path / "wallpapers.json",
        client,
    )


def run(downloader, urls):
    return asyncio.run(downloader.download(urls))


def test_parse_urls_validates_and_deduplicates():
    valid, invalid = parse_urls([POST, "not a url", POST, "ftp://host/x", " https://example.com/a "])
    assert valid == [POST, "https://example.com/a"]
    assert invalid == ["not a url", "ftp://host/x"]


def test_parse_urls_rejects_unparsable_input():
    valid, invalid = parse_urls(["https://[::1/x", POST])
    assert valid == [POST]
    assert invalid == ["https://[::1/x"]


def test_single_wallhaven_post_sorted_by_hostname(tmp_path, root):
    api, payload = wallhaven()
    client = FakeClient({api: payload, IMAGE: image_response(IMAGE, IMAGE_BYTES)})
    downloader = make_downloader(tmp_path, root, client)

    stats = run(downloader, [POST])

    digest = content_hash(IMAGE_BYTES)
    saved = root / "wallhaven.cc" / "abc123-wallhaven-abc123.jpg"
    assert client.calls == [API, IMAGE]
    assert saved.read_bytes() == IMAGE_BYTES
    assert downloader.database.to_dict() == {
        digest: {"source": POST, "file": "wallhaven.cc/abc123-wallhaven-abc123.jpg"}
    }
    assert [o.state for o in stats.outcomes] == [UrlState.SAVED]
    assert downloader.config.get_wallpaper_config().current == digest


def test_same_url_twice_is_fetched_once(tmp_path, root):
    api, payload = wallhaven()
    client = FakeClient({api: payload, IMAGE: image_response(IMAGE, IMAGE_BYTES)})

    stats = run(make_downloader(tmp_path, root, client), [POST, POST])

    assert client.calls == [API, IMAGE]
    assert len(stats.outcomes) == 1


def test_genre_sort_places_file_in_best_genre(tmp_path, root):
    api, payload = wallhaven(tags=("forest", "4k"))
    client = FakeClient({api: payload, IMAGE: image_response(IMAGE, IMAGE_BYTES)})
    downloader = make_downloader(
        tmp_path, root, client,
        sort="genres",
        genres={"city": ["street"], "nature": ["forest", "mountain"]},
    )

    run(downloader, [POST])

    assert (root / "nature" / "abc123-wallhaven-abc123.jpg").exists()


def test_genre_sort_without_match_uses_hostname(tmp_path, root):
    api, payload = wallhaven(tags=("4k",))
    client = FakeClient({api: payload, IMAGE: image_response(IMAGE, IMAGE_BYTES)})
    downloader = make_downloader(tmp_path, root, client, sort="genres", genres={"nature": ["forest"]})

    run(downloader, [POST])

    assert (root / "wallhaven.cc" / "abc123-wallhaven-abc123.jpg").exists()


def test_sort_none_places_file_in_root(tmp_path, root):
    api, payload = wallhaven()
    client = FakeClient({api: payload, IMAGE: image_response(IMAGE, IMAGE_BYTES)})

    run(make_downloader(tmp_path, root, client, sort="none"), [POST])

    assert (root / "abc123-wallhaven-abc123.jpg").exists()


ARTSTATION_POST = "https://www.artstation.com/artwork/xY12z"
ARTSTATION_API = "https://www.artstation.com/projects/xY12z.json"
ASSETS = [
    ("image", "https://cdn.artstation.com/images/1/large/a.jpg", "image/jpeg"),
    ("video_clip", "https://cdn.artstation.com/covers/2/large/v.jpg", None),
    ("image", "https://cdn.artstation.com/images/3/large/b.png", "image/png"),
    ("image", "https://cdn.artstation.com/images/4/large/c.webp", "image/webp"),
]


def artstation_client(skip=()):
    responses = {
        ARTSTATION_API: json_response(ARTSTATION_API, {
            "hash_id": "xY12z",
            "title": "Sky Temple",
            "assets": [{"asset_type": kind, "image_url": url} for kind, url, _ in ASSETS],
        }),
    }
    for i, (kind, url, content_type) in enumerate(ASSETS):
        full = url.replace("/large/", "/4k/")
        if kind == "image" and full not in skip:
            responses[full] = image_response(full, f"asset {i}".encode(), content_type)
    return FakeClient(responses)


def test_multi_asset_post_gets_indexed_files(tmp_path, root):
    client = artstation_client()
    downloader = make_downloader(tmp_path, root, client)

    stats = run(downloader, [ARTSTATION_POST])

    folder = root / "www.artstation.com"
    assert sorted(p.name for p in folder.iterdir()) == [
        "xY12z-Sky Temple-1.jpg",
        "xY12z-Sky Temple-2.png",
        "xY12z-Sky Temple-3.webp",
    ]
    assert (folder / "xY12z-Sky Temple-2.png").read_bytes() == b"asset 2"
    assert len(downloader.database) == 3
    assert stats.outcomes[0].state == UrlState.SAVED
    assert all("/covers/" not in url for url in client.calls)


def test_failed_file_only_skips_that_file(tmp_path, root):
    client = artstation_client(skip={"https://cdn.artstation.com/images/3/4k/b.png"})
    downloader = make_downloader(tmp_path, root, client)

    stats = run(downloader, [ARTSTATION_POST])

    outcome = stats.outcomes[0]
    assert outcome.state == UrlState.PARTIALLY_SAVED
    assert [f.relative.rsplit("/", 1)[-1] for f in outcome.files] == [
        "xY12z-Sky Temple-1.jpg",
        "xY12z-Sky Temple-3.webp",
    ]
    assert len(outcome.file_errors) == 1
    assert stats.files_failed == 1


def test_all_files_failing(tmp_path, root):
    api, payload = wallhaven()
    client = FakeClient({api: payload, IMAGE: ConnectionFailed("Connection failed", IMAGE)})
    downloader = make_downloader(tmp_path, root, client)

    stats = run(downloader, [POST])

    assert stats.outcomes[0].state == UrlState.ALL_FILES_FAILED
    assert len(downloader.database) == 0
    assert downloader.config.get_wallpaper_config().current is None


def test_unsupported_and_failed_urls_do_not_stop_the_batch(tmp_path, root):
    api, payload = wallhaven()
    client = FakeClient({api: payload, IMAGE: image_response(IMAGE, IMAGE_BYTES)})
    downloader = make_downloader(tmp_path, root, client)

    stats = run(downloader, [
        "https://example.com/post/1",
        "https://wallhaven.cc/w/missing",
        POST,
    ])

    states = {o.url: o.state for o in stats.outcomes}
    assert states == {
        "https://example.com/post/1": UrlState.UNSUPPORTED,
        "https://wallhaven.cc/w/missing": UrlState.FAILED,
        POST: UrlState.SAVED,
    }
    assert not any("example.com" in call for call in client.calls)
    # Several inputs: the current wallpaper stays untouched
    assert downloader.config.get_wallpaper_config().current is None
    assert downloader.persist() is True


def test_identical_bytes_from_two_posts_are_stored_once(tmp_path, root):
    other_image = "https://w.wallhaven.cc/full/zz/wallhaven-zzz999.png"
    api1, payload1 = wallhaven("abc123", IMAGE)
    api2, payload2 = wallhaven("zzz999", other_image)
    client = FakeClient({
        api1: payload1,
        api2: payload2,
        IMAGE: image_response(IMAGE, IMAGE_BYTES),
        other_image: image_response(other_image, IMAGE_BYTES, "image/png"),
    })
    downloader = make_downloader(tmp_path, root, client)

    stats = run(downloader, [POST, "https://wallhaven.cc/w/zzz999"])

    assert len(downloader.database) == 1
    assert [p.name for p in (root / "wallhaven.cc").iterdir()] == ["abc123-wallhaven-abc123.jpg"]
    assert stats.files_saved == 1
    assert stats.files_duplicate == 1
    entry = downloader.database.get(content_hash(IMAGE_BYTES))
    assert entry.file == "wallhaven.cc/abc123-wallhaven-abc123.jpg"
    assert entry.source in {POST, "https://wallhaven.cc/w/zzz999"}


def test_known_source_makes_zero_requests(tmp_path, root):
    database = WallpaperDatabase()
    database.upsert("h1", POST, "wallhaven.cc/abc123-wallhaven-abc123.jpg")
    database.dirty = False
    client = FakeClient()
    downloader = make_downloader(tmp_path, root, client, database=database)

    stats = run(downloader, [POST])

    assert client.calls == []
    assert stats.known_urls == [POST]
    assert stats.outcomes == []


def test_workers_process_every_url(tmp_path, root):
    responses = {}
    urls = []
    for i in range(5):
        image = f"https://w.wallhaven.cc/full/aa/wallhaven-p{i}.jpg"
        api, payload = wallhaven(f"p{i}", image)
        responses[api] = payload
        responses[image] = image_response(image, f"bytes {i}".encode())
        urls.append(f"https://wallhaven.cc/w/p{i}")
    client = FakeClient(responses)
    downloader = make_downloader(tmp_path, root, client)
    downloader.settings.workers = 3

    stats = run(downloader, urls)

    assert len(downloader.database) == 5
    assert all(o.state == UrlState.SAVED for o in stats.outcomes)


def test_persist_writes_database(tmp_path, root):
    api, payload = wallhaven()
    client = FakeClient({api: payload, IMAGE: image_response(IMAGE, IMAGE_BYTES)})
    downloader = make_downloader(tmp_path, root, client)
    run(downloader, [POST])

    assert downloader.persist() is True

    assert load_database(tmp_path / "wallpapers.json").has_source(POST)
    saved_config = yaml.safe_load((tmp_path / "config.yaml").read_text())
    assert saved_config["wallpaper"]["current"] == content_hash(IMAGE_BYTES)


def test_persist_failure_is_critical(tmp_path, root, caplog):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    api, payload = wallhaven()
    client = FakeClient({api: payload, IMAGE: image_response(IMAGE, IMAGE_BYTES)})
    downloader = make_downloader(tmp_path, root, client)
    downloader.database_path = blocker / "wallpapers.json"
    run(downloader, [POST])

    assert downloader.persist() is False
    assert downloader.stats.database_saved is False
    assert "CRITICAL! Failed to save database" in caplog.text


def test_invalid_state_transition_is_rejected():
    outcome = UrlOutcome("https://wallhaven.cc/w/a")
    with pytest.raises(RuntimeError):
        outcome.advance(UrlState.SAVED)
    outcome.advance(UrlState.DISPATCHED)
    outcome.advance(UrlState.FAILED)
    assert outcome.state.is_terminal


def test_malformed_post_does_not_stop_the_batch(tmp_path, root):
    good_api, good_payload = wallhaven("good1", "https://w.wallhaven.cc/full/go/wallhaven-good1.jpg")
    odd_tags_api = "https://wallhaven.cc/api/v1/w/tags1"
    bad_path_api = "https://wallhaven.cc/api/v1/w/path1"
    odd_image = "https://w.wallhaven.cc/full/ta/wallhaven-tags1.jpg"
    client = FakeClient({
        good_api: good_payload,
        "https://w.wallhaven.cc/full/go/wallhaven-good1.jpg": image_response(
            "https://w.wallhaven.cc/full/go/wallhaven-good1.jpg", b"good"
        ),
        odd_tags_api: json_response(odd_tags_api, {
            "data": {"id": "tags1", "path": odd_image, "tags": [{"name": 7}, {"name": "forest"}, "x"]},
        }),
        odd_image: image_response(odd_image, b"odd tags"),
        bad_path_api: json_response(bad_path_api, {
            "data": {"id": "path1", "path": "http://[broken/x.jpg", "tags": []},
        }),
    })
    downloader = make_downloader(tmp_path, root, client)

    stats = run(downloader, [
        "https://wallhaven.cc/w/good1",
        "https://wallhaven.cc/w/tags1",
        "https://wallhaven.cc/w/path1",
    ])

    states = {o.url.rsplit("/", 1)[-1]: o.state for o in stats.outcomes}
    assert states == {"good1": UrlState.SAVED, "tags1": UrlState.SAVED, "path1": UrlState.FAILED}
    assert stats.outcomes[1].metadata.tags == ["forest"]
    assert downloader.persist() is True
    stored = load_database(tmp_path / "wallpapers.json")
    assert stored.has_source("https://wallhaven.cc/w/good1")
    assert stored.has_source("https://wallhaven.cc/w/tags1")


def test_unexpected_error_fails_only_that_url(tmp_path, root, monkeypatch, caplog):
    import downloader as downloader_module

    real_normalize = downloader_module.normalize

    def flaky_normalize(backend):
        if backend.url.endswith("/crash"):
            raise TypeError("unexpected payload shape")
        return real_normalize(backend)

    monkeypatch.setattr(downloader_module, "normalize", flaky_normalize)
    api, payload = wallhaven()
    crash_api, crash_payload = wallhaven("crash")
    client = FakeClient({api: payload, crash_api: crash_payload, IMAGE: image_response(IMAGE, IMAGE_BYTES)})
    downloader = make_downloader(tmp_path, root, client)

    stats = run(downloader, ["https://wallhaven.cc/w/crash", POST])

    states = {o.url: o.state for o in stats.outcomes}
    assert states == {"https://wallhaven.cc/w/crash": UrlState.FAILED, POST: UrlState.SAVED}
    assert "TypeError" in stats.outcomes[0].error
    assert "https://wallhaven.cc/w/crash" in caplog.text
    assert downloader.persist() is True
    assert load_database(tmp_path / "wallpapers.json").has_source(POST)


def test_unexpected_error_while_saving_is_a_file_error(tmp_path, root, monkeypatch):
    import downloader as downloader_module

    def broken_name(*args):
        raise LookupError("no name")

    monkeypatch.setattr(downloader_module, "resolve_name", broken_name)
    api, payload = wallhaven()
    client = FakeClient({api: payload, IMAGE: image_response(IMAGE, IMAGE_BYTES)})

    stats = run(make_downloader(tmp_path, root, client), [POST])

    assert stats.outcomes[0].state == UrlState.ALL_FILES_FAILED
    assert "LookupError" in stats.outcomes[0].file_errors[0]
