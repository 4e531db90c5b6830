import json

import pytest

import assets
from conftest import make_jpeg, write_sidecar


def test_scan_assets_returns_sorted_records(site_dir):
    records = assets.scan_assets(site_dir)
    assert [r["path"] for r in records] == [
        "assets/docs/brochure.pdf",
        "assets/docs/clip.mp4",
        "assets/photos/beach.jpg",
        "assets/photos/logo.png",
    ]


def test_image_record_combines_sidecar_and_exif(site_dir):
    record = assets.load_asset(site_dir, "assets/photos/beach.jpg")

    assert record["w"] == 64 and record["h"] == 48
    assert record["camera"] == {"make": "Canon", "model": "EOS R5"}
    assert record["dateTaken"] == "2024-05-01T10:30:00"
    assert record["subject"] == "Beach at dawn"
    assert record["tags"] == ["beach", "Sunrise"]
    assert record["person"] == ["Ana"]
    assert record["hierarchical"] == ["Places|Coast"]
    assert record["isVideo"] is False and record["isPdf"] is False
    assert record["bytes"] == (site_dir / "assets/photos/beach.jpg").stat().st_size


def test_sidecar_camera_overrides_exif(tmp_path):
    site = tmp_path / "site"
    photo = make_jpeg(site / "assets" / "a.jpg")
    write_sidecar(photo, camera={"make": "Leica", "model": "Q3"}, dateTaken="2020-01-02T03:04:05")
    record = assets.load_asset(site, "assets/a.jpg")
    assert record["camera"] == {"make": "Leica", "model": "Q3"}
    assert record["dateTaken"] == "2020-01-02T03:04:05"


def test_comma_separated_sidecar_lists_are_split(site_dir):
    record = assets.load_asset(site_dir, "assets/photos/logo.png")
    assert record["tags"] == ["brand", "logo"]
    assert record["camera"] is None
    assert (record["w"], record["h"]) == (20, 10)


def test_pdf_and_video_records(site_dir):
    pdf = assets.load_asset(site_dir, "assets/docs/brochure.pdf")
    video = assets.load_asset(site_dir, "assets/docs/clip.mp4")
    assert pdf["isPdf"] is True and pdf["w"] == 0
    assert video["isVideo"] is True
    assert video["duration"] == 75.4
    assert video["subject"] == "Launch clip"


def test_load_asset_rejects_traversal_and_missing(site_dir):
    with pytest.raises(ValueError):
        assets.load_asset(site_dir, "assets/../../etc/passwd.jpg")
    with pytest.raises(ValueError):
        assets.load_asset(site_dir, "assets/photos/beach.json")
    with pytest.raises(FileNotFoundError):
        assets.load_asset(site_dir, "assets/photos/missing.jpg")


@pytest.mark.parametrize(
    "query, expected",
    [
        ("tag:sunrise", ["assets/photos/beach.jpg"]),
        ("person:ANA", ["assets/photos/beach.jpg"]),
        ("category:product", ["assets/photos/logo.png"]),
        ("product:widget", ["assets/photos/logo.png"]),
        ("folder:docs", ["assets/docs/brochure.pdf", "assets/docs/clip.mp4"]),
        ("brochure", ["assets/docs/brochure.pdf"]),
        ("launch", ["assets/docs/clip.mp4"]),
        ("", None),
    ],
)
def test_filter_assets(site_dir, query, expected):
    records = assets.scan_assets(site_dir)
    result = [r["path"] for r in assets.filter_assets(records, query)]
    assert result == (expected if expected is not None else [r["path"] for r in records])


def test_neighbors():
    items = [{"path": "a"}, {"path": "b"}, {"path": "c"}]
    assert assets.neighbors(items, "a") == (None, "b")
    assert assets.neighbors(items, "b") == ("a", "c")
    assert assets.neighbors(items, "c") == ("b", None)
    assert assets.neighbors(items, "zzz") == (None, None)


def test_share_links():
    links = assets.share_links("https://dam.example.com/", "assets/photos/beach day.jpg")
    assert links["dam_url"] == "https://dam.example.com/asset/assets%2Fphotos%2Fbeach%20day.jpg"
    assert links["asset_url"] == "https://dam.example.com/assets/photos/beach day.jpg"
    assert links["peel_url"] == (
        "https://banana.peel.diy/edit?img=https%3A%2F%2Fdam.example.com%2Fassets%2Fphotos%2Fbeach%20day.jpg"
    )


@pytest.mark.parametrize(
    "size, expected",
    [(0, "Unknown"), (512, "512 Bytes"), (1536, "1.5 KB"), (5 * 1024 * 1024, "5 MB"), (3 * 1024 ** 4, "3072 GB")],
)
def test_format_file_size(size, expected):
    assert assets.format_file_size(size) == expected


def test_format_duration_and_date():
    assert assets.format_duration(75.4) == "1:15"
    assert assets.format_duration(None) == ""
    assert assets.format_date("2024-05-01T10:30:00") == "May 1, 2024"
    assert assets.format_date(None) == "Unknown"
    assert assets.format_date("last summer") == "last summer"


def test_folder_for():
    assert assets.folder_for("assets/photos/beach.jpg") == "photos"
    assert assets.folder_for("assets/beach.jpg") == "Root"


def test_wants_progressive_load():
    assert assets.wants_progressive_load({"bytes": 600_000}) is True
    assert assets.wants_progressive_load({"bytes": 10_000}) is False
    assert assets.wants_progressive_load({"bytes": 9_000_000, "isPdf": True}) is False
    assert assets.wants_progressive_load({"bytes": 9_000_000, "isVideo": True}) is False


def test_validate_and_migrate_sidecars(site_dir):
    beach_json = site_dir / "assets/photos/beach.json"
    data = json.loads(beach_json.read_text())
    data["legacy_field"] = "x"
    data["duration"] = "oops"
    data["dateTaken"] = 12345
    beach_json.write_text(json.dumps(data))

    counts = assets.validate_and_migrate_sidecars(site_dir)

    # brochure.pdf had no sidecar
    assert counts == {"total": 4, "created": 1, "updated": 3}
    assert (site_dir / "assets/docs/brochure.json").exists()
    migrated = json.loads(beach_json.read_text())
    assert "legacy_field" not in migrated
    assert migrated["duration"] is None
    assert migrated["dateTaken"] is None
    assert migrated["tags"] == ["beach", "Sunrise"]

    logo = json.loads((site_dir / "assets/photos/logo.json").read_text())
    assert logo["tags"] == ["brand", "logo"]

    # A second pass has nothing left to fix
    assert assets.validate_and_migrate_sidecars(site_dir) == {"total": 4, "created": 0, "updated": 0}


@pytest.mark.parametrize(
    "extra",
    [
        {"dateTaken": 12345},
        {"dateTaken": ["2024-05-01"]},
        {"duration": "oops"},
        {"duration": True},
        {"duration": {"seconds": 3}},
    ],
)
def test_hand_edited_sidecar_values_do_not_break_display(tmp_path, extra):
    site = tmp_path / "site"
    photo = make_jpeg(site / "assets" / "a.jpg")
    write_sidecar(photo, subject="Edited", **extra)

    record = assets.load_asset(site, "assets/a.jpg")
    fields = assets.display_fields(record)

    # Bad sidecar dates fall back to EXIF
    assert record["dateTaken"] == "2024-05-01T10:30:00"
    assert record["duration"] is None
    assert fields["date_taken"] == "May 1, 2024"
    assert fields["duration"] == ""


def test_numeric_string_duration_is_read_as_seconds(tmp_path):
    site = tmp_path / "site"
    clip = site / "assets" / "clip.mp4"
    clip.parent.mkdir(parents=True)
    clip.write_bytes(b"\x00\x00\x00\x18ftypmp42")
    write_sidecar(clip, duration="61")
    record = assets.load_asset(site, "assets/clip.mp4")
    assert record["duration"] == 61.0
    assert assets.display_fields(record)["duration"] == "1:01"


def test_format_helpers_tolerate_wrong_types():
    assert assets.format_date(12345) == "Unknown"
    assert assets.format_duration("oops") == ""
    assert assets.format_duration(float("inf")) == ""
