import json

import manage_assets


def test_validate_creates_missing_sidecars(site_dir, capsys):
    assert manage_assets.main(["--site-dir", str(site_dir), "validate"]) == 0
    assert (site_dir / "assets/docs/brochure.json").exists()
    assert "Validated 4 assets; created 1" in capsys.readouterr().out


def test_validate_reports_missing_assets_dir(tmp_path, capsys):
    assert manage_assets.main(["--site-dir", str(tmp_path), "validate"]) == 1
    assert "[error]" in capsys.readouterr().out


def test_index_writes_catalog(site_dir):
    assert manage_assets.main(["--site-dir", str(site_dir), "index"]) == 0

    doc = json.loads((site_dir / "assets.json").read_text(encoding="utf-8"))
    assert "generated_at" in doc
    paths = [a["path"] for a in doc["assets"]]
    assert paths == [
        "assets/docs/brochure.pdf",
        "assets/docs/clip.mp4",
        "assets/photos/beach.jpg",
        "assets/photos/logo.png",
    ]
    beach = doc["assets"][2]
    assert beach["camera"] == {"make": "Canon", "model": "EOS R5"}


def test_index_custom_output(site_dir, tmp_path):
    out = tmp_path / "public" / "catalog.json"
    assert manage_assets.main(["--site-dir", str(site_dir), "index", "--output", str(out)]) == 0
    assert len(json.loads(out.read_text(encoding="utf-8"))["assets"]) == 4


def test_index_replaces_existing_catalog_without_leftovers(site_dir, tmp_path):
    out = tmp_path / "public" / "catalog.json"
    out.parent.mkdir()
    out.write_text("stale", encoding="utf-8")
    assert manage_assets.main(["--site-dir", str(site_dir), "index", "--output", str(out)]) == 0
    assert len(json.loads(out.read_text(encoding="utf-8"))["assets"]) == 4
    assert [p.name for p in out.parent.iterdir()] == ["catalog.json"]
