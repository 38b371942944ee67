import json
import os

from shop_archiver.crawler.manifest import (
    ManifestWriter,
    PageCaptureRecord,
    load_manifest,
    redirect_html,
    write_redirect_stub,
)


def test_record_round_trip_uses_camel_case_keys():
    record = PageCaptureRecord(
        url="https://shop.example.com/category/tea",
        local_path="category/tea",
        status="ok",
        assets_count=3,
        final_url="https://shop.example.com/category/tea/",
        http_status=200,
    )
    data = record.to_dict()
    assert data["localPath"] == "category/tea"
    assert data["assetsCount"] == 3
    assert data["finalURL"] == "https://shop.example.com/category/tea/"
    assert set(data["skippedCounts"]) == {"blocked", "size", "type", "cross_origin", "write"}
    assert PageCaptureRecord.from_dict(data) == record


def test_finalize_sorts_and_writes_root_redirect(tmp_path):
    writer = ManifestWriter(str(tmp_path))
    writer.append(PageCaptureRecord(url="https://shop.example.com/z", local_path="z", status="error:http 500"))
    writer.append(PageCaptureRecord(url="https://shop.example.com/b", local_path="b", status="ok"))
    writer.append(PageCaptureRecord(url="https://shop.example.com/a", local_path="a", status="ok"))
    path = writer.finalize()

    with open(path, encoding="utf-8") as f:
        urls = [entry["url"] for entry in json.load(f)]
    assert urls == ["https://shop.example.com/a", "https://shop.example.com/b", "https://shop.example.com/z"]
    assert writer.failed_count == 1

    with open(os.path.join(str(tmp_path), "index.html"), encoding="utf-8") as f:
        # first successful record in capture order
        assert 'url=/b/' in f.read()


def test_load_manifest_falls_back_to_partial(tmp_path):
    writer = ManifestWriter(str(tmp_path))
    writer.append(PageCaptureRecord(url="https://shop.example.com/a", local_path="a", status="ok"))
    # interrupted before finalize
    records = load_manifest(str(tmp_path))
    assert [r.url for r in records] == ["https://shop.example.com/a"]
    assert records[0].captured_at is not None
    assert load_manifest(str(tmp_path / "missing")) == []


def test_redirect_stub_respects_overwrite(tmp_path):
    path = str(tmp_path / "index.html")
    assert write_redirect_stub(path, "/a/desktop/")
    assert not write_redirect_stub(path, "/a/mobile/", overwrite=False)
    with open(path, encoding="utf-8") as f:
        assert "/a/desktop/" in f.read()
    assert 'location.replace("/a/\\"x/")' in redirect_html('/a/"x/')
