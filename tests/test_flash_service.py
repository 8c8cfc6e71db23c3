import os
from io import BytesIO

import pytest
from PIL import Image
from sqlalchemy.exc import SQLAlchemyError

from conftest import png_bytes
from formstage.db.models import FlashRecord
from formstage.db.session import SessionLocal
from formstage.services.flash_service import FormFlash
from formstage.services.form_errors import StorageWriteError


def _descriptor(destination: str, name: str = "photo.png") -> dict:
    return {"original_name": name, "path": os.path.join(destination, name), "type": "image/png"}


def test_open_does_not_persist_until_save(db):
    flash = FormFlash.open(db, "uid-1", form_name="contact")

    assert flash.exists() is False
    assert db.get(FlashRecord, "uid-1") is None

    flash.set_url("http://test/contact").set_user("alice").set_data({"step": 1})
    flash.save()

    reopened = FormFlash.open(db, "uid-1")
    assert reopened.exists() is True
    assert reopened.url == "http://test/contact"
    assert reopened.user == "alice"
    assert reopened.form_name == "contact"
    assert reopened.get_data() == {"step": 1}


def test_stage_upload_copies_bytes_and_registers_descriptor(db, tmp_path):
    flash = FormFlash.open(db, "uid-2")

    assert flash.stage_upload("avatar", "photo.png", _descriptor(str(tmp_path)), BytesIO(b"abc")) is True
    flash.save()

    files = FormFlash.open(db, "uid-2").get_files_by_field()
    [staged] = files["avatar"]
    assert staged.name == "photo.png"
    assert staged.size == 3
    assert staged.moved is False
    assert staged.tmp_name.startswith(flash.tmp_dir)
    with open(staged.tmp_name, "rb") as fh:
        assert fh.read() == b"abc"


def test_stage_upload_same_name_replaces_previous(db, tmp_path):
    flash = FormFlash.open(db, "uid-3")
    flash.stage_upload("avatar", "photo.png", _descriptor(str(tmp_path)), BytesIO(b"one"))
    first_tmp = flash.get_files("avatar")[0].tmp_name

    flash.stage_upload("avatar", "photo.png", _descriptor(str(tmp_path)), BytesIO(b"two"))

    assert len(flash.get_files("avatar")) == 1
    assert not os.path.exists(first_tmp)


def test_stage_upload_returns_false_on_io_error(db, tmp_path, monkeypatch):
    blocker = tmp_path / "blocked"
    blocker.write_text("not a directory")
    monkeypatch.setattr(FormFlash, "tmp_dir", property(lambda self: str(blocker / "sub")))
    flash = FormFlash.open(db, "uid-4")

    assert flash.stage_upload("avatar", "photo.png", _descriptor(str(tmp_path)), BytesIO(b"abc")) is False
    assert flash.get_files_by_field() == {}


def test_stage_crop_crops_and_clamps_box(db, tmp_path):
    flash = FormFlash.open(db, "uid-5")
    source = BytesIO(png_bytes((20, 10)))

    ok = flash.stage_crop(
        "avatar",
        "photo.png",
        _descriptor(str(tmp_path)),
        source,
        {"x": 5, "y": 2, "width": 100, "height": 4},
    )

    assert ok is True
    staged = flash.get_files("avatar")[0]
    assert staged.crop == {"x": 5, "y": 2, "width": 100, "height": 4}
    with Image.open(staged.tmp_name) as cropped:
        assert cropped.size == (15, 4)


@pytest.mark.parametrize(
    "crop",
    [
        {"x": 0, "y": 0, "width": 0, "height": 4},
        {"x": 0, "y": 0, "width": 4, "height": -1},
        {"x": 30, "y": 0, "width": 4, "height": 4},
        {"x": 0, "y": -1, "width": 4, "height": 4},
    ],
)
def test_stage_crop_rejects_invalid_geometry(db, tmp_path, crop):
    flash = FormFlash.open(db, "uid-6")

    assert flash.stage_crop("avatar", "photo.png", _descriptor(str(tmp_path)), BytesIO(png_bytes((20, 10))), crop) is False
    assert flash.get_files_by_field() == {}


def test_stage_crop_rejects_unreadable_image(db, tmp_path):
    flash = FormFlash.open(db, "uid-7")

    ok = flash.stage_crop(
        "avatar",
        "photo.png",
        _descriptor(str(tmp_path)),
        BytesIO(b"definitely-not-an-image"),
        {"x": 0, "y": 0, "width": 4, "height": 4},
    )

    assert ok is False


def test_remove_file_is_idempotent(db, tmp_path):
    flash = FormFlash.open(db, "uid-8")
    flash.stage_upload("avatar", "photo.png", _descriptor(str(tmp_path)), BytesIO(b"abc"))
    tmp_name = flash.get_files("avatar")[0].tmp_name

    assert flash.remove_file("photo.png", "avatar") is True
    assert flash.remove_file("photo.png", "avatar") is False
    assert flash.remove_file("missing.png") is False
    assert not os.path.exists(tmp_name)
    assert flash.get_files_by_field() == {}


def test_remove_file_without_field_searches_all_fields(db, tmp_path):
    flash = FormFlash.open(db, "uid-9")
    flash.stage_upload("docs", "scan.png", _descriptor(str(tmp_path), "scan.png"), BytesIO(b"abc"))

    assert flash.remove_file("scan.png") is True
    assert flash.get_files_by_field() == {}


def test_move_file_marks_moved(db, tmp_path):
    flash = FormFlash.open(db, "uid-10")
    target_dir = tmp_path / "final"
    flash.stage_upload("avatar", "photo.png", _descriptor(str(target_dir)), BytesIO(b"abc"))
    staged = flash.get_files("avatar")[0]

    target = flash.move_file(staged)

    assert target == str(target_dir / "photo.png")
    assert staged.moved is True
    assert (target_dir / "photo.png").read_bytes() == b"abc"


def test_delete_removes_row_and_staging_dir(db, tmp_path):
    flash = FormFlash.open(db, "uid-11")
    flash.stage_upload("avatar", "photo.png", _descriptor(str(tmp_path)), BytesIO(b"abc"))
    flash.save()
    assert os.path.isdir(flash.tmp_dir)

    flash.delete()

    assert db.get(FlashRecord, "uid-11") is None
    assert not os.path.exists(flash.tmp_dir)
    assert flash.exists() is False


def test_legacy_queue_round_trip(db):
    flash = FormFlash.open(db, "uid-12")
    flash.add_legacy_file("docs", "/final/a.txt", {"name": "a.txt", "tmp_name": "/tmp/a"})
    flash.save()

    assert FormFlash.open(db, "uid-12").get_legacy_files() == {
        "docs": {"/final/a.txt": {"name": "a.txt", "tmp_name": "/tmp/a"}}
    }


def test_save_failure_raises_storage_write_error(db, monkeypatch):
    flash = FormFlash.open(db, "uid-13")

    def broken_commit():
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(db, "commit", broken_commit)

    with pytest.raises(StorageWriteError) as exc_info:
        flash.save()

    assert exc_info.value.uniqueid == "uid-13"


@pytest.mark.parametrize("uniqueid", ["../../victim", "a/b", "..", "", "x" * 65])
def test_open_rejects_path_like_uniqueid(db, uniqueid):
    with pytest.raises(ValueError):
        FormFlash.open(db, uniqueid)


def test_tmp_dir_stays_under_staging_root(db, tmp_path):
    flash = FormFlash.open(db, "uid-14")

    assert os.path.dirname(flash.tmp_dir) == os.path.realpath(tmp_path / "tmp" / "forms")


def test_concurrent_saves_to_distinct_fields_keep_both(db, tmp_path):
    other_db = SessionLocal()
    try:
        first = FormFlash.open(db, "uid-15")
        second = FormFlash.open(other_db, "uid-15")

        first.stage_upload("avatar", "photo.png", _descriptor(str(tmp_path)), BytesIO(b"one"))
        second.stage_upload("docs", "scan.png", _descriptor(str(tmp_path), "scan.png"), BytesIO(b"two"))
        first.save()
        second.save()
    finally:
        other_db.close()

    stored = FormFlash.open(db, "uid-15").get_files_by_field()
    assert sorted(stored) == ["avatar", "docs"]
    assert [f.name for f in stored["avatar"]] == ["photo.png"]


def test_save_keeps_removal_of_touched_field_only(db, tmp_path):
    flash = FormFlash.open(db, "uid-16")
    flash.stage_upload("avatar", "photo.png", _descriptor(str(tmp_path)), BytesIO(b"one"))
    flash.stage_upload("docs", "scan.png", _descriptor(str(tmp_path), "scan.png"), BytesIO(b"two"))
    flash.save()

    stale = FormFlash.open(db, "uid-16")
    flash.remove_file("photo.png", "avatar")
    flash.save()
    stale.set_data({"step": 2})
    stale.save()

    stored = FormFlash.open(db, "uid-16").get_files_by_field()
    assert sorted(stored) == ["docs"]
