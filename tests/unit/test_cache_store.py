"""
Unit tests for the on-disk satellite cache
"""

import json
import os
import sys
import threading

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from cache.store import CacheStore
from common.errors import CacheIOError, NotFoundError
from common.types import Coordinate, LargeSatelliteImageMetadata, SatelliteImageMetadata


CENTER = Coordinate(40.0, -75.0)


def _img(course_id, n):
    return SatelliteImageMetadata(course_id=course_id, hole_number=n, center=CENTER)


class TestIndex:
    """Index read/modify/write"""

    def test_empty_store(self, store):
        assert store.all() == []
        assert store.get("nope") is None

    def test_upsert_creates_record_with_empty_name(self, store):
        rec = store.upsert("c1", large_image=LargeSatelliteImageMetadata(center=CENTER))
        assert rec.course_name == ""
        assert store.get("c1").large_image.center == CENTER

    def test_upsert_merges_images(self, store):
        store.upsert("c1", new_images=[_img("c1", 1), _img("c1", 2)])
        store.upsert("c1", new_images=[_img("c1", 2), _img("c1", 3)])
        assert [i.hole_number for i in store.get("c1").images] == [1, 2, 3]

    def test_upsert_keeps_large_image_when_not_given(self, store):
        store.upsert("c1", large_image=LargeSatelliteImageMetadata(center=CENTER))
        store.upsert("c1", new_images=[_img("c1", 1)])
        assert store.get("c1").large_image is not None

    def test_upsert_refreshes_last_updated(self, store):
        first = store.upsert("c1").last_updated
        second = store.upsert("c1", new_images=[_img("c1", 1)]).last_updated
        assert second >= first

    def test_set_course_name(self, store):
        store.upsert("c1")
        store.set_course_name("c1", "Pine Valley")
        assert store.get("c1").course_name == "Pine Valley"

    def test_index_is_camel_case_json(self, store):
        store.upsert("c1", new_images=[_img("c1", 1)])
        raw = json.loads(store.index_path.read_text())
        assert raw[0]["courseId"] == "c1"
        assert raw[0]["images"][0]["fileName"] == "c1_hole_1.jpg"

    def test_corrupt_index_reads_as_empty(self, store):
        store.root.mkdir(parents=True)
        store.index_path.write_text("{not json")
        assert store.all() == []

    def test_reopen_sees_same_records(self, store):
        store.upsert("c1", new_images=[_img("c1", 1)])
        again = CacheStore(str(store.root))
        assert again.get("c1").images[0].hole_number == 1

    def test_concurrent_upserts_do_not_lose_updates(self, store):
        def worker(n):
            store.upsert("c1", new_images=[_img("c1", n)])

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(1, 19)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sorted(i.hole_number for i in store.get("c1").images) == list(range(1, 19))

    def test_stats(self, store):
        store.upsert("c1", large_image=LargeSatelliteImageMetadata(center=CENTER), new_images=[_img("c1", 1)])
        store.upsert("c2")
        assert store.stats() == {"courses": 2, "large_images": 1, "hole_images": 1}


class TestFiles:
    """Image files under the course directory"""

    def test_large_image_round_trip(self, store):
        path = store.write_large_image("c1", b"\xff\xd8jpeg")
        assert path == store.root / "c1" / "large_satellite.jpg"
        assert store.read_large_image("c1") == b"\xff\xd8jpeg"

    def test_read_large_image_missing(self, store):
        assert store.read_large_image("c1") is None

    def test_save_image_writes_and_indexes(self, store):
        store.save_image(_img("c1", 4), b"hole4")
        assert (store.root / "c1" / "c1_hole_4.jpg").read_bytes() == b"hole4"
        assert store.get_image_data("c1", 4) == b"hole4"

    def test_get_image_data_missing_entry(self, store):
        store.upsert("c1")
        assert store.get_image_data("c1", 1) is None

    def test_get_image_data_missing_file(self, store):
        store.save_image(_img("c1", 1), b"x")
        (store.root / "c1" / "c1_hole_1.jpg").unlink()
        assert store.get_image_data("c1", 1) is None

    def test_no_temp_files_left_behind(self, store):
        store.save_image(_img("c1", 1), b"x")
        leftovers = [p.name for p in (store.root / "c1").iterdir() if p.name.startswith(".")]
        assert leftovers == []

    def test_write_failure_raises_cache_io_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = CacheStore(str(blocker / "cache"))
        with pytest.raises(CacheIOError):
            store.write_large_image("c1", b"x")


class TestDelete:
    def test_delete_removes_files_and_record(self, store):
        store.save_image(_img("c1", 1), b"x")
        store.save_image(_img("c2", 1), b"y")
        store.delete("c1")
        assert store.get("c1") is None
        assert not (store.root / "c1").exists()
        assert store.get("c2") is not None

    def test_delete_is_idempotent(self, store):
        store.delete("never-cached")
        store.delete("never-cached")
        assert store.all() == []

    @pytest.mark.parametrize("course_id", ["..", ".", "", "a/b", "..\\x"])
    def test_delete_rejects_ids_outside_root(self, tmp_path, course_id):
        store = CacheStore(str(tmp_path / "cache" / "satellite_cache"))
        sibling = tmp_path / "cache" / "other" / "keep.txt"
        sibling.parent.mkdir(parents=True)
        sibling.write_text("keep")
        with pytest.raises(NotFoundError):
            store.delete(course_id)
        assert sibling.read_text() == "keep"


class TestPathNames:
    @pytest.mark.parametrize("course_id", ["..", "../c1", "c1/../..", "/etc"])
    def test_course_dir_rejects_unsafe_ids(self, store, course_id):
        with pytest.raises(NotFoundError):
            store.course_dir(course_id)

    def test_write_image_rejects_nested_file_name(self, store, tmp_path):
        with pytest.raises(NotFoundError):
            store.write_image("c1", "../../escaped.jpg", b"x")
        assert not (tmp_path / "escaped.jpg").exists()

    def test_plain_names_are_accepted(self, store):
        assert store.image_path("c1", "c1_hole_1.jpg") == store.root / "c1" / "c1_hole_1.jpg"
