"""
Unit tests for large-image acquisition
"""

import os
import sys
import threading

import numpy as np
import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from cache.store import CacheStore
from common.errors import CacheIOError, EmptyResultError, EncodeError, ProviderError
from common.types import Coordinate
from imagery.acquisition import AcquisitionService, UiDispatcher
from imagery.codec import decode_image
from tests.fakes import FakeProvider, make_image


CENTER = Coordinate(40.0, -75.0)


class BlockingProvider(FakeProvider):
    """Holds the worker until released so in-flight state can be observed."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def snapshot(self, request):
        self.release.wait(timeout=5.0)
        return super().snapshot(request)


@pytest.fixture
def make_service(store):
    services = []

    def _make(provider, target_store=None):
        svc = AcquisitionService(provider, target_store or store, pixel_size=64)
        services.append(svc)
        return svc

    yield _make
    for svc in services:
        svc.shutdown()


class TestDownloadSuccess:
    def test_returns_metadata_and_persists(self, store, make_service):
        provider = FakeProvider()
        svc = make_service(provider)
        meta = svc.download_large_image(CENTER, "c1").result(timeout=10)

        assert meta.center == CENTER
        assert meta.radius_m == 1000.0
        assert meta.image_size == (64, 64)
        assert store.get("c1").large_image.center == CENTER
        assert decode_image(store.read_large_image("c1")).shape[:2] == (64, 64)

    def test_request_is_square_satellite_without_overlays(self, make_service):
        provider = FakeProvider()
        make_service(provider).download_large_image(CENTER, "c1").result(timeout=10)
        req = provider.requests[0]
        assert req.span_m == 2000.0
        assert (req.width, req.height) == (64, 64)
        assert req.map_type == "satellite"
        assert not req.show_buildings and not req.show_points_of_interest

    def test_provider_runs_off_the_calling_thread(self, make_service):
        provider = FakeProvider()
        make_service(provider).download_large_image(CENTER, "c1").result(timeout=10)
        assert provider.threads[0].startswith("satellite-acquire")

    def test_state_after_success(self, make_service):
        svc = make_service(FakeProvider())
        svc.download_large_image(CENTER, "c1").result(timeout=10)
        assert svc.progress("c1") == {"course_id": "c1", "is_downloading": False, "progress": 1.0}

    def test_state_while_in_flight(self, make_service):
        provider = BlockingProvider()
        svc = make_service(provider)
        fut = svc.download_large_image(CENTER, "c1")
        state = svc.progress("c1")
        assert state["is_downloading"] is True
        assert state["progress"] == 0.0
        provider.release.set()
        fut.result(timeout=10)
        assert svc.progress("c1")["is_downloading"] is False

    def test_unknown_course_progress(self, make_service):
        svc = make_service(FakeProvider())
        assert svc.progress("none") == {"course_id": "none", "is_downloading": False, "progress": None}

    def test_second_download_replaces_large_image(self, store, make_service):
        svc = make_service(FakeProvider())
        svc.download_large_image(CENTER, "c1").result(timeout=10)
        svc.download_large_image(Coordinate(40.01, -75.0), "c1").result(timeout=10)
        assert store.get("c1").large_image.center == Coordinate(40.01, -75.0)
        assert len(store.all()) == 1


class TestDownloadFailure:
    @pytest.mark.parametrize(
        "provider,expected",
        [
            (FakeProvider(error=RuntimeError("socket closed")), ProviderError),
            (FakeProvider(error=ProviderError("HTTP 503")), ProviderError),
            (FakeProvider(empty=True), EmptyResultError),
            (FakeProvider(image=np.zeros((0, 0, 3), dtype=np.uint8)), EncodeError),
            (FakeProvider(image=make_image(32, 32)), ProviderError),
            (FakeProvider(image=make_image(64, 48)), ProviderError),
            (FakeProvider(image="not an image"), EmptyResultError),
        ],
    )
    def test_typed_errors(self, store, make_service, provider, expected):
        svc = make_service(provider)
        with pytest.raises(expected):
            svc.download_large_image(CENTER, "c1").result(timeout=10)
        assert store.get("c1") is None
        state = svc.progress("c1")
        assert state["is_downloading"] is False
        assert state["progress"] != 1.0

    def test_write_failure(self, tmp_path, make_service):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        svc = make_service(FakeProvider(), CacheStore(str(blocker / "cache")))
        with pytest.raises(CacheIOError):
            svc.download_large_image(CENTER, "c1").result(timeout=10)
        assert svc.progress("c1")["is_downloading"] is False

    def test_unexpected_store_error_still_clears_flag(self, tmp_path, make_service):
        class BrokenStore(CacheStore):
            def write_large_image(self, course_id, data):
                raise RuntimeError("disk controller gone")

        svc = make_service(FakeProvider(), BrokenStore(str(tmp_path / "cache")))
        with pytest.raises(RuntimeError):
            svc.download_large_image(CENTER, "c1").result(timeout=10)
        state = svc.progress("c1")
        assert state["is_downloading"] is False
        assert state["progress"] == 0.0


class TestUiDispatcher:
    def test_runs_in_submission_order_on_one_thread(self):
        d = UiDispatcher()
        seen = []
        for i in range(20):
            d.submit(lambda i=i: seen.append((i, threading.current_thread().name)))
        d.flush(timeout=5)
        d.shutdown()
        assert [i for i, _ in seen] == list(range(20))
        assert len({name for _, name in seen}) == 1

    def test_explicit_dispatcher_is_used(self, store):
        d = UiDispatcher()
        svc = AcquisitionService(FakeProvider(), store, dispatcher=d, pixel_size=32)
        svc.download_large_image(CENTER, "c1").result(timeout=10)
        d.flush(timeout=5)
        assert svc.state.download_progress["c1"] == 1.0
        svc.shutdown()
