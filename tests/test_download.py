"""Tests for the download orchestrator."""

import threading

import pytest

from annopack.errors import ProviderError
from annopack.models.annotations import (
    AnnotationCategory,
    AnnotationCreate,
    AnnotationPackage,
    BoundingBox,
)
from annopack.models.events import PackageSelected
from annopack.services.download import DownloadOutcome
from annopack.services.selection import SelectionState
from annopack.services.session import AnnotationSession
from tests.conftest import FakeProvider, make_local_package


@pytest.fixture
def loaded(session: AnnotationSession, provider: FakeProvider) -> AnnotationSession:
    """Session with two remote packages and one local package."""
    provider.listings[AnnotationCategory.UNANNOTATED] = [
        AnnotationPackage(id="remote-a", user="alice"),
        AnnotationPackage(id="remote-b", user="bob"),
        make_local_package("local-c"),
    ]
    provider.assets["remote-a"] = ["z.png", "a.png", "m.png"]
    session.select_category(AnnotationCategory.UNANNOTATED)
    return session


class TestDownload:
    """Tests for downloading a selected package."""

    def test_download_shows_selected_package(self, loaded: AnnotationSession) -> None:
        """Test that a finished download renders the still selected package."""
        package = loaded.get_package("remote-a")
        loaded.select_package(package)
        assert loaded.download(package) is DownloadOutcome.DOWNLOADED

        workspace = loaded.workspace
        assert package.available_locally is True
        assert loaded.selection.state is SelectionState.SINGLE_LOCAL
        assert [image.filename for image in workspace.image_list.images] == [
            "a.png",
            "m.png",
            "z.png",
        ]
        assert workspace.image_list.visible is True
        assert workspace.download_visible is False
        assert workspace.downloading == set()

    def test_download_refreshes_only(self, loaded: AnnotationSession) -> None:
        """Test that the follow-up selection uses refresh-only behavior."""
        package = loaded.get_package("remote-a")
        loaded.select_package(package)
        events: list[PackageSelected] = []
        loaded.bus.subscribe(PackageSelected, events.append)

        loaded.download(package)
        assert len(events) == 1
        assert events[0].package is package

    def test_switched_away_during_download(
        self, loaded: AnnotationSession, provider: FakeProvider
    ) -> None:
        """Test that a download never steals the selection."""
        a = loaded.get_package("remote-a")
        b = loaded.get_package("local-c")
        loaded.select_package(a)
        provider.on_download = lambda package: loaded.select_package(b)

        assert loaded.download(a) is DownloadOutcome.DOWNLOADED
        assert a.available_locally is True
        assert loaded.selection.selected_package is b
        assert [image.package for image in loaded.workspace.image_list.images] == [
            b,
            b,
        ]

    def test_download_unselected_package(self, loaded: AnnotationSession) -> None:
        """Test downloading a package that was never selected."""
        a = loaded.get_package("remote-a")
        loaded.download(a)
        assert a.available_locally is True
        assert loaded.selection.selected_package is None

    def test_download_failure_keeps_package_remote(
        self, loaded: AnnotationSession, provider: FakeProvider
    ) -> None:
        """Test that a failed download leaves the package untouched."""
        package = loaded.get_package("remote-a")
        loaded.select_package(package)
        provider.fail_download.add("remote-a")

        with pytest.raises(ProviderError):
            loaded.download(package)
        assert package.available_locally is False
        assert package.images == []
        assert loaded.selection.state is SelectionState.SINGLE_REMOTE
        assert loaded.workspace.download_visible is True
        assert loaded.workspace.downloading == set()
        assert loaded.guard.is_idle()

    def test_already_local(self, loaded: AnnotationSession, provider: FakeProvider) -> None:
        """Test that a local package is not downloaded again."""
        package = loaded.get_package("local-c")
        assert loaded.download(package) is DownloadOutcome.ALREADY_LOCAL
        assert provider.calls_for("download_package") == []

    def test_download_in_progress(
        self, loaded: AnnotationSession, provider: FakeProvider
    ) -> None:
        """Test that a second download of the same package is refused."""
        package = loaded.get_package("remote-a")
        nested: list[DownloadOutcome] = []

        def download_again(target: AnnotationPackage) -> None:
            assert loaded.workspace.downloading == {"remote-a"}
            nested.append(loaded.download(target))

        provider.on_download = download_again
        assert loaded.download(package) is DownloadOutcome.DOWNLOADED
        assert nested == [DownloadOutcome.IN_PROGRESS]
        assert provider.calls_for("download_package") == ["remote-a"]

    def test_other_package_downloads_concurrently(
        self, loaded: AnnotationSession, provider: FakeProvider
    ) -> None:
        """Test that downloads of different packages do not block each other."""
        a = loaded.get_package("remote-a")
        b = loaded.get_package("remote-b")
        nested: list[DownloadOutcome] = []

        def download_other(target: AnnotationPackage) -> None:
            if target is a:
                nested.append(loaded.download(b))

        provider.on_download = download_other
        loaded.download(a)
        assert nested == [DownloadOutcome.DOWNLOADED]
        assert a.available_locally and b.available_locally

    def test_download_finished_before_claim(
        self,
        loaded: AnnotationSession,
        provider: FakeProvider,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test that a download queued behind another one keeps the edits made meanwhile."""
        package = loaded.get_package("remote-a")
        first_downloading = threading.Event()
        release_first = threading.Event()
        second_at_claim = threading.Event()
        release_second = threading.Event()
        outcomes: dict[str, DownloadOutcome] = {}

        def block_first(target: AnnotationPackage) -> None:
            first_downloading.set()
            assert release_first.wait(timeout=5)

        claim = loaded.guard.claim

        def claim_after_release(operation: str, *keys: str):
            if threading.current_thread().name == "second":
                second_at_claim.set()
                assert release_second.wait(timeout=5)
            return claim(operation, *keys)

        def run(name: str) -> None:
            outcomes[name] = loaded.download(package)

        provider.on_download = block_first
        monkeypatch.setattr(loaded.guard, "claim", claim_after_release)
        first = threading.Thread(target=run, args=("first",), name="first")
        second = threading.Thread(target=run, args=("second",), name="second")

        first.start()
        assert first_downloading.wait(timeout=5)
        second.start()
        assert second_at_claim.wait(timeout=5)
        release_first.set()
        first.join(timeout=5)

        image = package.images[0]
        created = loaded.edits.add_annotation(
            image,
            AnnotationCreate(
                label="car", class_id=0, bbox=BoundingBox(x=0.5, y=0.5, width=0.2, height=0.2)
            ),
        )
        release_second.set()
        second.join(timeout=5)

        assert outcomes == {
            "first": DownloadOutcome.DOWNLOADED,
            "second": DownloadOutcome.ALREADY_LOCAL,
        }
        assert provider.calls_for("download_package") == ["remote-a"]
        assert package.images[0] is image
        assert image.annotations == [created]
        assert package.is_dirty is True


class TestBackgroundDownload:
    """Tests for downloads scheduled on the session executor."""

    def test_request_download(self, loaded: AnnotationSession) -> None:
        """Test that a background download completes."""
        package = loaded.get_package("remote-a")
        loaded.select_package(package)
        future = loaded.request_download(package)
        assert future.result(timeout=5) is DownloadOutcome.DOWNLOADED
        assert loaded.selection.state is SelectionState.SINGLE_LOCAL

    def test_auto_download_on_selection(self, provider: FakeProvider) -> None:
        """Test that selecting a remote package starts its download."""
        provider.listings[AnnotationCategory.UNANNOTATED] = [
            AnnotationPackage(id="remote-a")
        ]
        session = AnnotationSession(provider, provider.config, auto_download=True)
        try:
            session.select_category(AnnotationCategory.UNANNOTATED)
            package = session.get_package("remote-a")
            session.select_package(package)
        finally:
            session.close()
        assert package.available_locally is True
        assert provider.calls_for("download_package") == ["remote-a"]
