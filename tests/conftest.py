import pytest

import entry_installer
from entry_installer import InstallPaths


@pytest.fixture(autouse=True)
def no_refresh_tools(monkeypatch):
    """Keep update-desktop-database and friends off the test machine."""
    monkeypatch.setattr(entry_installer.shutil, "which", lambda name: None)


@pytest.fixture
def home(tmp_path):
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def install_paths(home, tmp_path):
    return InstallPaths.for_home(home, global_bin_dir=tmp_path / "usr-local-bin")


@pytest.fixture
def make_appimage(tmp_path):
    downloads = tmp_path / "Downloads"
    downloads.mkdir()

    def _make(name="My-Cool-App.AppImage", content=b"\x7fELF fake appimage"):
        path = downloads / name
        path.write_bytes(content)
        path.chmod(0o644)
        return path

    return _make
