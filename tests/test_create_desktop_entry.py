import os
import stat

import pytest

import entry_installer
from entry_installer import create_desktop_entry, parse_desktop_entry


def read_entry(path):
    return parse_desktop_entry(path.read_text(encoding="utf-8"))


def test_creates_executable_and_entry(install_paths, make_appimage):
    source = make_appimage()

    result = create_desktop_entry(source, install_paths)

    executable = install_paths.bin_dir / "my-cool-app"
    entry = install_paths.applications_dir / "my-cool-app.desktop"
    assert result.ok, result.message
    assert result.paths == (executable, entry)
    assert "created" in result.message
    assert str(executable) in result.message
    assert str(entry) in result.message

    assert executable.read_bytes() == source.read_bytes()
    mode = executable.stat().st_mode
    assert mode & stat.S_IXUSR and mode & stat.S_IXGRP and mode & stat.S_IXOTH

    values = read_entry(entry)
    assert values["Name"] == "My Cool App"
    assert values["Exec"] == str(executable)
    assert values["Type"] == "Application"
    assert values["Terminal"] == "false"
    assert values["Icon"] == entry_installer.DEFAULT_ICON
    assert values["Categories"] == "Utility;"

    assert os.listdir(install_paths.bin_dir) == ["my-cool-app"]
    assert os.listdir(install_paths.applications_dir) == ["my-cool-app.desktop"]


def test_source_is_not_modified(install_paths, make_appimage):
    source = make_appimage()
    create_desktop_entry(source, install_paths)
    assert stat.S_IMODE(source.stat().st_mode) == 0o644


def test_repeat_overwrites_without_duplicates(install_paths, make_appimage):
    source = make_appimage(content=b"v1")
    first = create_desktop_entry(source, install_paths)

    source.write_bytes(b"v2")
    second = create_desktop_entry(source, install_paths)

    assert first.ok and second.ok
    assert first.paths == second.paths
    assert "updated" in second.message
    assert (install_paths.bin_dir / "my-cool-app").read_bytes() == b"v2"
    assert sorted(os.listdir(install_paths.bin_dir)) == ["my-cool-app"]
    assert sorted(os.listdir(install_paths.applications_dir)) == ["my-cool-app.desktop"]


def test_creates_missing_directories(install_paths, make_appimage):
    assert not install_paths.bin_dir.exists()
    assert not install_paths.applications_dir.exists()

    assert create_desktop_entry(make_appimage(), install_paths).ok
    assert install_paths.bin_dir.is_dir()
    assert install_paths.applications_dir.is_dir()
    assert create_desktop_entry(make_appimage("Other.AppImage"), install_paths).ok


def test_no_selection(install_paths):
    result = create_desktop_entry(None, install_paths)
    assert not result.ok
    assert result.message == "no file selected"
    assert not install_paths.bin_dir.exists()


def test_deleted_source_leaves_no_entry(install_paths, make_appimage):
    source = make_appimage()
    source.unlink()

    result = create_desktop_entry(source, install_paths)

    assert not result.ok
    assert result.message.startswith("cannot read source")
    assert not (install_paths.applications_dir / "my-cool-app.desktop").exists()
    assert not (install_paths.bin_dir / "my-cool-app").exists()


def test_deleted_source_keeps_previous_entry(install_paths, make_appimage):
    source = make_appimage()
    assert create_desktop_entry(source, install_paths).ok
    entry = install_paths.applications_dir / "my-cool-app.desktop"
    before = entry.read_text(encoding="utf-8")

    source.unlink()
    result = create_desktop_entry(source, install_paths)

    assert not result.ok
    assert entry.read_text(encoding="utf-8") == before


def test_copy_failure_leaves_no_entry(install_paths, make_appimage, monkeypatch):
    def broken_copy(src, dst, **kwargs):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(entry_installer.shutil, "copy2", broken_copy)

    result = create_desktop_entry(make_appimage(), install_paths)

    assert not result.ok
    assert result.message.startswith("cannot copy")
    assert os.listdir(install_paths.bin_dir) == []
    assert os.listdir(install_paths.applications_dir) == []


def test_permission_error_during_copy(install_paths, make_appimage, monkeypatch):
    def denied(*args, **kwargs):
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr(entry_installer.tempfile, "mkstemp", denied)

    result = create_desktop_entry(make_appimage(), install_paths)

    assert not result.ok
    assert result.message.startswith("permission denied")
    assert os.listdir(install_paths.applications_dir) == []


def test_uncreatable_directory(tmp_path, make_appimage):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    paths = entry_installer.InstallPaths(
        bin_dir=blocker / "bin",
        applications_dir=tmp_path / "applications",
        icons_dir=tmp_path / "icons",
    )

    result = create_desktop_entry(make_appimage(), paths)

    assert not result.ok
    assert result.message.startswith("cannot create directory")
    assert not (tmp_path / "applications" / "my-cool-app.desktop").exists()


def test_entry_write_failure(install_paths, make_appimage):
    # a directory squatting on the entry path makes the final rename fail
    (install_paths.applications_dir / "my-cool-app.desktop").mkdir(parents=True)

    result = create_desktop_entry(make_appimage(), install_paths)

    assert not result.ok
    assert result.message.startswith("cannot write desktop entry")
    assert [p for p in os.listdir(install_paths.applications_dir) if p.endswith(".part")] == []


def test_preserves_fields_from_existing_entry(install_paths, make_appimage):
    entry = install_paths.applications_dir / "my-cool-app.desktop"
    entry.parent.mkdir(parents=True)
    entry.write_text(
        "[Desktop Entry]\n"
        "Name=Old Name\n"
        "Icon=my-custom-icon\n"
        "Categories=Graphics\n"
        "Keywords=paint;draw;\n"
        "Comment=Draw things\n",
        encoding="utf-8",
    )

    result = create_desktop_entry(make_appimage(), install_paths)

    values = read_entry(entry)
    assert result.ok
    assert values["Name"] == "My Cool App"
    assert values["Icon"] == "my-custom-icon"
    assert values["Categories"] == "Utility;Graphics;"
    assert values["Keywords"] == "paint;draw;"
    assert values["Comment"] == "Draw things"


def test_custom_icon_is_copied(install_paths, make_appimage, tmp_path):
    icon = tmp_path / "logo.PNG"
    icon.write_bytes(b"\x89PNG fake")

    result = create_desktop_entry(make_appimage(), install_paths, icon=icon)

    copied = install_paths.icons_dir / "my-cool-app.png"
    assert result.ok
    assert copied.read_bytes() == icon.read_bytes()
    assert read_entry(install_paths.applications_dir / "my-cool-app.desktop")["Icon"] == str(copied)


def test_missing_icon_falls_back_to_default(install_paths, make_appimage, tmp_path):
    result = create_desktop_entry(make_appimage(), install_paths, icon=tmp_path / "gone.png")

    assert result.ok
    values = read_entry(install_paths.applications_dir / "my-cool-app.desktop")
    assert values["Icon"] == entry_installer.DEFAULT_ICON


def test_exec_path_with_spaces_is_quoted(tmp_path, make_appimage):
    paths = entry_installer.InstallPaths.for_home(tmp_path / "jo smith", global_bin_dir=None)

    result = create_desktop_entry(make_appimage(), paths)

    values = read_entry(paths.applications_dir / "my-cool-app.desktop")
    assert result.ok
    assert values["Exec"] == f'"{paths.bin_dir / "my-cool-app"}"'


def test_refresh_tools_run_when_available(install_paths, make_appimage, monkeypatch):
    calls = []

    class Completed:
        returncode = 0
        stderr = ""

    def fake_run(command, **kwargs):
        calls.append(list(command))
        return Completed()

    monkeypatch.setattr(entry_installer.shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(entry_installer.subprocess, "run", fake_run)

    assert create_desktop_entry(make_appimage(), install_paths).ok
    assert calls == [["update-desktop-database", str(install_paths.applications_dir)]]


def test_refresh_tool_failure_is_not_fatal(install_paths, make_appimage, monkeypatch):
    def exploding_run(command, **kwargs):
        raise OSError("exec format error")

    monkeypatch.setattr(entry_installer.shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(entry_installer.subprocess, "run", exploding_run)

    assert create_desktop_entry(make_appimage(), install_paths).ok


def test_non_utf8_filename(install_paths, make_appimage):
    source = make_appimage(os.fsdecode(b"caf\xe9-app.AppImage"))

    result = create_desktop_entry(source, install_paths)

    entry = install_paths.applications_dir / "caf-app.desktop"
    assert result.ok, result.message
    assert (install_paths.bin_dir / "caf-app").is_file()
    assert read_entry(entry)["Name"] == "Caf\ufffd App"
    assert os.listdir(install_paths.applications_dir) == ["caf-app.desktop"]


def test_unencodable_entry_text_is_a_write_failure(install_paths):
    install_paths.applications_dir.mkdir(parents=True)
    target = install_paths.applications_dir / "app.desktop"

    with pytest.raises(entry_installer.WriteFailed):
        entry_installer.write_text_atomic(target, "Name=caf\udce9\n")

    assert os.listdir(install_paths.applications_dir) == []


def test_uncreatable_icons_directory_falls_back_to_source_icon(tmp_path, make_appimage):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    icon = tmp_path / "logo.png"
    icon.write_bytes(b"\x89PNG fake")
    paths = entry_installer.InstallPaths(
        bin_dir=tmp_path / "bin",
        applications_dir=tmp_path / "applications",
        icons_dir=blocker / "icons",
    )

    result = create_desktop_entry(make_appimage(), paths, icon=icon)

    assert result.ok, result.message
    assert (paths.bin_dir / "my-cool-app").is_file()
    assert read_entry(paths.applications_dir / "my-cool-app.desktop")["Icon"] == str(icon)
