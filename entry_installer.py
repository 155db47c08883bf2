"""Desktop entry generation and installation for AppImage files.

Everything here works on paths and strings only, so the dialog in
deskimage.py (or a test) can drive it without a running Qt application.
"""

import logging
import os
import re
import shutil
import stat
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)

# --- Configuration ---
PROGRAM_NAME = "deskimage"
GLOBAL_BIN_DIR = Path("/usr/local/bin")
DEFAULT_ICON = "application-x-executable"
DEFAULT_CATEGORIES = "Utility;"
PRESERVED_KEYS = ("Icon", "Categories", "Keywords", "Comment")
EXEC_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH
REFRESH_TIMEOUT = 30

# Characters that force an Exec argument to be quoted (freedesktop.org, "The Exec key")
EXEC_RESERVED = set(" \t\n\"'\\><~|&;$*?#()`")


# --- Errors ---

class InstallError(Exception):
    """Base class for every failure reported back to the user."""


class NoFileSelected(InstallError):
    pass


class SourceUnreadable(InstallError):
    pass


class DirectoryCreateFailed(InstallError):
    pass


class CopyFailed(InstallError):
    pass


class PermissionDenied(InstallError):
    pass


class WriteFailed(InstallError):
    pass


# --- Data Model ---

@dataclass(frozen=True)
class AppName:
    display: str
    safe: str


@dataclass(frozen=True)
class InstallPaths:
    bin_dir: Path
    applications_dir: Path
    icons_dir: Path
    global_bin_dir: Path | None = GLOBAL_BIN_DIR
    program_name: str = PROGRAM_NAME

    @classmethod
    def for_home(cls, home=None, global_bin_dir=GLOBAL_BIN_DIR):
        """Standard per-user locations below ``home`` (defaults to the running user's)."""
        home = Path(home) if home is not None else Path.home()
        share = home / ".local" / "share"
        return cls(
            bin_dir=home / ".local" / "bin",
            applications_dir=share / "applications",
            icons_dir=share / "icons",
            global_bin_dir=Path(global_bin_dir) if global_bin_dir else None,
        )

    @property
    def global_target(self) -> Path | None:
        if self.global_bin_dir is None:
            return None
        return self.global_bin_dir / self.program_name

    def executable_for(self, name: AppName) -> Path:
        return self.bin_dir / name.safe

    def entry_for(self, name: AppName) -> Path:
        return self.applications_dir / f"{name.safe}.desktop"


@dataclass(frozen=True)
class OperationResult:
    ok: bool
    message: str
    paths: tuple = ()

    @classmethod
    def success(cls, message, paths=()):
        return cls(True, message, tuple(paths))

    @classmethod
    def failure(cls, message):
        return cls(False, message)


# --- Name Derivation ---

def sanitize_filename(name):
    """Creates a safe filename base: lower-case, no whitespace, no path separators."""
    name = name.lower()
    name = re.sub(r'[^\w\s.-]', '', name)
    name = re.sub(r'\s+', '-', name)
    name = re.sub(r'-{2,}', '-', name).strip('-.')
    return name if name else "unnamed-app"


def display_name(stem):
    """Separators become spaces and every word starts upper-case; inner capitals are kept."""
    words = re.sub(r'[-_]+', ' ', stem).split()
    if not words:
        return "Unnamed App"
    return " ".join(word[:1].upper() + word[1:] for word in words)


def derive_app_name(path) -> AppName:
    stem = Path(path).stem
    return AppName(display=display_name(to_utf8_text(stem)), safe=sanitize_filename(stem))


# --- Desktop Entry Text ---

def to_utf8_text(value):
    """Replaces bytes of a non-UTF-8 filename (decoded as surrogates) with U+FFFD."""
    return os.fsencode(str(value)).decode("utf-8", "replace")


def escape_value(value):
    return (to_utf8_text(value).replace("\\", "\\\\").replace("\n", "\\n")
            .replace("\t", "\\t").replace("\r", "\\r"))


def quote_exec_path(path):
    """Quotes an Exec argument when it holds reserved characters; ``%`` is always doubled."""
    text = str(path).replace("%", "%%")
    if not any(ch in EXEC_RESERVED for ch in text):
        return text
    for ch in ("\\", '"', "`", "$"):
        text = text.replace(ch, "\\" + ch)
    return f'"{text}"'


def parse_desktop_entry(content):
    """Returns the key/value pairs of the ``[Desktop Entry]`` group."""
    values = {}
    in_group = False
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("[") and line.endswith("]"):
            in_group = line == "[Desktop Entry]"
            continue
        if in_group and "=" in line:
            key, value = line.split("=", 1)
            values[key.strip()] = value.strip()
    return values


def normalize_categories(categories):
    """Makes sure ``Utility`` is listed and the value ends with ``;``."""
    items = [c for c in categories.split(";") if c.strip()]
    if "Utility" not in items:
        items.insert(0, "Utility")
    return ";".join(items) + ";"


def render_desktop_entry(name, exec_path, icon=DEFAULT_ICON, categories=DEFAULT_CATEGORIES,
                         keywords="", comment=""):
    # quoting is applied before the general string escapes; preserved values are already escaped
    lines = [
        "[Desktop Entry]",
        "Version=1.1",
        "Type=Application",
        f"Name={escape_value(name)}",
        f"Exec={escape_value(quote_exec_path(exec_path))}",
        f"Icon={icon or DEFAULT_ICON}",
        "Terminal=false",
        f"Categories={categories or DEFAULT_CATEGORIES}",
    ]
    if keywords:
        lines.append(f"Keywords={keywords}")
    if comment:
        lines.append(f"Comment={comment}")
    return "\n".join(lines) + "\n"


def read_existing_entry(entry_path):
    """Values worth keeping from a previous entry for the same app, or an empty dict."""
    try:
        content = Path(entry_path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except (OSError, UnicodeDecodeError) as e:
        log.warning(f"Ignoring unreadable existing entry {entry_path}: {e}")
        return {}
    values = parse_desktop_entry(content)
    preserved = {key: values[key] for key in PRESERVED_KEYS if values.get(key)}
    if "Categories" in preserved:
        preserved["Categories"] = normalize_categories(preserved["Categories"])
    return preserved


# --- File Operations ---

def ensure_directory(path):
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DirectoryCreateFailed(f"cannot create directory {path}: {e}") from e
    if not path.is_dir():
        raise DirectoryCreateFailed(f"cannot create directory {path}: not a directory")
    log.info(f"Ensured directory exists: {path}")


def check_source(path):
    path = Path(path)
    if not path.is_file() or not os.access(path, os.R_OK):
        raise SourceUnreadable(f"cannot read source: {path}")
    return path


def _temp_sibling(target):
    fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".part")
    os.close(fd)
    return Path(tmp)


def install_executable(source, target):
    """Copies ``source`` over ``target`` with execute bits set, replacing it in one rename.

    The copy lands in a hidden temporary file next to ``target`` first, so a failed
    copy never leaves a truncated binary behind.
    """
    source, target = Path(source), Path(target)
    tmp = None
    try:
        tmp = _temp_sibling(target)
        shutil.copy2(source, tmp)
        mode = stat.S_IMODE(os.stat(tmp).st_mode) | stat.S_IRUSR | stat.S_IWUSR | EXEC_BITS
        os.chmod(tmp, mode)
        os.replace(tmp, target)
    except PermissionError as e:
        _discard(tmp)
        raise PermissionDenied(f"permission denied while copying to {target}: {e}") from e
    except FileNotFoundError as e:
        _discard(tmp)
        if not source.is_file():
            raise SourceUnreadable(f"cannot read source: {source}") from e
        raise CopyFailed(f"cannot copy {source} to {target}: {e}") from e
    except OSError as e:
        _discard(tmp)
        raise CopyFailed(f"cannot copy {source} to {target}: {e}") from e
    log.info(f"Copied '{source}' to '{target}' (mode {oct(mode)})")
    return target


def write_text_atomic(target, content):
    target = Path(target)
    tmp = None
    try:
        tmp = _temp_sibling(target)
        tmp.write_text(content, encoding="utf-8")
        os.chmod(tmp, 0o644)
        os.replace(tmp, target)
    except (OSError, UnicodeError) as e:
        _discard(tmp)
        raise WriteFailed(f"cannot write desktop entry {target}: {e}") from e
    return target


def _discard(tmp):
    if tmp is None:
        return
    try:
        tmp.unlink(missing_ok=True)
    except OSError as e:
        log.warning(f"Could not remove temporary file {tmp}: {e}")


def copy_icon(icon, name, paths):
    """Copies a custom icon next to the user's icons; falls back to the source path on error."""
    icon = Path(icon)
    try:
        ensure_directory(paths.icons_dir)
    except DirectoryCreateFailed as e:
        log.warning(f"Couldn't create icons directory: {e}")
        return escape_value(icon), False
    target = paths.icons_dir / f"{name.safe}{icon.suffix.lower()}"
    try:
        shutil.copy2(icon, target)
    except OSError as e:
        log.warning(f"Couldn't copy icon {icon}: {e}")
        return escape_value(icon), False
    log.info(f"Icon copied to: {target}")
    return escape_value(target), True


def run_refresh_tool(*command):
    """Runs a menu cache tool if it is installed; failures are only logged."""
    if shutil.which(command[0]) is None:
        log.info(f"{command[0]} not found, skipping")
        return False
    try:
        completed = subprocess.run(command, capture_output=True, text=True,
                                   timeout=REFRESH_TIMEOUT, check=False)
    except (OSError, subprocess.TimeoutExpired) as e:
        log.warning(f"Failed to run {command[0]}: {e}")
        return False
    if completed.returncode != 0:
        log.warning(f"{command[0]} exited with {completed.returncode}: {completed.stderr.strip()}")
        return False
    log.info(f"{command[0]} finished")
    return True


def refresh_menus(paths, icons_changed=False):
    run_refresh_tool("update-desktop-database", str(paths.applications_dir))
    if icons_changed:
        run_refresh_tool("gtk-update-icon-cache", "-f", "-t", str(paths.icons_dir))


# --- Operations ---

def create_desktop_entry(selected, paths: InstallPaths, icon=None) -> OperationResult:
    """Copies ``selected`` into the user's bin directory and writes a launcher for it."""
    try:
        if selected is None:
            raise NoFileSelected("no file selected")
        source = check_source(selected)

        ensure_directory(paths.bin_dir)
        ensure_directory(paths.applications_dir)

        name = derive_app_name(source)
        log.info(f"App name: {name.display} ({name.safe})")
        executable = install_executable(source, paths.executable_for(name))

        entry_path = paths.entry_for(name)
        existed = entry_path.exists()
        preserved = read_existing_entry(entry_path)

        icon_value, icon_copied = preserved.get("Icon", DEFAULT_ICON), False
        if icon:
            if Path(icon).is_file():
                icon_value, icon_copied = copy_icon(icon, name, paths)
            else:
                log.warning(f"Icon {icon} no longer exists, keeping {icon_value}")

        content = render_desktop_entry(
            name.display,
            executable,
            icon=icon_value,
            categories=preserved.get("Categories", DEFAULT_CATEGORIES),
            keywords=preserved.get("Keywords", ""),
            comment=preserved.get("Comment", ""),
        )
        write_text_atomic(entry_path, content)
        log.info(f".desktop file written: {entry_path}")
    except InstallError as e:
        return OperationResult.failure(str(e))

    refresh_menus(paths, icons_changed=icon_copied)

    verb = "updated" if existed else "created"
    return OperationResult.success(
        f"Desktop entry {verb} for '{name.display}'\n"
        f"Executable: {executable}\n"
        f"Entry: {entry_path}",
        paths=(executable, entry_path),
    )


def install_globally(current_exe, paths: InstallPaths) -> OperationResult:
    """Copies the running program into the global bin directory. Never elevates privileges."""
    try:
        target = paths.global_target
        if target is None:
            raise DirectoryCreateFailed("cannot create directory: no global install location configured")
        source = check_source(current_exe)
        if not is_self_contained(source):
            raise CopyFailed(f"cannot copy {source} to {target}: a bare .py script cannot import its "
                             "sibling modules there; install the package or use a bundled build")
        ensure_directory(target.parent)
        install_executable(source, target)
    except DirectoryCreateFailed as e:
        # creating /usr/local/bin as a regular user fails the same way a copy would
        if isinstance(e.__cause__, PermissionError):
            message = f"permission denied: {e}. Run as root to install globally."
        else:
            message = str(e)
        return OperationResult.failure(message)
    except PermissionDenied as e:
        message = f"{e}. Run as root to install globally."
        return OperationResult.failure(message)
    except InstallError as e:
        return OperationResult.failure(str(e))
    return OperationResult.success(f"Installed globally at {target}", paths=(target,))


def is_globally_installed(current_exe, paths: InstallPaths):
    target = paths.global_target
    if target is None:
        return False
    return Path(current_exe) == target or target.exists()


def is_self_contained(executable):
    """False for a bare ``.py`` script; bundled builds and console-script launchers run anywhere."""
    if getattr(sys, "frozen", False):
        return True
    return Path(executable).suffix.lower() != ".py"


def current_executable():
    """The frozen binary when bundled, otherwise the script that launched us."""
    if getattr(sys, "frozen", False):
        return Path(sys.executable)
    return Path(sys.argv[0]).resolve()
