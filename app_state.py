"""Window state and the handlers that change it.

The dialog owns a single AppState, calls one of the handlers below for each
button click and then redraws itself from the state. Choosers are plain
callables (a file dialog in the GUI, a lambda in tests) returning a path or
None when the user cancels.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

import entry_installer
from entry_installer import InstallPaths, OperationResult

log = logging.getLogger(__name__)


@dataclass
class AppState:
    selected: Path | None = None
    icon: Path | None = None
    result: OperationResult | None = None
    installed_globally: bool = False

    @property
    def app_name(self):
        if self.selected is None:
            return None
        return entry_installer.derive_app_name(self.selected)


def _pick(chooser, current):
    """Runs the chooser; a cancel or a non-file keeps ``current``."""
    chosen = chooser(current)
    if not chosen:
        log.info("Selection cancelled")
        return current, False
    path = Path(chosen)
    if not path.is_file():
        log.warning(f"Ignoring selection, not a file: {path}")
        return current, False
    return path, True


def select_file(state: AppState, chooser):
    state.selected, changed = _pick(chooser, state.selected)
    if changed:
        log.info(f"Selected: {state.selected}")
    return changed


def select_icon(state: AppState, chooser):
    state.icon, changed = _pick(chooser, state.icon)
    if changed:
        log.info(f"Selected icon: {state.icon}")
    return changed


def create_entry(state: AppState, paths: InstallPaths):
    state.result = entry_installer.create_desktop_entry(state.selected, paths, icon=state.icon)
    return state.result


def install_global(state: AppState, paths: InstallPaths, executable=None):
    if executable is None:
        executable = entry_installer.current_executable()
    state.result = entry_installer.install_globally(executable, paths)
    if state.result.ok:
        state.installed_globally = True
    return state.result
