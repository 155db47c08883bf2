import logging
import sys
from pathlib import Path

from PySide6.QtWidgets import (
    QApplication, QDialog, QVBoxLayout, QHBoxLayout, QFormLayout, QGroupBox,
    QPushButton, QLineEdit, QLabel, QFileDialog, QMessageBox, QStyleFactory,
)
from PySide6.QtCore import Qt, QStandardPaths, QDir, QSettings
from PySide6.QtGui import QIcon, QPixmap

import app_state
import entry_installer
from app_state import AppState
from entry_installer import InstallPaths

log = logging.getLogger("deskimage")

# --- Configuration ---
APP_NAME = "DeskImage"
ORG_NAME = "DeskImage"
SETTINGS_LAST_DIR = "lastDirectory"
SETTINGS_LAST_ICON_DIR = "lastIconDirectory"
APPIMAGE_FILTER = "AppImage (*.AppImage *.appimage);;All Files (*)"
ICON_FILTER = "Images (*.png *.svg *.xpm *.jpg *.jpeg);;All Files (*)"
LOG_FORMAT = "%(levelname)s: %(message)s"

IDLE_MESSAGE = "Select an AppImage file to create a desktop entry"
SUCCESS_COLOR = "#1ED760"
FAILURE_COLOR = "#FF5C5C"
IDLE_COLOR = "#B0BEC5"


def default_install_paths():
    """Resolves the per-user install locations through QStandardPaths."""
    home = Path(QStandardPaths.writableLocation(QStandardPaths.StandardLocation.HomeLocation))
    apps = QStandardPaths.writableLocation(QStandardPaths.StandardLocation.ApplicationsLocation)
    data = QStandardPaths.writableLocation(QStandardPaths.StandardLocation.GenericDataLocation)
    fallback = InstallPaths.for_home(home)
    return InstallPaths(
        bin_dir=home / ".local" / "bin",
        applications_dir=Path(apps) if apps else fallback.applications_dir,
        icons_dir=Path(data) / "icons" if data else fallback.icons_dir,
    )


# --- Main Application Dialog ---

class DeskImageApp(QDialog):
    def __init__(self, paths=None, executable=None):
        super().__init__()
        self.settings = QSettings(ORG_NAME, APP_NAME)
        self.setWindowTitle(APP_NAME)
        self.setMinimumWidth(600)

        self.paths = paths or default_install_paths()
        self.executable = executable or entry_installer.current_executable()
        self.self_contained = entry_installer.is_self_contained(self.executable)
        self.state = AppState(
            installed_globally=entry_installer.is_globally_installed(self.executable, self.paths))
        self.last_dir = ""
        self.last_icon_dir = ""

        self.init_ui()
        self.load_settings()
        self.connect_signals()
        self.apply_stylesheet()
        self.render()

    def init_ui(self):
        main_layout = QVBoxLayout(self)
        main_layout.setSpacing(15)

        title = QLabel(APP_NAME)
        title.setObjectName("titleLabel")
        title.setAlignment(Qt.AlignmentFlag.AlignCenter)
        main_layout.addWidget(title)

        form_layout = QFormLayout()
        form_layout.setRowWrapPolicy(QFormLayout.RowWrapPolicy.WrapLongRows)
        form_layout.setLabelAlignment(Qt.AlignmentFlag.AlignRight)
        form_layout.setHorizontalSpacing(10)
        form_layout.setVerticalSpacing(12)

        # --- AppImage ---
        appimage_layout = QHBoxLayout()
        self.appimage_edit = QLineEdit()
        self.appimage_edit.setObjectName("appimageEdit")
        self.appimage_edit.setPlaceholderText("Path to the .AppImage file")
        self.appimage_edit.setReadOnly(True)
        self.appimage_browse_button = QPushButton(QIcon.fromTheme("document-open"), "&Browse...")
        self.appimage_browse_button.setObjectName("appimageBrowseButton")
        appimage_layout.addWidget(self.appimage_edit, 1)
        appimage_layout.addWidget(self.appimage_browse_button)
        form_layout.addRow("AppImage:", appimage_layout)

        self.name_label = QLabel("-")
        self.name_label.setObjectName("nameLabel")
        self.name_label.setToolTip("Name shown in the application menu (on-disk name in brackets)")
        form_layout.addRow("Application Name:", self.name_label)

        # --- Icon ---
        icon_group = QGroupBox("Icon (optional)")
        icon_group.setObjectName("iconGroup")
        icon_row_layout = QHBoxLayout(icon_group)
        self.icon_edit = QLineEdit()
        self.icon_edit.setObjectName("iconEdit")
        self.icon_edit.setPlaceholderText(f"Defaults to '{entry_installer.DEFAULT_ICON}'")
        self.icon_edit.setReadOnly(True)
        self.icon_browse_button = QPushButton(QIcon.fromTheme("image-x-generic"), "&Icon...")
        self.icon_browse_button.setObjectName("iconBrowseButton")
        self.icon_preview_label = QLabel()
        self.icon_preview_label.setObjectName("iconPreviewLabel")
        self.icon_preview_label.setFixedSize(48, 48)
        self.icon_preview_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.icon_preview_label.setToolTip("Selected icon preview")
        icon_row_layout.addWidget(self.icon_edit, 1)
        icon_row_layout.addWidget(self.icon_browse_button)
        icon_row_layout.addWidget(self.icon_preview_label)
        form_layout.addRow(icon_group)

        main_layout.addLayout(form_layout)

        # --- Actions ---
        button_layout = QHBoxLayout()
        button_layout.addStretch(1)
        self.create_button = QPushButton(QIcon.fromTheme("document-save"), "&Create Desktop Entry")
        self.create_button.setObjectName("createButton")
        self.install_button = QPushButton(QIcon.fromTheme("system-software-install"), "Install &Globally")
        self.install_button.setObjectName("installButton")
        self.install_button.setToolTip(f"Copy this program to {self.paths.global_target} (needs root)")
        if not self.self_contained: self.install_button.setToolTip("Run the installed 'deskimage' command or a bundled build to install globally")
        button_layout.addWidget(self.create_button)
        button_layout.addSpacing(20)
        button_layout.addWidget(self.install_button)
        button_layout.addStretch(1)
        main_layout.addLayout(button_layout)

        # --- Status ---
        self.status_label = QLabel()
        self.status_label.setObjectName("statusLabel")
        self.status_label.setWordWrap(True)
        self.status_label.setTextInteractionFlags(Qt.TextInteractionFlag.TextSelectableByMouse)
        main_layout.addWidget(self.status_label)
        main_layout.addStretch(1)

    def apply_stylesheet(self):
        background = "#16161E"
        panel = "#20202A"
        primary_color = "#007AD9"
        button_hover_bg = "#0088F0"
        button_pressed_bg = "#006BBF"
        text_color = "#E6E6E6"
        border_color = "#3A3A4A"

        self.setStyleSheet(f"""
            QDialog {{ background-color: {background}; color: {text_color}; font-size: 11pt; }}
            QLabel {{ color: {text_color}; }}
            QLabel#titleLabel {{ font-size: 18pt; font-weight: bold; color: {primary_color}; }}
            QLabel#nameLabel {{ font-weight: bold; }}
            QGroupBox {{ font-weight: bold; border: 1px solid {border_color}; border-radius: 6px; margin-top: 0.7em; padding: 12px; background-color: {panel}; color: {text_color}; }}
            QGroupBox::title {{ subcontrol-origin: margin; subcontrol-position: top left; padding: 3px 8px; left: 12px; }}
            QPushButton {{ padding: 8px 16px; border: 1px solid {primary_color}; border-radius: 5px; background-color: qlineargradient(x1:0, y1:0, x2:0, y2:1, stop:0 {primary_color}, stop:1 {button_pressed_bg}); color: white; font-weight: bold; min-width: 100px; }}
            QPushButton:hover {{ background-color: qlineargradient(x1:0, y1:0, x2:0, y2:1, stop:0 {button_hover_bg}, stop:1 {primary_color}); }}
            QPushButton:pressed {{ background-color: {button_pressed_bg}; }}
            QPushButton:disabled {{ background-color: #37474F; border-color: #455A64; color: #90A4AE; }}
            QPushButton#appimageBrowseButton, QPushButton#iconBrowseButton {{ min-width: 80px; padding: 7px 10px; font-weight: normal; background-color: {panel}; border: 1px solid {border_color}; color: {text_color}; }}
            QLineEdit {{ padding: 6px; border: 1px solid {border_color}; border-radius: 4px; background-color: {panel}; color: {text_color}; }}
            QLabel#iconPreviewLabel {{ background-color: {panel}; border: 1px dashed {border_color}; color: #78909C; }}
            QLabel#statusLabel {{ padding: 10px; border-radius: 5px; background-color: {panel}; }}
        """)

    def connect_signals(self):
        self.appimage_browse_button.clicked.connect(self.browse_appimage)
        self.icon_browse_button.clicked.connect(self.browse_icon)
        self.create_button.clicked.connect(self.create_desktop_entry)
        self.install_button.clicked.connect(self.install_globally)

    def load_settings(self):
        self.last_dir = self.settings.value(SETTINGS_LAST_DIR, "") or ""
        self.last_icon_dir = self.settings.value(SETTINGS_LAST_ICON_DIR, "") or ""

    def save_settings(self):
        self.settings.setValue(SETTINGS_LAST_DIR, self.last_dir)
        self.settings.setValue(SETTINGS_LAST_ICON_DIR, self.last_icon_dir)

    def closeEvent(self, event):
        self.save_settings()
        super().closeEvent(event)

    # --- Choosers ---

    def _start_dir(self, current, remembered):
        if current and current.parent.exists(): return str(current.parent)
        if remembered and Path(remembered).is_dir(): return remembered
        return str(Path.home())

    def choose_appimage(self, current):
        path, _ = QFileDialog.getOpenFileName(self, "Select AppImage", self._start_dir(current, self.last_dir), APPIMAGE_FILTER)
        return QDir.toNativeSeparators(path) if path else None

    def choose_icon(self, current):
        path, _ = QFileDialog.getOpenFileName(self, "Select Icon File", self._start_dir(current, self.last_icon_dir), ICON_FILTER)
        return QDir.toNativeSeparators(path) if path else None

    # --- Handlers ---

    def browse_appimage(self):
        if app_state.select_file(self.state, self.choose_appimage):
            self.last_dir = str(self.state.selected.parent)
        self.render()

    def browse_icon(self):
        if app_state.select_icon(self.state, self.choose_icon):
            self.last_icon_dir = str(self.state.icon.parent)
        self.render()

    def create_desktop_entry(self):
        result = app_state.create_entry(self.state, self.paths)
        self.log_output(result.message, error=not result.ok)
        self.render()

    def install_globally(self):
        if self.state.installed_globally:
            answer = QMessageBox.question(self, "Already Installed", f"{self.paths.global_target} already exists. Overwrite it?")
            if answer != QMessageBox.StandardButton.Yes: return
        result = app_state.install_global(self.state, self.paths, self.executable)
        self.log_output(result.message, error=not result.ok)
        self.render()

    def log_output(self, message, error=False):
        if error: log.error(message)
        else: log.info(message)

    # --- Rendering ---

    def render(self):
        state = self.state
        self.appimage_edit.setText(str(state.selected) if state.selected else "")
        name = state.app_name
        self.name_label.setText(f"{name.display}  [{name.safe}]" if name else "-")
        self.icon_edit.setText(str(state.icon) if state.icon else "")
        self.update_icon_preview(state.icon)

        self.create_button.setEnabled(state.selected is not None)
        self.install_button.setText("Reinstall &Globally" if state.installed_globally else "Install &Globally")
        self.install_button.setEnabled(self.paths.global_target is not None and self.self_contained)

        if state.result is None:
            text = f"Selected: {state.selected}" if state.selected else IDLE_MESSAGE
            color = IDLE_COLOR
        else:
            prefix = "SUCCESS" if state.result.ok else "ERROR"
            text = f"{prefix}: {state.result.message}"
            color = SUCCESS_COLOR if state.result.ok else FAILURE_COLOR
        self.status_label.setText(text)
        self.status_label.setStyleSheet(f"color: {color};")

    def update_icon_preview(self, icon_path):
        if icon_path and Path(icon_path).is_file():
            pixmap = QPixmap(str(icon_path))
            if not pixmap.isNull():
                scaled_pixmap = pixmap.scaled(self.icon_preview_label.size(), Qt.AspectRatioMode.KeepAspectRatio, Qt.TransformationMode.SmoothTransformation)
                self.icon_preview_label.setPixmap(scaled_pixmap)
                return
        self.icon_preview_label.clear(); self.icon_preview_label.setText("?")


# --- Main Execution ---

def main():
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    app = QApplication(sys.argv)
    app.setApplicationName(APP_NAME)
    app.setOrganizationName(ORG_NAME)
    if "Fusion" in QStyleFactory.keys(): app.setStyle(QStyleFactory.create("Fusion"))
    dialog = DeskImageApp()
    log.info(f"Applications directory: {dialog.paths.applications_dir}")
    dialog.show()
    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
