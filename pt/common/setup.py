import os
from pathlib import Path
from dataclasses import dataclass

# Lil helper function to create missing directories if missing, and optionally error out when a path
# doesn't exist.
def ensure_directory(path: Path,must_exist=False):
    if must_exist:
        if not path.exists():
            raise FileNotFoundError(f"Required directory is missing: {path}")
        if not path.is_dir():
            raise NotADirectoryError(f"Expected a directory, got a file: {path}")
    else:
        path.mkdir(parents=True,exist_ok=True)
    return path

# Picks the folder that holds all user data. PILLTRACKER_HOME wins outright (tests and portable installs),
# then APPDATA on Windows, then the XDG data dir everywhere else.
def _resolve_data_root():
    override = os.getenv("PILLTRACKER_HOME")
    if override:
        return Path(override)
    appdata = os.getenv("APPDATA")
    if appdata:
        return Path(appdata) / "PillTracker"
    xdg = os.getenv("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "pilltracker"
    return Path.home() / ".local" / "share" / "pilltracker"

# Dataclass for accessing paths across program.
@dataclass(frozen=False)
class ProjectPaths:

    data: Path

    logs: Path
    current: Path

    @staticmethod
    def build():
        # Folder for all user-specific and session related stuff
        data = ensure_directory(_resolve_data_root())

        # Folders within the data folder
        logs = ensure_directory(data / "logs")
        current = ensure_directory(data / "current")

        return ProjectPaths(
            data = data,
            logs = logs,
            current = current,
        )
PATHS = ProjectPaths.build()
