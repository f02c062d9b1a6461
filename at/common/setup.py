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

# Dataclass for accessing paths across program.
@dataclass(frozen=False)
class ProjectPaths:

    data: Path

    logs: Path
    current: Path
    sessions: Path

    @staticmethod
    def build(data_root: Path | None = None):
        # ATTENDANCE_TIMER_HOME wins, otherwise everything lives in a dot folder in the user's home.
        if data_root is None:
            env_home = os.getenv("ATTENDANCE_TIMER_HOME")
            data_root = Path(env_home) if env_home else Path.home() / ".attendance_timer"
        data = ensure_directory(Path(data_root))

        # Folders within the data folder
        logs = ensure_directory(data / "logs")
        current = ensure_directory(data / "current")
        sessions = ensure_directory(data / "completed_sessions")

        return ProjectPaths(
            data = data,
            logs = logs,
            current = current,
            sessions = sessions
        )
PATHS = ProjectPaths.build()
