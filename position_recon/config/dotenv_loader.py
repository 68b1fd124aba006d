"""
Dotenv loading for local runs.

Exchange credentials reach config.yaml through ${VAR} references. Outside
prod they may come from dotenv files:

    RECON_ENV_FILE    explicit file, loaded alone when set
    <root>/.env       base values, never override the real environment
    <root>/.env.local developer overrides

With ENVIRONMENT=prod (the default) nothing is loaded.

Imported by position_recon.config.config, so it must not import it back.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

ENV_FILE_VAR = "RECON_ENV_FILE"


def current_environment() -> str:
    return (os.getenv("ENVIRONMENT") or "prod").strip().lower()


def load_dotenv_files(*, repo_root: Path | None = None) -> List[Path]:
    """Load dotenv files unless running in prod. Returns the files loaded, in order."""
    if current_environment() == "prod":
        return []

    explicit = os.getenv(ENV_FILE_VAR)
    if explicit:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise FileNotFoundError(f"{ENV_FILE_VAR} points to a missing file: {path}")
        load_dotenv(dotenv_path=path, override=True)
        return [path]

    root = repo_root or Path.cwd()
    loaded = []
    for name, override in ((".env", False), (".env.local", True)):
        path = root / name
        if path.is_file():
            load_dotenv(dotenv_path=path, override=override)
            loaded.append(path)
    return loaded
