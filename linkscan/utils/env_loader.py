from __future__ import annotations

import os
from pathlib import Path
from typing import Union

from dotenv import find_dotenv, load_dotenv


PathLike = Union[str, Path]

ENV_FILE_VARIABLE = "LINKSCAN_ENV_FILE"


def resolve_env_file(dotenv_path: PathLike | None = None) -> str:
    """Pick the .env file to load.

    An explicit path wins, then ``LINKSCAN_ENV_FILE``, then the first ``.env``
    found walking up from the current working directory. Returns an empty
    string when nothing is found.
    """

    if dotenv_path is not None:
        return str(dotenv_path)

    configured = os.getenv(ENV_FILE_VARIABLE)
    if configured:
        return configured

    return find_dotenv(usecwd=True)


def load_environment(dotenv_path: PathLike | None = None, *, override: bool = False) -> bool:
    """Load environment variables from a .env file.

    Returns True if an env file was found and loaded, otherwise False.
    """

    path = resolve_env_file(dotenv_path)
    if not path or not Path(path).is_file():
        return False

    return load_dotenv(dotenv_path=path, override=override)
