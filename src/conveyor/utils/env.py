import os
from typing import Optional

from dotenv import load_dotenv

ENV_LOADED = False


def load_env(env_file: Optional[str] = None) -> bool:
    """
    Load a dotenv file once per process. The file comes from `env_file` or the
    ENV_FILE variable. Variables already exported (Docker/K8s) win over the file.
    Returns True when a file was loaded.
    """
    global ENV_LOADED
    if ENV_LOADED:
        return False

    env_file = env_file or os.environ.get("ENV_FILE")
    if not env_file or not os.path.exists(env_file):
        return False

    load_dotenv(env_file, encoding="utf-8", override=False)
    ENV_LOADED = True
    return True
