"""
Managers for handling environment variables and env_file resolution.
"""
import os
from typing import Dict, List, Optional

from dotenv import dotenv_values

from ..UTILS.reporter import Reporter, EventKind


class EnvironmentManager:
    """
    Merges a service's env_file entries with its explicit environment.
    """
    def __init__(self, base_dir: str = ".", reporter: Optional[Reporter] = None):
        """
        Initializes the environment manager.

        :param base_dir: The base directory for resolving relative paths to .env files.
        :param reporter: Receives a warning for each missing env file.
        """
        self.base_dir = base_dir
        self.reporter = reporter

    def get_merged_environment(self,
                               explicit_env: Dict[str, str],
                               env_files: List[str],
                               service: Optional[str] = None) -> Dict[str, str]:
        """
        Merges variables from env files and explicit definitions.
        Later files override earlier ones; explicit variables override all files.

        :param explicit_env: Explicitly defined environment variables.
        :param env_files: Paths to .env files.
        :param service: Service name, for warnings.
        :return: The merged environment.
        """
        merged: Dict[str, str] = {}

        for env_file in env_files or []:
            file_path = env_file if os.path.isabs(env_file) else os.path.join(self.base_dir, env_file)
            if not os.path.exists(file_path):
                if self.reporter:
                    self.reporter.emit(EventKind.WARNING, f"env_file not found: {file_path}", service)
                continue
            for key, value in dotenv_values(file_path).items():
                merged[key] = "" if value is None else value

        merged.update(explicit_env or {})
        return merged
