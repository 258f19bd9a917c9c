"""
Volume mapping resolution for container bind mounts.
"""
import os
from typing import List


class VolumeManager:
    """
    Resolves template volume mappings into runtime bind strings.
    """
    def __init__(self, base_dir: str = "."):
        """
        Initializes the volume manager.

        :param base_dir: The base directory for resolving relative host paths.
        """
        self.base_dir = os.path.abspath(base_dir)

    def resolve_binds(self, volumes: List[str]) -> List[str]:
        """
        Resolves each ``host:container[:mode]`` mapping.

        :param volumes: Volume mappings as written in the template.
        :return: Bind strings with absolute host paths.
        """
        binds = []
        for volume in volumes or []:
            parts = volume.split(":")
            parts[0] = self.resolve_source(parts[0])
            binds.append(":".join(parts))
        return binds

    def resolve_source(self, source: str) -> str:
        """
        Resolves the host side of a volume mapping.

        A bare name (no path separator, not starting with '.' or '~') is a
        named runtime volume and is passed through untouched.

        :param source: The source path or volume name.
        :return: The absolute path, or the volume name.
        """
        if source.startswith("~"):
            return os.path.expanduser(source)
        if os.path.isabs(source):
            return source
        if "/" not in source and "\\" not in source and not source.startswith("."):
            return source
        return os.path.abspath(os.path.join(self.base_dir, source))
