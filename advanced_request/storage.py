"""
Persistence of downloaded payloads to disk.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Union

from shared.logging import get_logger


class FileWriter(ABC):
    """Writes a finished payload to a target path."""

    @abstractmethod
    def write(self, path: Union[str, Path], payload: Union[str, bytes]) -> Path:
        ...


class LocalFileWriter(FileWriter):
    """Writes payloads to the local filesystem, creating parent directories."""

    def __init__(self):
        self.logger = get_logger("advanced_request.storage")

    def write(self, path: Union[str, Path], payload: Union[str, bytes]) -> Path:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(payload, str):
            target.write_text(payload, encoding="utf-8")
        else:
            target.write_bytes(payload)
        self.logger.info("Payload saved", path=str(target), size=len(payload))
        return target
