"""
Base file management for the map I/O layer.

File managers own one output folder and count the file operations they
perform; tile workers write concurrently so the counters are locked.
"""

import threading
from pathlib import Path
from typing import Any, Dict, Iterable
from abc import ABC, abstractmethod

from utils.file_operations import PathManager
from utils.logger_config import get_logger


def _empty_statistics() -> Dict[str, int]:
    return {'total_operations': 0, 'successful_operations': 0, 'failed_operations': 0}


class BaseFileManager(ABC):
    """
    Base class of the map file managers.

    Subclasses implement the format specific read and write operations and
    report each of them through ``record_operation``.
    """

    def __init__(self, base_output_path: Path):
        """
        Args:
            base_output_path: Folder holding the files of this manager
        """
        self.base_output_path = Path(base_output_path)
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")

        self._stats_lock = threading.Lock()
        self.processing_stats = _empty_statistics()

    def setup_output_directory(self) -> Path:
        """Create the output folder if needed and return it."""
        return PathManager.ensure_directory_exists(self.base_output_path)

    def record_operation(self, success: bool) -> None:
        key = 'successful_operations' if success else 'failed_operations'
        with self._stats_lock:
            self.processing_stats['total_operations'] += 1
            self.processing_stats[key] += 1

    def delete_files(self, paths: Iterable[Path]) -> int:
        """
        Delete files, a file that cannot be deleted is only reported.

        Args:
            paths: Files to delete

        Returns:
            int: Number of deleted files
        """
        deleted = 0
        for path in paths:
            try:
                Path(path).unlink()
            except OSError as e:
                self.record_operation(False)
                self.logger.warning(f"Cannot delete file {path}: {e}")
                continue
            deleted += 1
            self.record_operation(True)
            self.logger.debug(f"Deleted file: {path}")
        return deleted

    def get_processing_statistics(self) -> Dict[str, Any]:
        """
        Snapshot of the operation counters.

        Returns:
            Dict[str, Any]: Counters and ``success_rate`` (0 before any operation)
        """
        with self._stats_lock:
            stats: Dict[str, Any] = dict(self.processing_stats)
        total = stats['total_operations']
        stats['success_rate'] = stats['successful_operations'] / total if total else 0
        return stats

    def reset_processing_statistics(self) -> None:
        with self._stats_lock:
            self.processing_stats = _empty_statistics()

    @abstractmethod
    def get_folder_name(self) -> str:
        """Folder holding the files of this manager."""
