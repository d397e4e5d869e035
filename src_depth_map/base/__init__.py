"""
Base classes for depth map estimation modules.

This package provides unified base classes for file management and
processing operations.
"""

from .file_manager import BaseFileManager
from .processor import BaseProcessor

__all__ = ['BaseFileManager', 'BaseProcessor']
