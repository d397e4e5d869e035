"""
Base processor of the depth map estimation.

A processor runs one pipeline over the reference views of a scene. It owns
the per-view bookkeeping (context, results, failures) and writes a summary
per view; subclasses provide the pipeline itself.
"""

import datetime
from pathlib import Path
from typing import Dict, Any, List
from abc import ABC, abstractmethod

from ..errors import CameraParameterError, MapRecordError, TileConfigurationError
from utils.logger_config import get_logger


class BaseProcessor(ABC):
    """
    Config driven processing of reference views.

    A view failing on its own data (camera parameters, tile metadata, map
    records, file access) is logged and recorded in ``failed_views``; any
    other error stops the run.
    """

    def __init__(self, config, processing_type: str):
        """
        Args:
            config: Configuration object, ``save_path_result`` is the output folder
            processing_type: Name of the processing, used in logs and summaries
        """
        self.config = config
        self.processing_type = processing_type
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")

        self.current_view_info: Dict[str, Any] = {}
        self.processing_results: Dict[int, Dict[str, Any]] = {}
        self.failed_views: List[int] = []

        self.output_folder = Path(self.config.save_path_result)
        self.logger.info(f"{self.__class__.__name__} ready for {processing_type}, output: {self.output_folder}")

    def process_all_views(self) -> Dict[int, Dict[str, Any]]:
        """
        Run the pipeline on every view returned by ``_get_views_to_process``.

        Returns:
            Dict[int, Dict[str, Any]]: Results of the successful views, by R camera index
        """
        views = self._get_views_to_process()
        self.logger.info(f"Starting {self.processing_type} of {len(views)} views")

        for rc in views:
            try:
                self._process_view(rc)
            except (CameraParameterError, TileConfigurationError, MapRecordError, OSError) as e:
                self.failed_views.append(rc)
                self.logger.error(f"Failed to process view {rc}: {e}")

        self.logger.info(f"{self.processing_type}: {len(views) - len(self.failed_views)}/{len(views)} "
                         f"views processed")
        return self.processing_results

    def _process_view(self, rc: int) -> None:
        self.current_view_info = {
            'rc': rc,
            'timestamp': datetime.datetime.now().isoformat(),
            'processing_type': self.processing_type
        }
        self.logger.info(f"Processing view {rc}")

        results = self._execute_processing_pipeline(rc)
        self.processing_results[rc] = results
        self._save_processing_results(results, rc)

        self.logger.info(f"Successfully processed view {rc}")

    def _create_comprehensive_metadata(self, processing_results: Dict[str, Any]) -> Dict[str, Any]:
        """Summary of one view: context, configuration and pipeline results."""
        return {
            'view_info': self.current_view_info,
            'processing_version': f'{self.processing_type}_processor_v1.0',
            'configuration': self._extract_relevant_config(),
            'processing_results': processing_results
        }

    def _extract_relevant_config(self) -> Dict[str, Any]:
        relevant = {'save_path_result': str(self.config.save_path_result)}
        relevant.update(self._get_processor_specific_config())
        return relevant

    def get_processing_info(self) -> Dict[str, Any]:
        """
        Current processing setup.

        Returns:
            Dict[str, Any]: Type, output folder, view context, configuration
                and readiness of the processor
        """
        return {
            'processing_type': self.processing_type,
            'output_folder': str(self.output_folder),
            'current_view_info': self.current_view_info,
            'configuration': self._extract_relevant_config(),
            'processing_ready': self._is_processing_ready()
        }

    @abstractmethod
    def _get_views_to_process(self) -> List[int]:
        """R camera indexes to process, in order."""

    @abstractmethod
    def _execute_processing_pipeline(self, rc: int) -> Dict[str, Any]:
        """
        Run the pipeline on one view.

        Args:
            rc: Reference camera index

        Returns:
            Dict[str, Any]: JSON serializable results of the view
        """

    @abstractmethod
    def _save_processing_results(self, processing_results: Dict[str, Any], rc: int) -> None:
        """Persist the results of one view."""

    @abstractmethod
    def _get_processor_specific_config(self) -> Dict[str, Any]:
        """Configuration entries reported in the summaries."""

    @abstractmethod
    def _is_processing_ready(self) -> bool:
        """Whether the processor can run."""
