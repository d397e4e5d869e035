"""
Camera parameter context for multi-view depth estimation.
"""

from .multi_view_params import CameraParams, MultiViewParams, load_multi_view_params

__all__ = ['CameraParams', 'MultiViewParams', 'load_multi_view_params']
