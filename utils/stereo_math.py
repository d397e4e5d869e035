"""
Checks of camera projection parameters and small vector helpers.
"""

import numpy as np


class StereoMath:
    """Camera parameter validation shared by the camera context and the SGM stages."""

    @staticmethod
    def validate_camera_matrix(K: np.ndarray, matrix_name: str = "K") -> bool:
        """
        Check an intrinsic matrix: 3x3, positive focal lengths, last row [0, 0, 1].

        Raises:
            ValueError: Description of the first failed check
        """
        if K.shape != (3, 3):
            raise ValueError(f"{matrix_name} must be 3x3, got {K.shape}")
        if min(K[0, 0], K[1, 1]) <= 0:
            raise ValueError(f"{matrix_name} needs positive focal lengths, got {K[0, 0]} and {K[1, 1]}")
        if not np.allclose(K[2], (0.0, 0.0, 1.0)):
            raise ValueError(f"{matrix_name} last row must be [0, 0, 1], got {K[2].tolist()}")
        return True

    @staticmethod
    def validate_rotation_matrix(R: np.ndarray, matrix_name: str = "R") -> bool:
        """
        Check a world to camera rotation: orthonormal with determinant 1.

        Raises:
            ValueError: Description of the first failed check
        """
        if R.shape != (3, 3):
            raise ValueError(f"{matrix_name} must be 3x3, got {R.shape}")
        if not np.allclose(R @ R.T, np.eye(3), atol=1e-6):
            raise ValueError(f"{matrix_name} is not orthonormal")
        det = float(np.linalg.det(R))
        if abs(det - 1.0) > 1e-6:
            # reflections have det == -1
            raise ValueError(f"{matrix_name} is not a rotation, det={det}")
        return True

    @staticmethod
    def validate_translation_vector(t: np.ndarray, vector_name: str = "t") -> bool:
        if t.shape not in ((3,), (3, 1)):
            raise ValueError(f"{vector_name} must hold 3 values, got shape {t.shape}")
        if not np.isfinite(t).all():
            raise ValueError(f"{vector_name} has non finite values")
        return True

    @staticmethod
    def normalize_vectors(vectors: np.ndarray) -> np.ndarray:
        """Unit vectors along the last axis, null vectors stay null."""
        norm = np.linalg.norm(vectors, axis=-1, keepdims=True)
        with np.errstate(divide='ignore', invalid='ignore'):
            return np.where(norm > 0, vectors / norm, 0.0)
