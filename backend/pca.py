"""Fixed linear projection of full-size embeddings down to PCA_DIM.

The projection is fit offline (scripts/fit_pca.py) from stored embeddings
and saved as an .npz holding the training mean and the top components.
"""

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import numpy as np

from backend.config import get_int, get_str

PCA_DIM = get_int("PCA_DIM", 128) or 128
PCA_MIN_SAMPLES = 50
PCA_MODEL_PATH = get_str(
    "PCA_MODEL_PATH", str(Path(__file__).resolve().parent / "models" / "pca_128.npz")
)


class ProjectionError(RuntimeError):
    pass


@dataclass(frozen=True)
class PcaProjection:
    mean: np.ndarray
    components: np.ndarray

    @property
    def input_dim(self) -> int:
        return int(self.components.shape[1])

    @property
    def output_dim(self) -> int:
        return int(self.components.shape[0])

    def transform(self, vector) -> list[float]:
        x = np.asarray(vector, dtype=np.float64)
        if x.ndim != 1 or x.shape[0] != self.input_dim:
            raise ProjectionError(f"expected {self.input_dim} dims, got {x.shape}")
        return (self.components @ (x - self.mean)).tolist()

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        np.savez(path, mean=self.mean, components=self.components)


def fit_projection(samples, n_components: int = PCA_DIM) -> PcaProjection:
    x = np.asarray(samples, dtype=np.float64)
    if x.ndim != 2:
        raise ProjectionError("samples must be a 2-d array")
    # SVD of n samples yields at most n components
    needed = max(PCA_MIN_SAMPLES, n_components)
    if x.shape[0] < needed:
        raise ProjectionError(f"need at least {needed} samples, got {x.shape[0]}")
    if n_components > x.shape[1]:
        raise ProjectionError(f"cannot keep {n_components} components of {x.shape[1]}-d vectors")
    mean = x.mean(axis=0)
    _, _, vt = np.linalg.svd(x - mean, full_matrices=False)
    return PcaProjection(mean=mean, components=vt[:n_components])


def load_projection(path: str | Path) -> PcaProjection:
    try:
        with np.load(path) as data:
            return PcaProjection(mean=data["mean"], components=data["components"])
    except (OSError, KeyError, ValueError) as e:
        raise ProjectionError(f"cannot load projection from {path}: {e}") from e


@lru_cache(maxsize=1)
def _default_projection() -> PcaProjection:
    return load_projection(PCA_MODEL_PATH)


def reduce_embedding(vector) -> list[float]:
    return _default_projection().transform(vector)
