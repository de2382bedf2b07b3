import argparse
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]
sys.path.append(str(BASE_DIR))

from backend.db import SupabaseStore
from backend.embeddings import EMBEDDING_DIM
from backend.pca import PCA_DIM, PCA_MIN_SAMPLES, PCA_MODEL_PATH, ProjectionError, fit_projection


def main() -> int:
    parser = argparse.ArgumentParser(description="Fit the embedding PCA projection from stored articles.")
    parser.add_argument("--limit", type=int, default=5000, help="Max embeddings to sample")
    parser.add_argument("--out", default=PCA_MODEL_PATH, help="Output .npz path")
    args = parser.parse_args()

    store = SupabaseStore()
    samples = [e for e in store.sample_embeddings(args.limit) if isinstance(e, list) and len(e) == EMBEDDING_DIM]
    print(f"PCA_SAMPLES valid={len(samples)} dim={EMBEDDING_DIM}")
    needed = max(PCA_MIN_SAMPLES, PCA_DIM)
    if len(samples) < needed:
        print(f"Need at least {needed} embeddings of length {EMBEDDING_DIM}.")
        return 1

    try:
        projection = fit_projection(samples, n_components=PCA_DIM)
    except ProjectionError as e:
        print(f"PCA_FIT_FAIL err={e}")
        return 1
    projection.save(args.out)
    print(f"PCA_SAVED path={args.out} components={projection.output_dim} input_dim={projection.input_dim}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
