import sys

from backend.config import get_int
from backend.embeddings import embed_text
from backend.pca import PCA_DIM, reduce_embedding

EMBED_CONTENT_CHARS = get_int("EMBED_CONTENT_CHARS", 512) or 512


def embedding_input(title: str, content: str) -> str:
    return f"{title or ''}\n\n{(content or '')[:EMBED_CONTENT_CHARS]}"


def enrich(title: str, content: str, *, embedder=None, reducer=None) -> tuple[list[float], list[float] | None]:
    """Returns (embedding, embedding_pca).

    Never raises: a failed embedding gives ([], None), and a failed or
    wrong-sized projection gives (embedding, None).
    """
    embedder = embedder or embed_text
    reducer = reducer or reduce_embedding

    try:
        embedding = [float(x) for x in embedder(embedding_input(title, content))]
    except Exception as e:
        print(f"EMBED_FAIL err={type(e).__name__}:{str(e)[:200]}", file=sys.stderr)
        return [], None
    if not embedding:
        return [], None

    try:
        reduced = [float(x) for x in reducer(embedding)]
    except Exception as e:
        print(f"PCA_FAIL err={type(e).__name__}:{str(e)[:200]}", file=sys.stderr)
        return embedding, None
    if len(reduced) != PCA_DIM:
        print(f"PCA_SKIP reason=dim got={len(reduced)} want={PCA_DIM}")
        return embedding, None
    return embedding, reduced
