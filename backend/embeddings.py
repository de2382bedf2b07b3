import requests
from requests.exceptions import RequestException

from backend.config import get_bool, get_int, get_str

EMBEDDINGS_URL = get_str("EMBEDDINGS_URL", "https://api.openai.com/v1/embeddings")
EMBEDDINGS_MODEL = get_str("EMBEDDINGS_MODEL", "text-embedding-3-small")
EMBEDDINGS_TIMEOUT = get_int("EMBEDDINGS_TIMEOUT", 30) or 30
EMBEDDINGS_DISABLE = get_bool("EMBEDDINGS_DISABLE", False)
EMBEDDING_DIM = get_int("EMBEDDING_DIM", 1536) or 1536


class EmbeddingError(RuntimeError):
    pass


def embed_text(text: str) -> list[float]:
    """Embed one text through an OpenAI-compatible /embeddings endpoint."""
    if EMBEDDINGS_DISABLE:
        raise EmbeddingError("disabled")
    api_key = get_str("OPENAI_API_KEY")
    if not api_key:
        raise EmbeddingError("OPENAI_API_KEY missing")
    payload = {"model": EMBEDDINGS_MODEL, "input": text}
    try:
        r = requests.post(
            EMBEDDINGS_URL,
            json=payload,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=(10, EMBEDDINGS_TIMEOUT),
        )
        r.raise_for_status()
        data = r.json()
    except RequestException as e:
        raise EmbeddingError(f"request_failed:{type(e).__name__}") from e
    except ValueError as e:
        raise EmbeddingError("bad_json") from e

    try:
        vector = data["data"][0]["embedding"]
    except (KeyError, IndexError, TypeError) as e:
        raise EmbeddingError("malformed_response") from e
    if not isinstance(vector, list) or len(vector) != EMBEDDING_DIM:
        raise EmbeddingError(f"unexpected_dim:{len(vector) if isinstance(vector, list) else 'none'}")
    return [float(x) for x in vector]
