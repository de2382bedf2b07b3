import re
import sys

import requests
from requests.exceptions import RequestException

from backend.config import get_int, get_str

EXPO_PUSH_URL = get_str("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send")
PUSH_TIMEOUT = get_int("PUSH_TIMEOUT", 15) or 15
PUSH_CHUNK_SIZE = 100

EXPO_TOKEN_RE = re.compile(r"^(?:ExponentPushToken|ExpoPushToken)\[.+\]$")


def is_push_token(token) -> bool:
    return isinstance(token, str) and bool(EXPO_TOKEN_RE.match(token))


def _chunks(items: list, size: int):
    for i in range(0, len(items), size):
        yield items[i : i + size]


def send_push(
    title: str,
    body: str,
    tokens: list[str],
    data: dict | None = None,
    image_url: str | None = None,
    actions: list[dict] | None = None,
) -> dict:
    """Send one message to many Expo push tokens.

    Returns {"sent": n, "failed": n, "skipped": n}; a failed chunk is logged
    and counted, the remaining chunks are still sent.
    """
    valid = [t for t in dict.fromkeys(tokens or []) if is_push_token(t)]
    result = {"sent": 0, "failed": 0, "skipped": len(tokens or []) - len(valid)}
    if not valid:
        return result

    headers = {"Accept": "application/json", "Content-Type": "application/json"}
    access_token = get_str("EXPO_ACCESS_TOKEN")
    if access_token:
        headers["Authorization"] = f"Bearer {access_token}"

    payload_data = dict(data or {})
    if image_url:
        payload_data["imageUrl"] = image_url
    if actions:
        payload_data["actions"] = actions

    for chunk in _chunks(valid, PUSH_CHUNK_SIZE):
        messages = [
            {
                "to": token,
                "sound": "default",
                "title": title,
                "body": body,
                "data": payload_data,
                **({"richContent": {"image": image_url}} if image_url else {}),
            }
            for token in chunk
        ]
        try:
            r = requests.post(EXPO_PUSH_URL, json=messages, headers=headers, timeout=(10, PUSH_TIMEOUT))
            r.raise_for_status()
        except RequestException as e:
            print(f"PUSH_CHUNK_FAIL size={len(chunk)} err={type(e).__name__}", file=sys.stderr)
            result["failed"] += len(chunk)
            continue
        result["sent"] += len(chunk)
    return result
