from backend.config import get_str
from backend.push import send_push

SNIPPET_CHARS = 140
DEEP_LINK_SCHEME = get_str("DEEP_LINK_SCHEME", "gulfio")
NOTIFY_ACTIONS = [
    {"actionId": "view", "buttonTitle": "Read Article"},
    {"actionId": "dismiss", "buttonTitle": "Dismiss"},
]


def build_snippet(content: str, limit: int = SNIPPET_CHARS) -> str:
    text = content or ""
    if len(text) > limit:
        return text[:limit].strip() + "…"
    return text


def wants_notification(user: dict, category: str | None) -> bool:
    settings = user.get("notification_settings") or {}
    if not settings.get("newsNotifications"):
        return False
    if category == "headline" and not settings.get("breakingNews"):
        return False
    return True


def notify_new_article(article: dict, recipients: list[dict], sender=None) -> int:
    """Fan one new article out to the recipients whose settings allow it.

    `article` is the inserted row. Returns the number of tokens handed to
    the push gateway.
    """
    sender = sender or send_push
    category = article.get("category")
    tokens = [
        u.get("push_token")
        for u in recipients
        if u.get("push_token") and wants_notification(u, category)
    ]
    if not tokens:
        print("NOTIFY_SKIP reason=no_eligible_recipients")
        return 0

    images = article.get("image") or []
    result = sender(
        article.get("title") or "",
        build_snippet(article.get("content") or ""),
        tokens,
        data={"link": f"{DEEP_LINK_SCHEME}://article/{article.get('id')}"},
        image_url=images[0] if images else None,
        actions=NOTIFY_ACTIONS,
    )
    print(
        f"NOTIFY_SENT article_id={article.get('id')} recipients={len(tokens)} "
        f"result={result}"
    )
    return len(tokens)
