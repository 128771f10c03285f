from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.session_secret, salt="budgetbox-session")


def issue_session_token(user_id: str) -> str:
    if not user_id:
        raise ValueError("User id is required")
    return _serializer().dumps({"u": user_id})


def current_user_id(token: Optional[str]) -> Optional[str]:
    """Resolve the signed-in user for ``token``, or None if it is not valid."""
    if not token:
        return None
    settings = get_settings()
    try:
        data = _serializer().loads(
            token, max_age=settings.session_max_age_hours * 3600
        )
    except BadSignature:
        return None

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, str) or not user_id:
        return None
    return user_id
