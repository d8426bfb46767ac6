from typing import Optional

from rest_framework.authentication import get_authorization_header

BEARER_KEYWORD = b"bearer"


def parse_bearer_token(authorization_header: bytes) -> Optional[str]:
    """
    Extract the token from an ``Authorization: Bearer <token>`` header.

    Returns None when the header is missing, uses another scheme, does not
    carry exactly one token, or the token is not valid UTF-8.
    """
    auth = authorization_header.split()
    if not auth or auth[0].lower() != BEARER_KEYWORD:
        return None
    if len(auth) != 2:
        return None

    try:
        return auth[1].decode()
    except UnicodeError:
        return None


def bearer_token_from_request(request) -> Optional[str]:
    return parse_bearer_token(get_authorization_header(request))
