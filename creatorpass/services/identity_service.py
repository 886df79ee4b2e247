"""Resolves bearer tokens issued by the identity service into principals."""

import logging
from typing import Optional

import jwt

from ..domain.errors import InvalidArgument
from ..domain.models import Principal, Role

logger = logging.getLogger(__name__)


class IdentityService:
    """Verifies HS256 tokens carrying ``sub`` and ``role`` claims.

    Token issuance lives in the authentication subsystem; this service only
    checks signatures and expiry.
    """

    def __init__(self, token_secret: str, algorithm: str = "HS256") -> None:
        if not token_secret:
            raise RuntimeError("PRINCIPAL_TOKEN_SECRET is not configured.")
        if token_secret == "change-me":
            logger.warning("PRINCIPAL_TOKEN_SECRET is using the default value. Configure a secure secret in production.")
        self._secret = token_secret
        self._algorithm = algorithm

    def verify_token(self, token: str) -> Optional[Principal]:
        """
        Verify a bearer token.

        Args:
            token: Encoded JWT

        Returns:
            The principal, or None if the token is invalid or expired
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

        subject = payload.get("sub")
        if not subject:
            return None
        try:
            role = Role.parse(payload.get("role") or Role.VIEWER)
        except InvalidArgument:
            return None
        return Principal(id=str(subject), role=role)
