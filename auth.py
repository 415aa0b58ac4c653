import hmac
import uuid
from typing import Optional, Sequence

import jwt

from errors import AuthFailure, ConfigurationError
from logging_config import get_logger

logger = get_logger(__name__)

IDENTITY_CLAIMS = ("id", "sub")


class Authenticator:
    """Decides whether a connecting client is admitted and which identity it gets.

    Two strategies are tried in order: an exact match against the shared
    static token (which yields a fresh random identity), then verification
    of a signed JWT (which yields the identity carried in its claims).
    """

    def __init__(
        self,
        static_token: Optional[str] = None,
        jwt_secret: Optional[str] = None,
        jwt_algorithms: Sequence[str] = ("HS256",),
    ):
        if not static_token and not jwt_secret:
            raise ConfigurationError("No authentication configured: set STATIC_TOKEN and/or JWT_SECRET")
        self.static_token = static_token or None
        self.jwt_secret = jwt_secret or None
        self.jwt_algorithms = list(jwt_algorithms)
        logger.info(
            f"Authenticator ready (static_token={'on' if self.static_token else 'off'}, "
            f"jwt={'on' if self.jwt_secret else 'off'})"
        )

    def authenticate(self, token: Optional[str]) -> str:
        """Return the identity for ``token`` or raise AuthFailure."""
        if not token:
            raise AuthFailure("Missing credential")

        if self.static_token and hmac.compare_digest(token.encode("utf-8"), self.static_token.encode("utf-8")):
            identity = uuid.uuid4().hex
            logger.debug(f"Static credential accepted, assigned identity {identity}")
            return identity

        if self.jwt_secret:
            return self._verify_jwt(token)

        raise AuthFailure("Credential rejected")

    def _verify_jwt(self, token: str) -> str:
        try:
            claims = jwt.decode(token, self.jwt_secret, algorithms=self.jwt_algorithms)
        except jwt.PyJWTError as e:
            logger.debug(f"JWT verification failed: {e}")
            raise AuthFailure("Invalid token") from e

        for claim in IDENTITY_CLAIMS:
            value = claims.get(claim)
            if value is not None and str(value) != "":
                return str(value)
        raise AuthFailure("Token carries no identity claim")
