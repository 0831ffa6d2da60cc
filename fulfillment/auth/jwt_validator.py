"""
Auth0 access-token verification against the tenant's JWKS
"""
import jwt
from jwt import PyJWKClient
import logging
from typing import Dict, Optional
from fastapi import HTTPException, status
from fulfillment.config import settings

logger = logging.getLogger(__name__)

ACCOUNT_TYPES = {"CUSTOMER", "ADMIN"}


def _reject(status_code: int, detail: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    )


class JWTValidator:
    """Verifies RS256 tokens and maps their claims onto the caller dict the API uses.

    Shoppers are CUSTOMER unless the token says ADMIN; guests send no token at
    all and never reach this class.
    """

    def __init__(
        self,
        domain: Optional[str] = None,
        audience: Optional[str] = None,
        claims_namespace: Optional[str] = None,
        jwks_client=None,
    ):
        self.domain = domain or settings.auth0_domain
        self.audience = audience or settings.auth0_audience
        self.claims_namespace = claims_namespace or settings.auth_claims_namespace
        self.issuer = f"https://{self.domain}/"
        self.jwks_url = f"https://{self.domain}/.well-known/jwks.json"
        self._jwks_client = jwks_client

    @property
    def jwks_client(self):
        # Built lazily so an unconfigured service can still start
        if self._jwks_client is None:
            self._jwks_client = PyJWKClient(self.jwks_url, cache_keys=True, max_cached_keys=10)
        return self._jwks_client

    def verify_token(self, token: str) -> Dict:
        if not self.domain:
            logger.error("AUTH0_DOMAIN is not configured, rejecting token")
            raise _reject(status.HTTP_503_SERVICE_UNAVAILABLE, "Authentication service unavailable")

        try:
            signing_key = self.jwks_client.get_signing_key_from_jwt(token)
        except jwt.PyJWKClientError as e:
            logger.error(f"Could not get a signing key from {self.jwks_url}: {e}")
            raise _reject(status.HTTP_503_SERVICE_UNAVAILABLE, "Authentication service unavailable")
        except jwt.InvalidTokenError as e:
            logger.warning(f"Malformed bearer token: {e}")
            raise _reject(status.HTTP_401_UNAUTHORIZED, "Invalid authentication credentials")

        try:
            return jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_aud": bool(self.audience), "require": ["exp", "sub"]}
            )
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired token")
            raise _reject(status.HTTP_401_UNAUTHORIZED, "Token has expired")
        except jwt.InvalidTokenError as e:
            logger.warning(f"JWT verification failed: {e}")
            raise _reject(status.HTTP_401_UNAUTHORIZED, "Invalid authentication credentials")

    def claims_to_user(self, payload: Dict) -> Dict:
        """Pull the caller out of a verified token; namespaced claims win over standard ones"""
        ns = self.claims_namespace
        account_type = str(payload.get(ns + "account_type") or "CUSTOMER").upper()
        if account_type not in ACCOUNT_TYPES:
            logger.warning(f"Unknown account_type {account_type!r} for {payload.get('sub')}, treating as CUSTOMER")
            account_type = "CUSTOMER"

        email = payload.get(ns + "email") or payload.get("email")
        return {
            "user_id": payload.get(ns + "user_id") or payload.get("sub"),
            "email": email.strip().lower() if email else None,
            "account_type": account_type,
            "payload": payload,
        }


jwt_validator = JWTValidator()
