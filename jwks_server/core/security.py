from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import jwt
from jwt.algorithms import RSAAlgorithm
from cryptography.hazmat.primitives.asymmetric import rsa

from jwks_server.core.exceptions import TokenExpiredError, InvalidTokenError

ALGORITHM = "RS256"

def generate_rsa_keypair(key_size: int = 2048) -> Tuple[rsa.RSAPublicKey, rsa.RSAPrivateKey]:
    """
    Generates an RSA keypair in memory. CPU bound, callers on the event loop
    should run it in a worker thread.
    """
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )
    return private_key.public_key(), private_key

def public_key_to_jwk(public_key: rsa.RSAPublicKey) -> Dict[str, Any]:
    """Exports the public half as a bare JWK: kty, n and e only."""
    exported = RSAAlgorithm.to_jwk(public_key, as_dict=True)
    return {
        "kty": exported.get("kty", "RSA"),
        "n": exported["n"],
        "e": exported["e"],
    }

def create_token(
    claims: Dict[str, Any],
    kid: str,
    private_key: rsa.RSAPrivateKey,
    issued_at: datetime,
    expires_at: datetime,
) -> str:
    """
    Signs a compact RS256 JWT. The expiry is taken as given, so a past
    `expires_at` produces a token that is already expired.
    """
    to_encode = dict(claims)
    to_encode["iat"] = issued_at
    to_encode["exp"] = expires_at

    return jwt.encode(
        to_encode,
        private_key,
        algorithm=ALGORITHM,
        headers={"kid": kid}
    )

def find_jwk(jwks: Dict[str, Any], kid: Optional[str]) -> Optional[Dict[str, Any]]:
    for jwk_dict in jwks.get("keys", []):
        if jwk_dict.get("kid") == kid:
            return jwk_dict
    return None

def decode_token(token: str, jwks: Dict[str, Any], verify_exp: bool = True) -> Dict[str, Any]:
    """
    Verifies a token against a JWK Set, selecting the key by the `kid` header.
    """
    try:
        header = jwt.get_unverified_header(token)
    except jwt.PyJWTError as e:
        raise InvalidTokenError(f"Malformed token: {str(e)}")

    jwk_dict = find_jwk(jwks, header.get("kid"))
    if jwk_dict is None:
        raise InvalidTokenError(f"No key found for kid {header.get('kid')!r}")

    try:
        public_key = jwt.PyJWK(jwk_dict, algorithm=ALGORITHM).key
        return jwt.decode(
            token,
            public_key,
            algorithms=[ALGORITHM],
            options={"verify_exp": verify_exp}
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpiredError("Token has expired")
    except jwt.PyJWTError as e:
        raise InvalidTokenError(f"Could not validate token: {str(e)}")
