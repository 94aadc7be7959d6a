#!/usr/bin/env python3
"""
Verify tokens issued by a running JWKS server.

Fetches a token from POST /auth (optionally ?expired), fetches the published
key set and checks the token the way an external verifier would.
"""
import argparse
import asyncio
import sys

import httpx
import jwt

# Adjust path to include jwks_server
sys.path.append(".")

from jwks_server.core.exceptions import TokenExpiredError, TokenError
from jwks_server.core.security import decode_token, find_jwk

async def verify_token(base_url: str, expired: bool) -> int:
    async with httpx.AsyncClient(base_url=base_url) as client:
        params = {"expired": "1"} if expired else None
        response = await client.post("/auth", params=params)
        response.raise_for_status()
        issued = response.json()

        jwks = (await client.get("/.well-known/jwks.json")).json()

    token = issued["token"]
    kid = jwt.get_unverified_header(token).get("kid")
    published = find_jwk(jwks, kid) is not None

    print("=" * 60)
    print("Token Verification")
    print("=" * 60)
    print(f"kid:          {kid}")
    print(f"expiresAt:    {issued['expiresAt']}")
    print(f"expired flag: {issued['expired']}")
    print(f"kid in JWKS:  {published}")

    try:
        payload = decode_token(token, jwks)
        print(f"Result:       VALID (sub={payload.get('sub')})")
        return 0 if not expired else 1
    except TokenExpiredError as e:
        print(f"Result:       EXPIRED ({e})")
    except TokenError as e:
        print(f"Result:       REJECTED ({e})")

    # An expired-key token is expected to be rejected
    return 0 if expired else 1

def main():
    parser = argparse.ArgumentParser(description="Fetch and verify a token from a JWKS server")
    parser.add_argument("--url", default="http://localhost:8080", help="Base URL of the server")
    parser.add_argument("--expired", action="store_true", help="Request a token signed by an expired key")

    args = parser.parse_args()

    sys.exit(asyncio.run(verify_token(args.url, args.expired)))

if __name__ == "__main__":
    main()
