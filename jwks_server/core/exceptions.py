class KeyManagerError(Exception):
    """Base key lifecycle error."""
    pass

class KeyIdCollisionError(KeyManagerError):
    """A freshly minted kid is already tracked by the manager."""
    pass

class NoActiveKeyError(KeyManagerError):
    """No unexpired active key could be produced."""
    pass

class TokenError(Exception):
    """Base token error."""
    pass

class TokenExpiredError(TokenError):
    """Token has expired."""
    pass

class InvalidTokenError(TokenError):
    """Token is invalid."""
    pass

class TokenIssueError(Exception):
    """Signing a token for a request failed."""
    pass
