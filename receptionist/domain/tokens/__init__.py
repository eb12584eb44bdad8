from .service import AuthResult, ClientMeta, SessionTokens, TokenIssuer

__all__ = ["AuthResult", "ClientMeta", "SessionTokens", "TokenIssuer"]
