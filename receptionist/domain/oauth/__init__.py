from .service import (
    DecodedState,
    OAuthTokens,
    SellerMetadata,
    build_authorization_url,
    build_state,
    decode_state,
    encode_state,
    exchange_code_for_tokens,
    fetch_seller_metadata,
)

__all__ = [
    "DecodedState",
    "OAuthTokens",
    "SellerMetadata",
    "build_authorization_url",
    "build_state",
    "decode_state",
    "encode_state",
    "exchange_code_for_tokens",
    "fetch_seller_metadata",
]
