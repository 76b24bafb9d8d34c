"""
Token Registry.
Static symbol -> mint lookup for the tokens the bot can move.
"""

from dataclasses import dataclass
from typing import Dict, List

from .errors import UnsupportedToken

NATIVE_SYMBOL = "SOL"


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    mint_address: str
    decimals: int

    @property
    def is_native(self) -> bool:
        return self.symbol == NATIVE_SYMBOL


TOKEN_REGISTRY: Dict[str, TokenInfo] = {
    t.symbol: t
    for t in (
        # Wrapped SOL mint; transfers of the native asset use the SOL path, not this mint.
        TokenInfo("SOL", "So11111111111111111111111111111111111111112", 9),
        TokenInfo("USDC", "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", 6),
        TokenInfo("USDT", "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB", 6),
        TokenInfo("BTC", "9n4nbM75f5Ui33ZbPYXn59EwSgE8CGsHtAeTH5YFeJ9E", 6),
        TokenInfo("ETH", "2FPyTwcZLUg1MDrwsyoP4D6s1tM7hAkHYRjkNb5w6Pxk", 6),
        TokenInfo("SRM", "SRMuApVNdxXokk5GT7XD5cUUgXMBCoAz2LHeuAoKWRt", 6),
        TokenInfo("BONK", "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263", 5),
    )
}


def supported_tokens() -> List[str]:
    return list(TOKEN_REGISTRY.keys())


def get_token_info(symbol: str) -> TokenInfo:
    """Resolve a symbol (case-insensitive). Raises UnsupportedToken."""
    info = TOKEN_REGISTRY.get((symbol or "").strip().upper())
    if info is None:
        raise UnsupportedToken(symbol, supported_tokens())
    return info
