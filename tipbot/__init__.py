"""
SolTip chat connector.
Routes chat commands from Telegram, Discord and Twitter to a custodial wallet service.
"""

__version__ = "1.0.0"
