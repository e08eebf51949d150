from .client import IMAPClient, SessionState
from .connection import IMAPConnection
from .protocol import IMAPProtocol, TagGenerator

__all__ = ['IMAPClient', 'SessionState', 'IMAPConnection', 'IMAPProtocol', 'TagGenerator']
