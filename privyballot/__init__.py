"""
PrivyBallot Client Package

Confidential proposal sync and reveal engine. Core imports are lazily loaded
so the CLI and config layer start without pulling in the ledger stack.
For direct module access, import from submodules:

    from privyballot.session import BallotSession
    from privyballot.config import load_config
    from privyballot.exceptions import LedgerRejection
"""

__version__ = "0.1.0"


# Lazy imports to avoid loading everything at package import
def __getattr__(name):
    """Lazy module loading of the public entry points."""
    if name == 'BallotSession':
        from .session import BallotSession
        return BallotSession
    elif name == 'load_config':
        from .config import load_config
        return load_config
    elif name == 'PrivyBallotException':
        from .exceptions import PrivyBallotException
        return PrivyBallotException
    raise AttributeError(f"module 'privyballot' has no attribute {name!r}")

__all__ = ['BallotSession', 'load_config', 'PrivyBallotException', '__version__']
