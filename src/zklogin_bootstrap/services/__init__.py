# src/zklogin_bootstrap/services/__init__.py
"""Protocol services for the zkLogin bootstrap flow."""

from .addresses import AddressResolver
from .binder import SessionBinder
from .login import LoginFlow, SignInResult, require_active_session
from .nonce import NonceDeriver
from .oauth import GoogleOAuthProvider, TokenExchanger
from .proof_client import ProofServiceClient
from .rpc import SuiRpcClient
from .session_store import SessionStore
from .sponsor import TransactionSponsor

__all__ = [
    "AddressResolver",
    "GoogleOAuthProvider",
    "LoginFlow",
    "NonceDeriver",
    "ProofServiceClient",
    "SessionBinder",
    "SessionStore",
    "SignInResult",
    "SuiRpcClient",
    "TokenExchanger",
    "TransactionSponsor",
    "require_active_session",
]
