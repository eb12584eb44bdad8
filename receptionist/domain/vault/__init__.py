from .cipher import CredentialVault, EnvKeyProvider, KeyProvider, StaticKeyProvider
from .service import CredentialStore

__all__ = ["CredentialStore", "CredentialVault", "EnvKeyProvider", "KeyProvider", "StaticKeyProvider"]
