from .client import LoginStage, SessionAcquirer, UrlVerificationPolicy, validate_credentials
from .selectors import PortalSelectors

__all__ = ["LoginStage", "PortalSelectors", "SessionAcquirer", "UrlVerificationPolicy", "validate_credentials"]
