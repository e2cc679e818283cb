from .tenancy import Organization, SubscriptionExtension
from .auth import Membership, SessionToken
from .security import SecurityEvent

__all__ = [
    'Organization', 'SubscriptionExtension',
    'Membership', 'SessionToken',
    'SecurityEvent',
]
