"""HTTP clients for external collaborators and platform signing."""

from bounty_market_service.clients.company_registry_client import CompanyRegistryClient
from bounty_market_service.clients.identity_client import IdentityClient
from bounty_market_service.clients.payment_client import PaymentClient
from bounty_market_service.clients.platform_signer import PlatformSigner
from bounty_market_service.clients.profile_client import ProfileClient

__all__ = [
    "CompanyRegistryClient",
    "IdentityClient",
    "PaymentClient",
    "PlatformSigner",
    "ProfileClient",
]
