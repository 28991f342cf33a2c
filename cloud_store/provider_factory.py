"""
Factory for creating storage provider instances.

Simplifies provider selection and initialization.
"""

import logging
from typing import Optional

from shared.constants import (
    AWS_S3_ENDPOINT_TEMPLATE,
    BACKBLAZE_B2_ENDPOINT_TEMPLATE,
    CLOUDFLARE_R2_ENDPOINT_TEMPLATE,
)
from shared.errors import BackendUnavailable
from shared.models import DeskConfig, StorageProvider
from .storage_provider import S3StorageProvider
from .s3_provider import S3CompatibleProvider
from .local_provider import LocalStorageProvider

logger = logging.getLogger(__name__)


class StorageProviderFactory:
    """Factory for creating storage provider instances."""

    @staticmethod
    def create(provider_type: StorageProvider, region: Optional[str] = None) -> S3StorageProvider:
        """
        Create an unauthenticated provider instance.

        Raises:
            ValueError: If provider type is not supported
        """
        if provider_type == StorageProvider.LOCAL:
            return LocalStorageProvider()

        if provider_type == StorageProvider.CLOUDFLARE_R2:
            return S3CompatibleProvider(region_name='auto')

        if provider_type in (StorageProvider.BACKBLAZE_B2, StorageProvider.AWS_S3,
                             StorageProvider.GENERIC_S3):
            return S3CompatibleProvider(region_name=region or 'us-east-1')

        raise ValueError(f"Unknown provider type: {provider_type}")

    @staticmethod
    def resolve_endpoint(config: DeskConfig) -> Optional[str]:
        """
        Full endpoint URL for a config. R2 accepts a bare account id, B2 and
        S3 fall back to their regional endpoints.
        """
        endpoint = (config.endpoint or "").strip()
        provider = config.provider

        if provider == StorageProvider.LOCAL:
            return endpoint
        if provider == StorageProvider.CLOUDFLARE_R2 and endpoint and "://" not in endpoint:
            return CLOUDFLARE_R2_ENDPOINT_TEMPLATE.format(account_id=endpoint)
        if endpoint:
            return endpoint
        if provider == StorageProvider.BACKBLAZE_B2 and config.region:
            return BACKBLAZE_B2_ENDPOINT_TEMPLATE.format(region=config.region)
        if provider == StorageProvider.AWS_S3 and config.region:
            return AWS_S3_ENDPOINT_TEMPLATE.format(region=config.region)
        if provider == StorageProvider.AWS_S3:
            return None
        raise ValueError(f"{StorageProviderFactory.get_provider_name(provider)} needs an endpoint")

    @staticmethod
    def from_config(config: DeskConfig) -> S3StorageProvider:
        """
        Create and authenticate the provider a config describes.

        Raises:
            BackendUnavailable: If authentication fails
        """
        provider = StorageProviderFactory.create(config.provider, config.region)
        credentials = {
            'endpoint': StorageProviderFactory.resolve_endpoint(config),
            'bucket': config.bucket,
            'access_key_id': config.access_key_id,
            'secret_access_key': config.secret_access_key,
            'region': config.region,
        }
        if not provider.authenticate(credentials):
            name = StorageProviderFactory.get_provider_name(config.provider)
            raise BackendUnavailable(f"Could not authenticate with {name}")
        logger.debug(f"Authenticated {config.provider.value} provider, bucket {config.bucket}")
        return provider

    @staticmethod
    def get_provider_name(provider_type: StorageProvider) -> str:
        """Get human-readable provider name."""
        names = {
            StorageProvider.CLOUDFLARE_R2: "Cloudflare R2",
            StorageProvider.BACKBLAZE_B2: "Backblaze B2",
            StorageProvider.AWS_S3: "Amazon S3",
            StorageProvider.GENERIC_S3: "Generic S3-Compatible",
            StorageProvider.LOCAL: "Local Folder",
        }
        return names.get(provider_type, "Unknown")
