"""Temporal client factory.

Connects to a local Temporal server or to Temporal Cloud, depending on
whether an API key is configured.
"""

import ssl
from typing import Optional

from temporalio.client import Client

from config import get_settings


async def get_temporal_client() -> Client:
    """Create and return a Temporal client.

    Reads configuration from settings:
    - TEMPORAL_ENDPOINT: server address (default "localhost:7233")
    - TEMPORAL_NAMESPACE: namespace (default "default")
    - TEMPORAL_API_KEY: Temporal Cloud API key; enables TLS when set

    Returns:
        Connected Temporal client

    Raises:
        ValueError: If the endpoint is empty
    """
    settings = get_settings()

    if not settings.temporal_endpoint:
        raise ValueError(
            "TEMPORAL_ENDPOINT is empty. "
            "Set it to your Temporal server address (e.g., 'localhost:7233')"
        )

    if not settings.temporal_api_key:
        return await Client.connect(
            settings.temporal_endpoint,
            namespace=settings.temporal_namespace,
        )

    # Temporal Cloud: system certificates plus API key
    tls_config: Optional[ssl.SSLContext] = ssl.create_default_context()
    return await Client.connect(
        target_host=settings.temporal_endpoint,
        namespace=settings.temporal_namespace,
        tls=tls_config,
        api_key=settings.temporal_api_key,
    )
