"""HTTP client for the cloud REST API.

Example::

    from cloudtop.client import CloudClient

    async with CloudClient(config.cloud_url, credential=cred) as client:
        projects = await client.list_projects()
"""

from cloudtop.client.cloud_client import CloudClient

__all__ = ["CloudClient"]
