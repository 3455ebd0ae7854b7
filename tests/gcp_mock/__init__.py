"""In-memory Cloud Resource Provider for reconciliation tests.

Key Features:
- In-memory resource set keyed by step key (``kind/name``)
- Creation sequence numbers for ordering assertions
- Call log for fail-fast and idempotence assertions
- Error injection per step key

Usage:
    from gcp_mock import FakeCloudProvider

    provider = FakeCloudProvider(project_number="123456789012")
    report = Reconciler(config, provider).run()

    assert provider.created_sequence("kms-keyring/stig-artifacts") < provider.created_sequence(
        "kms-key/storage-key"
    )
"""

from .provider import FakeCloudProvider, FakeResource, ProviderCall

__all__ = [
    "FakeCloudProvider",
    "FakeResource",
    "ProviderCall",
]
