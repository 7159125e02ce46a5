# API v1 Package
from facility_ledger.api.v1 import webhooks

__all__ = [
    'webhooks',
]
