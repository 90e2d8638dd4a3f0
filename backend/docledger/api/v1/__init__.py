# API v1 Package
from docledger.api.v1 import documents, processing, storage, accounting, banking, sales, reports

__all__ = [
    'documents',
    'processing',
    'storage',
    'accounting',
    'banking',
    'sales',
    'reports',
]
