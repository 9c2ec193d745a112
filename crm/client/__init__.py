"""
CRM API client: HTTP wrapper, query cache and cached entity resources.
"""

from crm.client.cache import QueryCache
from crm.client.http import CrmApiError, CrmClient
from crm.client.resources import EntityResource, create_entity_resource

__all__ = [
    "CrmApiError",
    "CrmClient",
    "EntityResource",
    "QueryCache",
    "create_entity_resource",
]
