"""Credit-bureau provider clients."""

from typing import Dict, Type

from lhamascred.providers.base import (
    PROVIDER_CREDENTIAL_FIELDS,
    ProviderClient,
    ProviderError,
    ProviderItem,
    Submission,
)
from lhamascred.providers.c6 import C6Client
from lhamascred.providers.facta import FactaClient
from lhamascred.providers.v8 import V8Client, V8_SUB_PROVIDERS

PROVIDERS: Dict[str, Type[ProviderClient]] = {
    "v8": V8Client,
    "facta": FactaClient,
    "c6": C6Client,
}

__all__ = [
    "PROVIDERS",
    "PROVIDER_CREDENTIAL_FIELDS",
    "ProviderClient",
    "ProviderError",
    "ProviderItem",
    "Submission",
    "V8Client",
    "FactaClient",
    "C6Client",
    "V8_SUB_PROVIDERS",
]
