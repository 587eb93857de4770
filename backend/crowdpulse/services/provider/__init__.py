from .client import PredictionProviderClient
from .exceptions import (
    ProviderError,
    ProviderHTTPError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from .models import (
    GateInfo,
    PredictionRequest,
    ProviderHealth,
    ProviderPrediction,
)

__all__ = [
    "PredictionProviderClient",
    "ProviderError",
    "ProviderHTTPError",
    "ProviderResponseError",
    "ProviderTimeoutError",
    "GateInfo",
    "PredictionRequest",
    "ProviderHealth",
    "ProviderPrediction",
]
