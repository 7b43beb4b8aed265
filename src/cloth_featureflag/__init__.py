"""cloth featureflag library."""

from .auth import (
    AnyOfAuthorizer,
    Authorizer,
    BearerTokenAuthorizer,
    Credentials,
    DenyAllAuthorizer,
    StaticCredentialAuthorizer,
)
from .client import FeatureFlagClientProtocol
from .evaluator import decide
from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .hashing import bucket, hash_string
from .http_client import FeatureFlagClientConfig, HttpFeatureFlagClient
from .models import (
    EvaluationContext,
    EvaluationResult,
    EvaluationStrategy,
    Flag,
    FlagMetadata,
    PercentageStrategy,
    SimpleStrategy,
    StrategyType,
    UserSegmentStrategy,
    strategy_from_dict,
)
from .registry import FlagRegistry, InMemoryFlagRegistry
from .service import FlagService

__all__ = [
    "AnyOfAuthorizer",
    "Authorizer",
    "BearerTokenAuthorizer",
    "Credentials",
    "DenyAllAuthorizer",
    "EvaluationContext",
    "EvaluationResult",
    "EvaluationStrategy",
    "FeatureFlagClientConfig",
    "FeatureFlagClientProtocol",
    "FeatureFlagError",
    "FeatureFlagErrorCodes",
    "Flag",
    "FlagMetadata",
    "FlagRegistry",
    "FlagService",
    "HttpFeatureFlagClient",
    "InMemoryFlagRegistry",
    "PercentageStrategy",
    "SimpleStrategy",
    "StrategyType",
    "UserSegmentStrategy",
    "bucket",
    "decide",
    "hash_string",
    "strategy_from_dict",
]
