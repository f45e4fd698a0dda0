"""
chatstream - Provider Profiles

Per-provider settings the stream pipeline needs: which normalizer to use,
how usage snapshots combine, and whether finish is deferred to stream end.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from ..core.models import Provider, UsagePolicy
from .merger import DeltaMerger
from .normalizer import (
    CHAT_COMPLETIONS_PROVIDERS,
    EventNormalizer,
    get_normalizer,
)


class Dialect(str, Enum):
    """Stream event taxonomies."""
    CHAT_COMPLETIONS = "chat_completions"
    EVENT_TAGGED = "event_tagged"
    BLOCK_TAGGED = "block_tagged"
    PER_CANDIDATE = "per_candidate"


@dataclass(frozen=True)
class ProviderProfile:
    """How to decode one provider's stream."""
    name: str
    dialect: Dialect
    usage_policy: UsagePolicy = UsagePolicy.REPLACE
    defer_finish: bool = False

    @property
    def normalizer(self) -> EventNormalizer:
        return get_normalizer(self.name)

    def create_merger(self, usage_policy: Optional[UsagePolicy] = None) -> DeltaMerger:
        """Create a fresh merger for one attempt."""
        return DeltaMerger(
            provider=self.name,
            usage_policy=usage_policy or self.usage_policy,
            defer_finish=self.defer_finish,
        )


PROVIDER_PROFILES: Dict[str, ProviderProfile] = {
    **{
        p.value: ProviderProfile(name=p.value, dialect=Dialect.CHAT_COMPLETIONS)
        for p in CHAT_COMPLETIONS_PROVIDERS
    },
    Provider.OPENAI_RESPONSES.value: ProviderProfile(
        name=Provider.OPENAI_RESPONSES.value,
        dialect=Dialect.EVENT_TAGGED,
    ),
    # message_start reports input tokens, message_delta reports output tokens
    Provider.ANTHROPIC.value: ProviderProfile(
        name=Provider.ANTHROPIC.value,
        dialect=Dialect.BLOCK_TAGGED,
        usage_policy=UsagePolicy.MERGE_FIELDS,
    ),
    Provider.GOOGLE.value: ProviderProfile(
        name=Provider.GOOGLE.value,
        dialect=Dialect.PER_CANDIDATE,
        defer_finish=True,
    ),
}


def get_provider_profile(provider: str) -> ProviderProfile:
    """Get the profile for a provider name."""
    provider = getattr(provider, "value", provider)
    try:
        return PROVIDER_PROFILES[provider]
    except KeyError:
        raise ValueError(f"Unknown streaming provider '{provider}'")
