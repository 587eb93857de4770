"""Gate identity reconciliation between forecast and provider naming.

Forecasts name gates ``"1"``, ``"2"``, ``"A"``, ``"B"``; the prediction
provider answers with ``"gate_1"``, ``"gate_2"``, ``"gate_3"``, ... where
letters continue the numeric sequence after a fixed offset. The prefix and
offset are provider specific and come from ``AliasRules``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

from .exceptions import GateMappingError

if TYPE_CHECKING:
    from crowdpulse.config import GateAliasConfig

logger = logging.getLogger(__name__)

_NUMERIC = re.compile(r"[0-9]+")
_LETTER = re.compile(r"[A-Z]")


@dataclass(frozen=True)
class AliasRules:
    prefix: str = "gate_"
    letter_offset: int = 3

    @classmethod
    def from_config(cls, config: GateAliasConfig) -> AliasRules:
        return cls(prefix=config.prefix, letter_offset=config.letter_offset)


DEFAULT_ALIAS_RULES = AliasRules()


def gate_aliases(canonical_id: str, rules: AliasRules = DEFAULT_ALIAS_RULES) -> tuple[str, ...]:
    """Provider-space ids a canonical gate may appear as, itself first."""
    aliases = [canonical_id]

    if rules.prefix and canonical_id.startswith(rules.prefix):
        return tuple(aliases)

    if _NUMERIC.fullmatch(canonical_id):
        aliases.append(f"{rules.prefix}{canonical_id}")
    elif _LETTER.fullmatch(canonical_id):
        aliases.append(f"{rules.prefix}{canonical_id}")
        position = ord(canonical_id) - ord("A")
        aliases.append(f"{rules.prefix}{rules.letter_offset + position}")

    # An empty prefix makes the prefixed alias equal the id itself
    return tuple(dict.fromkeys(aliases))


@dataclass(frozen=True)
class GateMapping:
    """Canonical gate ids and the provider aliases that resolve to them."""

    forward: dict[str, tuple[str, ...]] = field(default_factory=dict)
    reverse: dict[str, str] = field(default_factory=dict)

    def resolve(self, provider_gate_id: str) -> str | None:
        return self.reverse.get(provider_gate_id)

    @property
    def canonical_ids(self) -> list[str]:
        return list(self.forward.keys())


def build_gate_mapping(
    canonical_ids: Iterable[str],
    rules: AliasRules = DEFAULT_ALIAS_RULES,
) -> GateMapping:
    """Build the forward and reverse alias maps.

    Raises:
        GateMappingError: two distinct canonical ids generate the same alias.
            No partial mapping is returned.
    """
    forward: dict[str, tuple[str, ...]] = {}
    reverse: dict[str, str] = {}

    for canonical_id in canonical_ids:
        if canonical_id in forward:
            continue
        aliases = gate_aliases(canonical_id, rules)
        for alias in aliases:
            owner = reverse.get(alias)
            if owner is not None:
                raise GateMappingError(
                    f"Alias {alias!r} claimed by both gate {owner!r} and gate {canonical_id!r}",
                    alias=alias,
                    claimants=(owner, canonical_id),
                )
            reverse[alias] = canonical_id
        forward[canonical_id] = aliases

    logger.debug(f"Built gate mapping for {len(forward)} gates ({len(reverse)} aliases)")
    return GateMapping(forward=forward, reverse=reverse)
