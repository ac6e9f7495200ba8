"""
Rule Loader - gathers rule definitions from every configured source.

Key Features:
- Concurrent loading of enabled sources
- Per-source result caching with a TTL
- Failure isolation: a failing source contributes no rules
- Duplicate identifiers resolved by rule priority
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Sequence

from compliance_engine.core.cache import ResultCache, TTLCache
from compliance_engine.core.config import RuleLoaderConfig
from compliance_engine.core.exceptions import RuleLoadingError
from compliance_engine.core.logging import get_logger
from compliance_engine.rules.models import RuleDefinition
from compliance_engine.rules.sources import ApiRuleSource, EmbeddedRuleSource, RuleSource

logger = get_logger("rule_loader")


def deduplicate_rules(rules: Iterable[RuleDefinition]) -> List[RuleDefinition]:
    """Keep one rule per id, preferring higher priority; ties keep the first seen."""
    unique: Dict[str, RuleDefinition] = {}
    for rule in rules:
        existing = unique.get(rule.id)
        if existing is None or rule.priority > existing.priority:
            unique[rule.id] = rule
    return list(unique.values())


class RuleLoader:
    """
    Loads and merges rules from pluggable sources.

    Args:
        sources: Rule sources, defaults to the bundled rule sets
        config: Loader settings
        cache: Per-source cache, defaults to a ``TTLCache`` with the configured TTL
    """

    def __init__(
        self,
        sources: Optional[Sequence[RuleSource]] = None,
        config: Optional[RuleLoaderConfig] = None,
        cache: Optional[ResultCache] = None,
    ) -> None:
        self.config = config or RuleLoaderConfig()
        self.sources: List[RuleSource] = (
            list(sources) if sources is not None else self.default_sources(self.config)
        )
        self.cache = cache or TTLCache(ttl=self.config.cache_ttl_seconds)

    @staticmethod
    def default_sources(config: RuleLoaderConfig) -> List[RuleSource]:
        return [EmbeddedRuleSource(location) for location in config.embedded_locations]

    def add_source(self, source: RuleSource) -> None:
        self.sources.append(source)
        self.cache.invalidate(source.cache_key)

    def add_api_source(self, url: str) -> ApiRuleSource:
        source = ApiRuleSource(url, timeout=self.config.api_timeout_seconds)
        self.add_source(source)
        return source

    def get_sources(self) -> List[RuleSource]:
        return list(self.sources)

    async def load_all(self) -> List[RuleDefinition]:
        """
        Load every enabled source and merge the results.

        Returns:
            Deduplicated rule definitions

        Raises:
            RuleLoadingError: If every enabled source failed
        """
        enabled = [source for source in self.sources if source.enabled]
        if not enabled:
            logger.warning("No enabled rule sources")
            return []

        results = await asyncio.gather(
            *(self._load_source(source) for source in enabled), return_exceptions=True
        )

        loaded: List[RuleDefinition] = []
        failures: List[str] = []
        for source, result in zip(enabled, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failures.append(source.cache_key)
                logger.error("Rule source failed", source=source.cache_key, error=str(result))
                continue
            loaded.extend(result)

        if len(failures) == len(enabled):
            raise RuleLoadingError(
                "All rule sources failed to load",
                context={"sources": ", ".join(failures)},
            )

        rules = deduplicate_rules(loaded)
        logger.info(
            "Rules loaded",
            sources=len(enabled) - len(failures),
            failed_sources=len(failures),
            rules=len(rules),
            duplicates=len(loaded) - len(rules),
        )
        return rules

    async def _load_source(self, source: RuleSource) -> List[RuleDefinition]:
        cached = self.cache.get(source.cache_key)
        if cached is not None:
            return cached

        rules = await source.load()
        self.cache.set(source.cache_key, rules)
        logger.debug("Rule source loaded", source=source.cache_key, rules=len(rules))
        return rules

    async def reload(self) -> List[RuleDefinition]:
        """Drop cached source results and load again."""
        self.clear_cache()
        return await self.load_all()

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_cache_stats(self) -> Dict[str, int]:
        entries = 0
        total_rules = 0
        for source in self.sources:
            cached = self.cache.get(source.cache_key)
            if cached is not None:
                entries += 1
                total_rules += len(cached)
        return {"entries": entries, "total_rules": total_rules}
