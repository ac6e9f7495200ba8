"""
Rule sources: where rule definitions come from.

Every source implements the ``RuleSource`` protocol. Rule documents share one
shape across variants::

    {"ruleSet": {"name": ..., "version": ..., "lastUpdated": ...},
     "rules": [ ...rule definitions... ]}

A bare list of rule definitions is accepted as well.
"""

import json
from datetime import datetime
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union, runtime_checkable

import httpx
import yaml
from pydantic import ValidationError
from sqlalchemy import JSON, TIMESTAMP, Boolean, Column, Integer, MetaData, String, Table, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.sql import func

from compliance_engine.core.exceptions import RuleLoadingError
from compliance_engine.core.logging import get_logger
from compliance_engine.rules.models import RuleDefinition
from compliance_engine.rules.validation import validate_rules

logger = get_logger("rule_sources")

BUNDLED_RULES_PACKAGE = "compliance_engine.rules"


@runtime_checkable
class RuleSource(Protocol):
    """A place rule definitions can be loaded from."""

    enabled: bool

    @property
    def cache_key(self) -> str:
        """Stable key identifying this source in the loader cache."""
        ...

    async def load(self) -> List[RuleDefinition]:
        """
        Load every rule definition from the source.

        Raises:
            RuleLoadingError: If the source cannot be read or is structurally invalid
        """
        ...


def parse_rule_document(payload: Any, source: str) -> List[RuleDefinition]:
    """
    Validate a decoded rule document.

    Args:
        payload: Decoded JSON/YAML document
        source: Source identifier for error context

    Returns:
        Parsed rule definitions

    Raises:
        RuleLoadingError: On schema or structural validation errors
    """
    if isinstance(payload, list):
        meta: Dict[str, Any] = {}
        raw_rules = payload
    elif isinstance(payload, dict) and isinstance(payload.get("rules"), list):
        meta = payload.get("ruleSet") or {}
        raw_rules = payload["rules"]
    else:
        raise RuleLoadingError("Rule document must contain a 'rules' list", source=source)

    last_updated = meta.get("lastUpdated") or datetime.now().isoformat()
    rules: List[RuleDefinition] = []
    for index, raw in enumerate(raw_rules):
        if not isinstance(raw, dict):
            raise RuleLoadingError(f"Rule at index {index} is not an object", source=source)
        data = dict(raw)
        data.setdefault("createdAt", last_updated)
        data.setdefault("updatedAt", last_updated)
        try:
            rules.append(RuleDefinition.model_validate(data))
        except ValidationError as e:
            raise RuleLoadingError(
                f"Invalid rule definition {raw.get('id', index)}: {e.error_count()} validation errors",
                source=source,
                context={"details": e.errors(include_url=False)[:3]},
            ) from e

    errors = validate_rules(rules)
    if errors:
        raise RuleLoadingError(
            f"Rule document failed validation: {'; '.join(errors)}", source=source
        )
    return rules


def decode_document(text: str, fmt: str, source: str) -> Any:
    try:
        if fmt in ("yaml", "yml"):
            return yaml.safe_load(text)
        return json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise RuleLoadingError(f"Could not parse rule document: {e}", source=source) from e


class FileRuleSource:
    """Rule document on disk (``.json``, ``.yaml`` or ``.yml``)."""

    def __init__(self, path: Union[str, Path], enabled: bool = True) -> None:
        self.path = Path(path)
        self.enabled = enabled

    @property
    def cache_key(self) -> str:
        return f"file:{self.path}"

    async def load(self) -> List[RuleDefinition]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise RuleLoadingError(f"Could not read rule file: {e}", source=self.cache_key) from e
        fmt = self.path.suffix.lstrip(".").lower()
        return parse_rule_document(decode_document(text, fmt, self.cache_key), self.cache_key)


class EmbeddedRuleSource:
    """Rule set bundled with the package under ``rules/data``."""

    def __init__(self, location: str, enabled: bool = True) -> None:
        self.location = location
        self.enabled = enabled

    @property
    def cache_key(self) -> str:
        return f"embedded:{self.location}"

    async def load(self) -> List[RuleDefinition]:
        resource = resources.files(BUNDLED_RULES_PACKAGE) / "data" / f"{self.location}.json"
        try:
            text = resource.read_text(encoding="utf-8")
        except (FileNotFoundError, OSError) as e:
            raise RuleLoadingError(
                f"Bundled rule set not found: {self.location}", source=self.cache_key
            ) from e
        return parse_rule_document(decode_document(text, "json", self.cache_key), self.cache_key)


# Rules table read by DatabaseRuleSource
metadata = MetaData()

compliance_rules = Table(
    "compliance_rules",
    metadata,
    Column("id", String(100), primary_key=True),
    Column("rule_set", String(100), nullable=False, default="default"),
    Column("definition", JSON, nullable=False),
    Column("priority", Integer, default=50),
    Column("is_active", Boolean, default=True),
    Column("updated_at", TIMESTAMP, server_default=func.current_timestamp()),
)


class DatabaseRuleSource:
    """Rules stored as JSON definitions in the ``compliance_rules`` table."""

    def __init__(
        self,
        engine: AsyncEngine,
        rule_set: Optional[str] = None,
        enabled: bool = True,
    ) -> None:
        self.engine = engine
        self.rule_set = rule_set
        self.enabled = enabled

    @property
    def cache_key(self) -> str:
        return f"database:{self.rule_set or '*'}"

    async def load(self) -> List[RuleDefinition]:
        query = select(compliance_rules.c.definition).where(compliance_rules.c.is_active.is_(True))
        if self.rule_set:
            query = query.where(compliance_rules.c.rule_set == self.rule_set)
        query = query.order_by(compliance_rules.c.priority.desc(), compliance_rules.c.id)

        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(query)
                definitions = [row.definition for row in result]
        except SQLAlchemyError as e:
            raise RuleLoadingError(f"Database rule query failed: {e}", source=self.cache_key) from e

        logger.debug("Rules fetched from database", source=self.cache_key, count=len(definitions))
        return parse_rule_document({"rules": definitions}, self.cache_key)


class ApiRuleSource:
    """Rule document served over HTTP."""

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        enabled: bool = True,
    ) -> None:
        self.url = url
        self.client = client
        self.timeout = timeout
        self.enabled = enabled

    @property
    def cache_key(self) -> str:
        return f"api:{self.url}"

    async def load(self) -> List[RuleDefinition]:
        try:
            if self.client is not None:
                response = await self.client.get(self.url, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(self.url)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise RuleLoadingError(
                f"Rule API returned {e.response.status_code}", source=self.cache_key
            ) from e
        except httpx.HTTPError as e:
            raise RuleLoadingError(f"Rule API request failed: {e}", source=self.cache_key) from e
        except ValueError as e:
            raise RuleLoadingError(f"Rule API returned invalid JSON: {e}", source=self.cache_key) from e

        return parse_rule_document(payload, self.cache_key)
