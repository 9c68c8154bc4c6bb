# src/composer/topics.py — v1
"""Topic schemas: which value types a rule for a topic needs.

A rule is complete only when its pointers cover every required value type,
e.g. a rate rule needs the rate itself and the date it takes effect.
Schemas can be loaded from YAML alongside the built-in defaults.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, model_validator

from regtruth.core.errors import NotFoundError
from regtruth.core.models import ValueType

logger = logging.getLogger(__name__)


class TopicSchema(BaseModel):
    """Required evidence for one topic."""

    topic_key: str
    description: str = ""
    primary_value_type: ValueType
    required_value_types: list[ValueType] = Field(default_factory=list)

    @model_validator(mode="after")
    def include_primary(self) -> TopicSchema:
        if self.primary_value_type not in self.required_value_types:
            self.required_value_types = [self.primary_value_type, *self.required_value_types]
        return self

    @property
    def accepted_value_types(self) -> list[str]:
        """Value types worth extracting for this topic (reference is always useful)."""
        return sorted(set(self.required_value_types) | {"reference"})


class TopicRegistry:
    """Lookup of topic schemas by key."""

    def __init__(self, schemas: list[TopicSchema] | None = None) -> None:
        self._schemas: dict[str, TopicSchema] = {}
        for schema in schemas or []:
            self.register(schema)

    def register(self, schema: TopicSchema) -> None:
        self._schemas[schema.topic_key] = schema

    def get(self, topic_key: str) -> TopicSchema:
        try:
            return self._schemas[topic_key]
        except KeyError:
            raise NotFoundError("topic", topic_key) from None

    def __contains__(self, topic_key: object) -> bool:
        return topic_key in self._schemas

    def __iter__(self):
        return iter(self._schemas.values())

    def __len__(self) -> int:
        return len(self._schemas)

    @property
    def keys(self) -> list[str]:
        return list(self._schemas)

    @classmethod
    def from_yaml(cls, path: Path | str, include_defaults: bool = True) -> TopicRegistry:
        """Load a YAML list of schemas, optionally on top of the defaults."""
        with open(Path(path).expanduser(), encoding="utf-8") as f:
            content = yaml.safe_load(f) or []
        registry = default_topic_registry() if include_defaults else cls()
        for item in content:
            registry.register(TopicSchema.model_validate(item))
        logger.info("Loaded %d topic schemas from %s", len(content), path)
        return registry


DEFAULT_TOPICS: list[TopicSchema] = [
    TopicSchema(
        topic_key="VAT_RATE",
        description="Standard VAT rate and the date it applies from",
        primary_value_type="rate",
        required_value_types=["rate", "date"],
    ),
    TopicSchema(
        topic_key="VAT_REDUCED_RATE",
        description="Reduced VAT rate and the date it applies from",
        primary_value_type="rate",
        required_value_types=["rate", "date"],
    ),
    TopicSchema(
        topic_key="VAT_REGISTRATION_THRESHOLD",
        description="Annual turnover above which VAT registration is mandatory",
        primary_value_type="threshold",
    ),
    TopicSchema(
        topic_key="VAT_FILING_DEADLINE",
        description="Deadline for filing the periodic VAT return",
        primary_value_type="deadline",
    ),
    TopicSchema(
        topic_key="VAT_TAXABLE_PERSON",
        description="Definition of a taxable person for VAT",
        primary_value_type="definition",
    ),
]


def default_topic_registry() -> TopicRegistry:
    return TopicRegistry([s.model_copy(deep=True) for s in DEFAULT_TOPICS])
