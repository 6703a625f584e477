"""User configuration: offer, ideal customer profile and the signal catalogue."""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from pathlib import Path

import yaml
from pydantic import Field, ValidationError

from app.models.base import ContractModel


class SignalPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SignalCategory(str, Enum):
    FUNDING_CORPORATE = "funding_corporate"
    LEADERSHIP_ORG = "leadership_org"
    PRODUCT_STRATEGY = "product_strategy"
    HIRING_TEAM = "hiring_team"
    EXPANSION_PARTNERSHIPS = "expansion_partnerships"
    TECHNOLOGY_ADOPTION = "technology_adoption"
    RISK_COMPLIANCE = "risk_compliance"
    DISQUALIFIER = "disqualifier"


class EvidenceSourceType(str, Enum):
    NEWS = "news"
    PRESS_RELEASE = "press_release"
    COMPANY_SITE = "company_site"
    JOB_POST = "job_post"
    SEC_FILING = "sec_filing"
    BLOG = "blog"
    SOCIAL = "social"
    REVIEW = "review"
    DIRECTORY = "directory"
    OTHER = "other"


class SignalDefinition(ContractModel):
    """A single evidence-checkable buying indicator."""

    id: str
    name: str = Field(min_length=1)
    question: str = Field(min_length=1, description="May reference the company as {account}.")
    category: SignalCategory
    priority: SignalPriority
    weight: float = Field(ge=0, le=10)
    query_templates: list[str] = Field(default_factory=list)
    accepted_sources: list[EvidenceSourceType] = Field(default_factory=list)
    is_disqualifier: bool = False
    enabled: bool = True


class CompanySizeRange(ContractModel):
    min: int | None = None
    max: int | None = None


class ICP(ContractModel):
    """Ideal customer profile driving query planning and lead targeting."""

    industries: list[str] = Field(default_factory=list)
    exclude_industries: list[str] = Field(default_factory=list)
    geos: list[str] = Field(default_factory=list)
    exclude_geos: list[str] = Field(default_factory=list)
    company_size_range: CompanySizeRange | None = None
    target_roles: list[str] = Field(default_factory=list)
    exclude_roles: list[str] = Field(default_factory=list)


class UserConfig(ContractModel):
    version: int = 1
    offer: str
    icp: ICP
    signals: list[SignalDefinition]
    excluded_domains: list[str] = Field(
        default_factory=list,
        description="Extra domain suffixes excluded from candidate extraction.",
    )

    def enabled_signals(self) -> list[SignalDefinition]:
        return [signal for signal in self.signals if signal.enabled]

    def scoring_signals(self) -> list[SignalDefinition]:
        """Enabled signals that contribute positive weight."""
        return [signal for signal in self.signals if signal.enabled and not signal.is_disqualifier]

    def signal_by_id(self, signal_id: str) -> SignalDefinition | None:
        for signal in self.signals:
            if signal.id == signal_id:
                return signal
        return None


class UserConfigError(ValueError):
    """Raised when a user configuration file cannot be loaded."""

    def __init__(self, message: str, code: str = "CONFIG_INVALID") -> None:
        super().__init__(message)
        self.code = code


def load_user_config(path: Path | str) -> UserConfig:
    """Load and validate a YAML user configuration."""
    config_path = Path(path)
    if not config_path.exists():
        raise UserConfigError(f"Signal config missing at {config_path}", code="CONFIG_MISSING")
    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise UserConfigError(f"Unable to parse signal config: {exc}") from exc
    if not isinstance(raw, dict):
        raise UserConfigError("Signal config must be a mapping")
    try:
        return UserConfig.model_validate(raw)
    except ValidationError as exc:
        raise UserConfigError(f"Signal config failed validation: {exc}") from exc


def signal_index(signals: Iterable[SignalDefinition]) -> dict[str, SignalDefinition]:
    return {signal.id: signal for signal in signals}
