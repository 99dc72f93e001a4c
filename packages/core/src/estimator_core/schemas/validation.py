from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import Field, computed_field, field_validator

from estimator_core.schemas.base import WireModel
from estimator_core.schemas.quote import GeneratedQuote

IssueCategory = Literal[
    "pricing",
    "scope",
    "potential_work",
    "cross_service",
    "addons",
    "notes",
    "discounts",
    "logic",
]
IssueSeverity = Literal["critical", "high", "medium", "low"]
OverallStatus = Literal["PASS", "FAIL", "REVIEW_NEEDED"]
IssuePolicy = Literal["block", "flag_for_review", "auto_correct", "pass_with_warning", "ignore"]
OutcomeKind = Literal["passed", "auto_corrected", "sent_for_review", "blocked"]


class AutoFixAction(str, Enum):
    ADD_WORK_STEP = "add_work_step"
    REMOVE_SCOPE_TEXT = "remove_scope_text"
    ADD_SCOPE_EXCLUSION = "add_scope_exclusion"
    REMOVE_POTENTIAL_WORK = "remove_potential_work"
    REMOVE_CROSS_SERVICE = "remove_cross_service"
    REMOVE_ADDON = "remove_addon"
    ADD_NOTE = "add_note"
    REMOVE_NOTE = "remove_note"
    FLAG_ONLY = "flag_only"


class AutoFixDetails(WireModel):
    work_step_id: str | None = None
    quantity: float | None = None
    pattern: str | None = None
    replacement: str | None = None
    text: str | None = None
    item_index: int | None = None
    service_id: str | None = None
    addon_id: str | None = None
    note_index: int | None = None
    note_text: str | None = None
    position: Literal["start", "end"] = "end"

    @property
    def note(self) -> str | None:
        return self.note_text or self.text


class AutoFix(WireModel):
    action: AutoFixAction
    details: AutoFixDetails = Field(default_factory=AutoFixDetails)


class ValidationIssue(WireModel):
    id: str
    category: IssueCategory
    severity: IssueSeverity
    check: str
    description: str
    found: str = ""
    expected: str = ""
    auto_fixable: bool = False
    auto_fix: AutoFix | None = None
    suggested_config_fix: str | None = None

    @field_validator("severity", "category", mode="before")
    @classmethod
    def _lower(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class ValidationSummary(WireModel):
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    auto_fixable_count: int = 0
    config_issue_count: int = 0


class ValidationResult(WireModel):
    confidence_score: float = Field(default=0.5, ge=0.0, le=1.0)
    issues: list[ValidationIssue] = Field(default_factory=list)
    calculated_expected_total: float
    actual_total: float
    pricing_gap_percent: float = 0.0

    @computed_field
    @property
    def summary(self) -> ValidationSummary:
        return ValidationSummary(
            critical_count=sum(1 for issue in self.issues if issue.severity == "critical"),
            high_count=sum(1 for issue in self.issues if issue.severity == "high"),
            medium_count=sum(1 for issue in self.issues if issue.severity == "medium"),
            low_count=sum(1 for issue in self.issues if issue.severity == "low"),
            auto_fixable_count=sum(1 for issue in self.issues if issue.auto_fixable),
            config_issue_count=sum(1 for issue in self.issues if issue.suggested_config_fix),
        )

    @computed_field
    @property
    def overall_status(self) -> OverallStatus:
        summary = self.summary
        if summary.critical_count > 0:
            return "FAIL"
        if summary.high_count > 0 or summary.medium_count > 0:
            return "REVIEW_NEEDED"
        return "PASS"


class EnabledChecks(WireModel):
    pricing_completeness: bool = True
    scope_validation: bool = True
    potential_work_validation: bool = True
    cross_service_validation: bool = True
    addon_validation: bool = True
    notes_validation: bool = True
    discount_validation: bool = True
    logic_validation: bool = True

    def allows(self, category: IssueCategory) -> bool:
        return {
            "pricing": self.pricing_completeness,
            "scope": self.scope_validation,
            "potential_work": self.potential_work_validation,
            "cross_service": self.cross_service_validation,
            "addons": self.addon_validation,
            "notes": self.notes_validation,
            "discounts": self.discount_validation,
            "logic": self.logic_validation,
        }[category]


class ValidationSettings(WireModel):
    enabled: bool = True
    on_critical_issue: IssuePolicy = "auto_correct"
    on_high_issue: IssuePolicy = "auto_correct"
    on_medium_issue: IssuePolicy = "auto_correct"
    on_low_issue: IssuePolicy = "pass_with_warning"
    pricing_gap_threshold_percent: float = Field(default=20.0, ge=0.0)
    require_manual_review_above: float = Field(default=0.0, ge=0.0)
    enabled_checks: EnabledChecks = Field(default_factory=EnabledChecks)


class ValidationOutcome(WireModel):
    outcome: OutcomeKind
    needs_review: bool = False
    status_override: Literal["pending_review"] | None = None


class AutoCorrectionResult(WireModel):
    quote: GeneratedQuote
    applied_fixes: list[str] = Field(default_factory=list)
    skipped_fixes: list[str] = Field(default_factory=list)


def default_validation_settings() -> ValidationSettings:
    return ValidationSettings()
