"""Playbook loader for parsing and validating YAML playbook definitions.

This module provides:
- YAML playbook parsing into PlaybookDefinition models
- Loading every playbook file in a directory
- Validation of conditions, template references and action names
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rw_soar.errors import ConditionEvaluationError, PlaybookValidationError
from rw_soar.playbook.conditions import ConditionEvaluator
from rw_soar.playbook.models import PlaybookDefinition
from rw_soar.playbook.templating import TemplateResolver

logger = structlog.get_logger()

PLAYBOOK_SUFFIXES = (".yaml", ".yml")


# =============================================================================
# Validation Result
# =============================================================================


class ValidationResult(BaseModel):
    """Result of playbook validation."""

    model_config = ConfigDict(extra="allow")

    valid: bool = Field(description="Whether the playbook is valid")
    errors: list[str] = Field(default_factory=list, description="List of validation errors")
    warnings: list[str] = Field(default_factory=list, description="List of validation warnings")

    @classmethod
    def ok(cls) -> ValidationResult:
        """Create a successful validation result."""
        return cls(valid=True)

    @classmethod
    def error(cls, errors: list[str]) -> ValidationResult:
        """Create a failed validation result."""
        return cls(valid=False, errors=errors)


# =============================================================================
# Playbook Loader
# =============================================================================


class PlaybookLoader:
    """Loader for YAML playbook definitions.

    A file holds either one playbook mapping or a ``playbooks:`` list.

    Example:
        loader = PlaybookLoader()
        playbook = loader.load("playbooks/critical-alert.yaml")
        result = loader.validate(playbook, action_names=registry.list_actions())
        if not result.valid:
            print(f"Validation errors: {result.errors}")
    """

    def __init__(self) -> None:
        self._logger = logger.bind(component="playbook_loader")
        self._resolver = TemplateResolver()
        self._evaluator = ConditionEvaluator()

    def load(self, path: str | Path) -> PlaybookDefinition:
        """Load a single playbook from a YAML file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            PlaybookValidationError: If the YAML or the definition is invalid
        """
        definitions = self.load_all(path)
        if len(definitions) != 1:
            raise PlaybookValidationError(
                f"Expected one playbook in {path}, found {len(definitions)}"
            )
        return definitions[0]

    def load_all(self, path: str | Path) -> list[PlaybookDefinition]:
        """Load every playbook defined in a YAML file."""
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Playbook file not found: {path}")

        self._logger.info("loading_playbook", path=str(path))

        with open(path, encoding="utf-8") as f:
            definitions = self._parse(f.read(), source=str(path))

        self._logger.info(
            "playbooks_loaded",
            path=str(path),
            playbooks=[d.id for d in definitions],
        )
        return definitions

    def load_from_string(self, content: str) -> PlaybookDefinition:
        """Load a single playbook from a YAML string.

        Raises:
            PlaybookValidationError: If the YAML or the definition is invalid
        """
        definitions = self._parse(content, source="<string>")
        if len(definitions) != 1:
            raise PlaybookValidationError(f"Expected one playbook, found {len(definitions)}")
        return definitions[0]

    def load_directory(self, directory: str | Path) -> list[PlaybookDefinition]:
        """Load all playbook files in a directory, sorted by file name.

        Raises:
            FileNotFoundError: If the directory doesn't exist
            PlaybookValidationError: If any file is invalid or ids collide
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise FileNotFoundError(f"Playbook directory not found: {directory}")

        definitions: list[PlaybookDefinition] = []
        seen: dict[str, Path] = {}
        for path in sorted(p for p in directory.iterdir() if p.suffix in PLAYBOOK_SUFFIXES):
            for definition in self.load_all(path):
                if definition.id in seen:
                    raise PlaybookValidationError(
                        f"Duplicate playbook id '{definition.id}' in {path} and {seen[definition.id]}"
                    )
                seen[definition.id] = path
                definitions.append(definition)
        return definitions

    def _parse(self, content: str, source: str) -> list[PlaybookDefinition]:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise PlaybookValidationError(f"Invalid YAML in {source}: {e}") from e

        if isinstance(data, dict) and isinstance(data.get("playbooks"), list):
            items: list[Any] = data["playbooks"]
        elif isinstance(data, dict):
            items = [data]
        else:
            raise PlaybookValidationError(f"Playbook must be a YAML mapping: {source}")

        definitions = []
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                raise PlaybookValidationError(f"{source}: playbooks[{index}] must be a mapping")
            try:
                definitions.append(PlaybookDefinition.model_validate(item))
            except ValidationError as e:
                errors = [
                    f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
                ]
                raise PlaybookValidationError(
                    f"Failed to parse playbook in {source}: {'; '.join(errors)}",
                    errors=errors,
                ) from e
        return definitions

    def validate(
        self,
        playbook: PlaybookDefinition,
        action_names: list[str] | None = None,
    ) -> ValidationResult:
        """Validate a playbook's conditions and references.

        Checks:
        - The playbook has at least one step
        - Step and trigger conditions parse
        - Actions exist, when ``action_names`` is given
        - Template references to step ids point at earlier steps (warning)

        Args:
            playbook: The playbook to validate
            action_names: Registered action names to check ``uses`` against

        Returns:
            ValidationResult with any errors or warnings
        """
        errors: list[str] = []
        warnings: list[str] = []

        self._logger.info("validating_playbook", playbook_id=playbook.id)

        if not playbook.steps:
            errors.append("Playbook must have at least one step")

        if playbook.trigger_condition is not None:
            try:
                self._evaluator.parse(playbook.trigger_condition)
            except ConditionEvaluationError as e:
                errors.append(f"trigger_condition: {e.message}")

        all_steps = playbook.all_steps()
        step_ids = [s.id for s in all_steps]
        known_actions = set(action_names) if action_names is not None else None

        for index, step in enumerate(all_steps):
            context = f"steps[{index}] ({step.id})"

            if known_actions is not None and step.uses not in known_actions:
                errors.append(f"{context}: Unknown action '{step.uses}'")

            if step.if_ is not None:
                try:
                    self._evaluator.parse(step.if_)
                except ConditionEvaluationError as e:
                    errors.append(f"{context}: {e.message}")

            for ref in self._resolver.references(step.with_):
                root = ref.split(".")[0]
                if root in step_ids and step_ids.index(root) >= index:
                    warnings.append(
                        f"{context}: Reference '{ref}' points at a step that has not run yet"
                    )

        result = ValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
        )

        self._logger.info(
            "validation_complete",
            playbook_id=playbook.id,
            valid=result.valid,
            error_count=len(errors),
            warning_count=len(warnings),
        )

        return result
