"""Tests for loading and validating YAML playbooks."""

from __future__ import annotations

import pytest

from rw_soar.actions.builtin import create_default_registry
from rw_soar.errors import PlaybookValidationError
from rw_soar.playbook.loader import PlaybookLoader, ValidationResult
from rw_soar.playbook.models import ErrorPolicy
from rw_soar.playbook.source import YamlDirectorySource

CRITICAL_ALERT_YAML = """
id: critical-alert
organization_id: 1
name: Critical alert containment
description: Contain hosts raising critical alerts
trigger:
  type: alert
  filter:
    severity: [critical, high]
  condition: score > 80

steps:
  - id: announce
    uses: log_message
    with:
      message: "Containing {{ host }}"

  - id: block
    uses: block_ip
    with:
      ip: "{{ source_ip }}"
    timeout_ms: 5000
    retries: 2
    error_policy: rollback

  - id: ticket
    uses: create_ticket
    if: steps.block.status == "completed"
    with:
      summary: "{{ title }}"
    errorPolicy: continue
"""

MULTI_PLAYBOOK_YAML = """
playbooks:
  - id: a
    organizationId: 1
    name: A
    triggerType: incident
    steps:
      - {id: s1, uses: log_message}
  - id: b
    organizationId: 1
    name: B
    triggerType: manual
    steps:
      - {id: s1, uses: delay, with: {milliseconds: 10}}
"""


@pytest.fixture
def loader():
    return PlaybookLoader()


# =============================================================================
# Loading
# =============================================================================


class TestLoad:
    def test_load_from_string(self, loader):
        playbook = loader.load_from_string(CRITICAL_ALERT_YAML)

        assert playbook.id == "critical-alert"
        assert playbook.organization_id == "1"
        assert playbook.trigger_filter == {"severity": ["critical", "high"]}
        assert [s.id for s in playbook.steps] == ["announce", "block", "ticket"]
        assert playbook.steps[1].retries == 2
        assert playbook.steps[1].error_policy == ErrorPolicy.ROLLBACK
        assert playbook.steps[2].if_ == 'steps.block.status == "completed"'
        assert playbook.steps[2].error_policy == ErrorPolicy.CONTINUE

    def test_load_file(self, loader, tmp_path):
        path = tmp_path / "critical.yaml"
        path.write_text(CRITICAL_ALERT_YAML)

        assert loader.load(path).name == "Critical alert containment"

    def test_missing_file(self, loader, tmp_path):
        with pytest.raises(FileNotFoundError):
            loader.load(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, loader):
        with pytest.raises(PlaybookValidationError, match="Invalid YAML"):
            loader.load_from_string("id: [unclosed")

    def test_not_a_mapping(self, loader):
        with pytest.raises(PlaybookValidationError, match="mapping"):
            loader.load_from_string("- just\n- a list\n")

    def test_schema_errors_are_collected(self, loader):
        with pytest.raises(PlaybookValidationError) as exc_info:
            loader.load_from_string("id: x\nname: X\nsteps: []\n")

        assert any("organization_id" in e for e in exc_info.value.errors)
        assert any("trigger_type" in e for e in exc_info.value.errors)

    def test_multiple_playbooks_require_load_all(self, loader, tmp_path):
        path = tmp_path / "many.yml"
        path.write_text(MULTI_PLAYBOOK_YAML)

        with pytest.raises(PlaybookValidationError, match="Expected one playbook"):
            loader.load(path)
        assert [p.id for p in loader.load_all(path)] == ["a", "b"]


class TestLoadDirectory:
    def test_loads_yaml_files_only(self, loader, tmp_path):
        (tmp_path / "critical.yaml").write_text(CRITICAL_ALERT_YAML)
        (tmp_path / "many.yml").write_text(MULTI_PLAYBOOK_YAML)
        (tmp_path / "notes.txt").write_text("not a playbook")

        playbooks = loader.load_directory(tmp_path)

        assert [p.id for p in playbooks] == ["critical-alert", "a", "b"]

    def test_duplicate_ids_across_files(self, loader, tmp_path):
        (tmp_path / "one.yaml").write_text(CRITICAL_ALERT_YAML)
        (tmp_path / "two.yaml").write_text(CRITICAL_ALERT_YAML)

        with pytest.raises(PlaybookValidationError, match="Duplicate playbook id"):
            loader.load_directory(tmp_path)

    def test_missing_directory(self, loader, tmp_path):
        with pytest.raises(FileNotFoundError):
            loader.load_directory(tmp_path / "missing")

    @pytest.mark.asyncio
    async def test_yaml_directory_source(self, tmp_path):
        (tmp_path / "many.yml").write_text(MULTI_PLAYBOOK_YAML)
        source = YamlDirectorySource(tmp_path)

        assert len(source) == 2
        assert (await source.get_playbook("b")).name == "B"

        (tmp_path / "critical.yaml").write_text(CRITICAL_ALERT_YAML)
        source.reload()

        assert len(source) == 3
        active = await source.list_playbooks(organization_id="1", is_active=True)
        assert {p.id for p in active} == {"a", "b", "critical-alert"}


# =============================================================================
# Validation
# =============================================================================


class TestValidate:
    def test_valid_playbook(self, loader):
        playbook = loader.load_from_string(CRITICAL_ALERT_YAML)

        result = loader.validate(playbook)

        assert result.valid
        assert result.errors == []

    def test_unknown_actions(self, loader):
        playbook = loader.load_from_string(CRITICAL_ALERT_YAML)

        result = loader.validate(playbook, action_names=create_default_registry().list_actions())

        assert not result.valid
        assert result.errors == [
            "steps[1] (block): Unknown action 'block_ip'",
            "steps[2] (ticket): Unknown action 'create_ticket'",
        ]

    def test_branch_steps_are_validated(self, loader):
        playbook = loader.load_from_string(
            """
id: p
organization_id: 1
name: P
trigger_type: alert
steps:
  - id: isolate
    uses: log_message
    then:
      - id: confirm
        uses: log_message
        if: "(a == 1"
    else:
      - id: page
        uses: page_oncall
"""
        )

        result = loader.validate(playbook, action_names=create_default_registry().list_actions())

        assert [s.id for s in playbook.steps[0].then_] == ["confirm"]
        assert not result.valid
        assert result.errors[0].startswith("steps[1] (confirm):")
        assert result.errors[1] == "steps[2] (page): Unknown action 'page_oncall'"

    def test_unparseable_conditions(self, loader):
        playbook = loader.load_from_string(
            """
id: p
organization_id: 1
name: P
trigger_type: alert
trigger_condition: "score >"
steps:
  - id: s1
    uses: log_message
    if: "(a == 1"
"""
        )

        result = loader.validate(playbook)

        assert not result.valid
        assert len(result.errors) == 2
        assert result.errors[0].startswith("trigger_condition:")
        assert result.errors[1].startswith("steps[0] (s1):")

    def test_no_steps(self, loader):
        playbook = loader.load_from_string(
            "id: p\norganization_id: 1\nname: P\ntrigger_type: alert\nsteps: []\n"
        )
        assert loader.validate(playbook).errors == ["Playbook must have at least one step"]

    def test_forward_reference_warning(self, loader):
        playbook = loader.load_from_string(
            """
id: p
organization_id: 1
name: P
trigger_type: alert
steps:
  - id: first
    uses: log_message
    with:
      message: "{{ second.ticket_id }} {{ first.message }}"
  - id: second
    uses: set_variables
"""
        )

        result = loader.validate(playbook)

        assert result.valid
        assert len(result.warnings) == 2
        assert "second.ticket_id" in result.warnings[0]


class TestValidationResult:
    def test_ok(self):
        assert ValidationResult.ok().valid

    def test_error(self):
        result = ValidationResult.error(["bad"])
        assert not result.valid
        assert result.errors == ["bad"]
