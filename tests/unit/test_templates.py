"""YAML template loading."""

import pytest

from phaseflow.templates import load_template_file, load_templates, parse_template


def test_parse_flat_sequence():
    template = parse_template(
        {
            "workflow": {
                "id": "greenfield",
                "name": "Greenfield",
                "sequence": [
                    {"step": "brief", "agent": "analyst", "creates": "project-brief.md"},
                    {
                        "agent": "architect",
                        "requires": "project-brief.md",
                        "validationGates": ["requirements_complete"],
                    },
                    "not-a-mapping",
                ],
            }
        },
        default_id="fallback",
    )

    assert template.id == "greenfield"
    assert template.name == "Greenfield"
    assert len(template.steps) == 2
    assert template.steps[0].name == "brief"
    assert template.steps[1].requires == ["project-brief.md"]
    assert template.steps[1].validation_gates == ["requirements_complete"]


def test_parse_flattens_phase_groups_and_uses_default_id():
    template = parse_template(
        {
            "workflow": {
                "phases": [
                    {"name": "plan", "sequence": [{"step": "a"}, {"step": "b"}]},
                    {"name": "build", "sequence": [{"step": "c"}]},
                ]
            }
        },
        default_id="grouped",
    )
    assert template.id == "grouped"
    assert [s.name for s in template.steps] == ["a", "b", "c"]


def test_parse_requires_workflow_mapping():
    with pytest.raises(ValueError):
        parse_template({"steps": []}, default_id="x")


def test_load_template_file_records_source(tmp_path):
    path = tmp_path / "service.yml"
    path.write_text("workflow:\n  sequence:\n    - step: only\n")

    template = load_template_file(path)

    assert template.id == "service"
    assert template.source == str(path)


def test_load_templates_skips_invalid_files(tmp_path, caplog):
    (tmp_path / "good.yaml").write_text("workflow:\n  id: good\n  sequence: []\n")
    (tmp_path / "broken.yaml").write_text("workflow: [unclosed\n")
    (tmp_path / "no_workflow.yaml").write_text("name: nothing\n")
    (tmp_path / "readme.txt").write_text("ignored")

    templates = load_templates(tmp_path)

    assert [t.id for t in templates] == ["good"]
    assert "Could not load workflow template" in caplog.text


def test_load_templates_missing_directory(tmp_path):
    assert load_templates(tmp_path / "nope") == []
