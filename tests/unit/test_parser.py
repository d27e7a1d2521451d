import textwrap

import pytest
import yaml

from claude_runner.contracts import ExecutableStep, StepOutput
from claude_runner.errors import SessionReferenceError, WorkflowValidationError
from claude_runner.parser import (
    load_workflow,
    parse_yaml,
    resolve_variables,
    step_environment,
    to_yaml,
)

WORKFLOW = textwrap.dedent(
    """
    name: Claude Review
    on:
      workflow_dispatch:
    env:
      ROLE: reviewer
    inputs:
      branch:
        default: main
    jobs:
      review:
        runs-on: ubuntu-latest
        env:
          SCOPE: backend
        steps:
          - uses: actions/checkout@v4
          - id: plan
            name: Plan the review
            uses: anthropics/claude-pipeline-action@v1
            with:
              prompt: Plan a review of ${{ inputs.branch }}
              model: sonnet
              output_session: true
          - id: review
            uses: anthropics/claude-pipeline-action@v1
            env:
              DEPTH: deep
            with:
              prompt: Continue the review
              resume_session: plan
              condition: on_success
    """
)


def test_parse_yaml_builds_typed_steps():
    workflow = parse_yaml(WORKFLOW)

    assert workflow.name == "Claude Review"
    assert workflow.inputs["branch"].default == "main"
    job = workflow.jobs["review"]
    assert job.runs_on == "ubuntu-latest"
    plan = job.steps[1]
    assert isinstance(plan, ExecutableStep)
    assert plan.label == "Plan the review"
    assert plan.model == "sonnet"
    assert plan.output_session
    assert job.steps[2].resume_session == "plan"
    assert job.steps[2].condition == "on_success"


def test_load_workflow_from_file(tmp_path):
    path = tmp_path / "review.yml"
    path.write_text(WORKFLOW)
    assert load_workflow(path).name == "Claude Review"


@pytest.mark.parametrize(
    "content, message",
    [
        ("jobs: {}", "must have a name"),
        ("name: x", "at least one job"),
        ("name: x\njobs:\n  main:\n    steps: []", "Job 'main' must have"),
        ("- a\n- b", "must be a mapping"),
        ("name: [unclosed", "Failed to parse workflow YAML"),
    ],
)
def test_invalid_documents_rejected(content, message):
    with pytest.raises(WorkflowValidationError, match=message):
        parse_yaml(content)


def test_executable_step_requires_prompt():
    content = textwrap.dedent(
        """
        name: x
        jobs:
          main:
            steps:
              - id: a
                uses: org/claude-pipeline-action@v1
                with:
                  prompt: "  "
        """
    )
    with pytest.raises(WorkflowValidationError, match="must have a prompt"):
        parse_yaml(content)


def test_unknown_reference_is_a_session_reference_error():
    content = WORKFLOW.replace("resume_session: plan", "resume_session: nope")
    with pytest.raises(SessionReferenceError, match="nope"):
        parse_yaml(content)


def test_to_yaml_keeps_aliases():
    dumped = yaml.safe_load(to_yaml(parse_yaml(WORKFLOW)))

    step = dumped["jobs"]["review"]["steps"][1]
    assert dumped["jobs"]["review"]["runs-on"] == "ubuntu-latest"
    assert step["with"]["output_session"] is True
    assert parse_yaml(to_yaml(parse_yaml(WORKFLOW))) == parse_yaml(WORKFLOW)


def test_resolve_variables():
    outputs = {"plan": StepOutput(result="3 issues", session_id="s-1")}
    template = (
        "${{ inputs.branch }}|${{ env.ROLE }}|${{ steps.plan.outputs.result }}|"
        "${{ steps.plan.outputs.session_id }}|${{ inputs.missing }}|"
        "${{ steps.other.outputs.result }}"
    )

    resolved = resolve_variables(template, {"branch": "main"}, {"ROLE": "dev"}, outputs)

    assert resolved == "main|dev|3 issues|s-1||"


def test_step_environment_merges_levels():
    workflow = parse_yaml(WORKFLOW)
    review = workflow.jobs["review"].steps[2]

    assert step_environment(workflow, review) == {
        "ROLE": "reviewer",
        "SCOPE": "backend",
        "DEPTH": "deep",
    }
