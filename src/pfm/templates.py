"""Markdown documents seeded into every new work item.

`pfm init` copies these into ``.pfm/templates`` so a team can edit them;
``{WORK_ID}`` and ``{TITLE}`` are substituted when a work item is created.
"""

from __future__ import annotations

from pathlib import Path

TEMPLATES_DIR = "templates"

PRD_MD = """# Product Requirements Document

## Work ID: {WORK_ID}
## Title: {TITLE}

## Problem Statement

<!-- What problem does this work solve, and for whom? -->

## Requirements

<!-- Functional and non-functional requirements -->

## Success Criteria

<!-- Measurable outcomes -->

## Out of Scope

<!-- What this work deliberately does not cover -->
"""

ACCEPTANCE_MD = """# Acceptance Criteria

## Work ID: {WORK_ID}

## Criteria

- [ ] Criterion 1
- [ ] Criterion 2

## Verification Steps

1. Step 1
2. Step 2
"""

PLAN_MD = """# Implementation Plan

## Work ID: {WORK_ID}

## Approach

<!-- High-level design -->

## Tasks

<!-- Ordered implementation steps; the detailed breakdown goes in tasks.md -->

## Dependencies

<!-- Libraries, services or other work this depends on -->

## Risks

<!-- Known risks and how to contain them -->
"""

TASKS_MD = """# Task Breakdown

## Work ID: {WORK_ID}
## Title: {TITLE}

## Tasks

- [ ] Task 1
- [ ] Task 2

## Notes

<!-- The orchestrator agent fills this in from plan.md -->
"""

RUNLOG_MD = """# Run Log

## Work ID: {WORK_ID}

<!-- pfm and the agents append entries below -->
"""

QA_MD = """# QA Report

## Work ID: {WORK_ID}

## Results

<!-- One line per acceptance criterion: pass or fail, with evidence -->

## Issues Found

<!-- Anything that blocks release -->
"""

WORK_TEMPLATES: dict[str, str] = {
    "prd.md": PRD_MD,
    "acceptance.md": ACCEPTANCE_MD,
    "plan.md": PLAN_MD,
    "tasks.md": TASKS_MD,
    "runlog.md": RUNLOG_MD,
    "qa.md": QA_MD,
}


def fill_template(content: str, work_id: str, title: str) -> str:
    return content.replace("{WORK_ID}", work_id).replace("{TITLE}", title)


def load_template(templates_dir: Path, filename: str) -> str:
    """The team's copy under ``.pfm/templates`` wins over the built-in text."""
    custom = templates_dir / filename
    if custom.is_file():
        return custom.read_text(encoding="utf-8")
    return WORK_TEMPLATES[filename]
