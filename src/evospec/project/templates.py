"""Static file templates for new EvoSpec projects."""

from __future__ import annotations

import json
import re

GITIGNORE = """\
# EvoSpec
.evospec/cache/
.evospec/*.local.yaml

# OS / editor
.DS_Store
.idea/
.vscode/
"""


def project_id(name: str) -> str:
    """``"My Shop"`` → ``"my.shop"``."""
    return re.sub(r"[^a-z0-9]+", ".", name.lower()).strip(".") or "project"


def spec_filename(name: str) -> str:
    return f"{re.sub(r'[^a-z0-9]+', '-', name.lower()).strip('-') or 'spec'}.evospec.yaml"


def generate_template(name: str) -> str:
    """Minimal valid specification for *name*."""
    quoted = json.dumps(name)
    return f"""\
# EvoSpec DSL v1 Specification
# Generated by: evospec new {name}

spec: evospec/v1

project:
  id: {project_id(name)}
  name: {quoted}
  versioning:
    strategy: semver
    current: "1.0.0"

structure:
  root: NodeRef(system.root)

domain:
  nodes:
    # Root System
    - kind: System
      id: system.root
      meta:
        title: {quoted}
        description: "Main system"
      spec:
        goals:
          - "Define your system goals here"
      children:
        - NodeRef(mod.core)

    # Core Module
    - kind: Module
      id: mod.core
      meta:
        title: "Core"
      spec: {{}}
      children:
        - NodeRef(entity.example)

    # Example Entity
    - kind: Entity
      id: entity.example
      meta:
        title: "Example Entity"
      spec:
        fields:
          id:
            type: uuid
            required: true
          name:
            type: string
            required: true
          createdAt:
            type: datetime
            required: true
      contracts:
        - invariant: "name != ''"
          level: hard

history:
  - version: "1.0.0"
    basedOn: null
    changes: []
    migrations: []
    notes: "Initial version"
"""


def generate_readme(name: str, spec_file: str, description: str | None = None) -> str:
    body = description.strip() if description else "Describe your system here."
    return f"""\
# {name}

{body}

The system is specified in [`{spec_file}`](./{spec_file}) using the EvoSpec DSL.

## Working with the specification

```bash
evospec validate {spec_file}
evospec evolve {spec_file} -c "Add a feature"
```
"""
