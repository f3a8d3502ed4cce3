from __future__ import annotations
import os

# Workflow file used when --workflow is not given and discovery is not wanted
WORKFLOW = os.environ.get("TASKGATE_WORKFLOW")
WORKFLOW_CANDIDATES = ("taskgate_workflow.py", "taskgate.yaml", "taskgate.yml")

# Root the artifact relay stages into; the publish payload
OUTPUT_DIR = os.environ.get("TASKGATE_OUTPUT_DIR", "target/taskgate")

MAX_WORKERS = int(os.environ["TASKGATE_WORKERS"]) if os.environ.get("TASKGATE_WORKERS") else None
STEP_TIMEOUT = float(os.environ["TASKGATE_STEP_TIMEOUT"]) if os.environ.get("TASKGATE_STEP_TIMEOUT") else None

# Upper bound for a service to become ready after being started
SERVICE_TIMEOUT = float(os.environ.get("TASKGATE_SERVICE_TIMEOUT", "60"))
