"""
Script: ami_ci/packer_build.py
What: Runs the Packer build and recovers the AMI id it produced.
Doing: Runs `packer init`, `packer validate`, and `packer build -machine-readable`, then parses the artifact line.
Why: The teardown step needs the exact AMI id; Packer only reports it in its output stream.
Goal: Export `AMI_ID` to the job environment and record every region/AMI pair for the run.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from ami_ci.common import (
    AmiCiError,
    optional_env,
    run_cmd,
    stream_cmd,
    write_github_env,
    write_github_outputs,
)


DEFAULT_TEMPLATE = "packer-template.pkr.hcl"
ARTIFACT_DIR = Path("artifacts")
ARTIFACT_PATH = ARTIFACT_DIR / "ami-build.json"

# Packer escapes commas and newlines inside machine-readable data fields.
PACKER_COMMA = "%!(PACKER_COMMA)"
REGION_AMI_RE = re.compile(r"^([a-z0-9-]+):(ami-[0-9a-f]+)$")


@dataclass(frozen=True)
class MachineReadableLine:
    timestamp: str
    target: str
    kind: str
    data: list[str]


@dataclass(frozen=True)
class AmiArtifact:
    region: str
    ami_id: str


def unescape_data(value: str) -> str:
    return value.replace(PACKER_COMMA, ",").replace("\\n", "\n").replace("\\r", "\r")


def parse_machine_readable_line(line: str) -> MachineReadableLine | None:
    """
    Split one `-machine-readable` line into its fields.

    Format is `timestamp,target,type,data...`. Lines that do not have at least
    the three header fields (for example plain UI noise) return None.
    """
    fields = line.rstrip("\r\n").split(",")
    if len(fields) < 3:
        return None
    timestamp, target, kind = fields[:3]
    if not timestamp.isdigit():
        return None
    return MachineReadableLine(
        timestamp=timestamp,
        target=target,
        kind=kind,
        data=[unescape_data(field) for field in fields[3:]],
    )


def split_artifact_id(value: str) -> tuple[list[AmiArtifact], list[str]]:
    """
    Split an artifact id value like `us-east-1:ami-0abc` into region/AMI pairs.

    Copies to several regions are reported as one comma-separated value.
    Return value is `(artifacts, invalid_pairs)`.
    """
    artifacts: list[AmiArtifact] = []
    invalid: list[str] = []
    for pair in value.split(","):
        pair = pair.strip()
        if not pair:
            continue
        match = REGION_AMI_RE.match(pair)
        if match:
            artifacts.append(AmiArtifact(region=match.group(1), ami_id=match.group(2)))
        else:
            invalid.append(pair)
    return artifacts, invalid


def parse_artifact_id(value: str) -> list[AmiArtifact]:
    """Strict version of `split_artifact_id`: any bad pair is an error."""
    artifacts, invalid = split_artifact_id(value)
    if invalid:
        raise AmiCiError(f"Unexpected artifact id format: {' '.join(invalid)}")
    return artifacts


def find_ami_artifacts(lines: list[str]) -> tuple[list[AmiArtifact], list[str]]:
    """
    Collect AMI artifacts from Packer machine-readable output.

    This is the same line the shell version matched with `grep 'artifact,0,id'`,
    but the `ami-` prefix is kept because the AWS CLI needs the full id.

    Malformed pairs are returned separately instead of raised, so the valid
    ids can still be exported for teardown.
    """
    artifacts: list[AmiArtifact] = []
    invalid: list[str] = []
    for line in lines:
        parsed = parse_machine_readable_line(line)
        if parsed is None or parsed.kind != "artifact":
            continue
        # data is `<artifact index>,<key>,<value...>`
        if len(parsed.data) < 3 or parsed.data[1] != "id":
            continue
        found, bad = split_artifact_id(",".join(parsed.data[2:]))
        artifacts.extend(found)
        invalid.extend(bad)
    return artifacts, invalid


def parse_packer_vars(raw: str) -> list[str]:
    """Turn `key=value` pairs (whitespace separated) into `-var` arguments."""
    args: list[str] = []
    for item in raw.split():
        if "=" not in item or item.startswith("="):
            raise AmiCiError(f"Invalid PACKER_VARS entry (expected key=value): {item}")
        args.extend(["-var", item])
    return args


def packer_version() -> str:
    output = run_cmd(["packer", "version"]).strip()
    return output.splitlines()[0].removeprefix("Packer v").strip() if output else ""


def build_record(
    *,
    template: str,
    version: str,
    run_id: str,
    exit_code: int,
    artifacts: list[AmiArtifact],
) -> dict:
    return {
        "schema_version": 1,
        "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "template": template,
        "packer_version": version,
        "run_id": run_id,
        "exit_code": exit_code,
        "artifacts": [{"region": a.region, "ami_id": a.ami_id} for a in artifacts],
    }


def main() -> None:
    template = optional_env("PACKER_TEMPLATE", DEFAULT_TEMPLATE)
    run_init = optional_env("PACKER_INIT", "true").lower() == "true"
    var_args = parse_packer_vars(optional_env("PACKER_VARS"))

    if not Path(template).exists():
        raise AmiCiError(f"Packer template not found: {template}")

    version = packer_version()
    print(f"Using Packer {version} with template {template}")

    if run_init:
        run_cmd(["packer", "init", template], capture_output=False)
    run_cmd(["packer", "validate", *var_args, template], capture_output=False)

    exit_code, lines = stream_cmd(["packer", "build", "-machine-readable", *var_args, template])
    artifacts, invalid = find_ami_artifacts(lines)

    ARTIFACT_DIR.mkdir(parents=True, exist_ok=True)
    record = build_record(
        template=template,
        version=version,
        run_id=optional_env("GITHUB_RUN_ID"),
        exit_code=exit_code,
        artifacts=artifacts,
    )
    ARTIFACT_PATH.write_text(json.dumps(record, indent=2) + "\n", encoding="utf-8")

    # Export before checking the exit code: a failed build can still leave an
    # image behind, and the teardown step keys off AMI_ID / AMI_REGION.
    if artifacts:
        primary = artifacts[0]
        write_github_env({"AMI_ID": primary.ami_id, "AMI_REGION": primary.region})
        write_github_outputs({"ami_id": primary.ami_id, "ami_region": primary.region})
        print(f"AMI ID is {primary.ami_id} ({primary.region})")
        for extra in artifacts[1:]:
            print(f"Additional AMI {extra.ami_id} ({extra.region})")

    if exit_code != 0:
        raise AmiCiError(f"packer build failed with exit code {exit_code}")
    if invalid:
        raise AmiCiError(f"Unexpected artifact id format: {' '.join(invalid)}")
    if not artifacts:
        raise AmiCiError("packer build succeeded but reported no AMI artifact id")


if __name__ == "__main__":
    main()
