"""
Script: ami_ci/image_teardown.py
What: Deletes the AMI built by this run and its backing EBS snapshots.
Doing: Reads snapshot ids with `aws ec2 describe-images`, then deregisters the image and deletes each snapshot.
Why: The workflow only proves the template builds; leaving images around costs money.
Goal: Leave no AMI or snapshot behind after a build-check run.
"""

from __future__ import annotations

from ami_ci.common import (
    AmiCiError,
    aws_ec2_command,
    optional_env,
    run_cmd,
    run_json_cmd,
    write_github_outputs,
)


NOT_FOUND_CODES = ("InvalidAMIID.NotFound", "InvalidAMIID.Unavailable")


def snapshot_ids_from_image(image: dict) -> list[str]:
    """
    Return EBS snapshot ids from every block-device mapping of one image.

    Instance-store and ephemeral mappings have no `Ebs` key; the AWS CLI
    text output used to print those as the literal string `None`.
    """
    snapshot_ids: list[str] = []
    for mapping in image.get("BlockDeviceMappings") or []:
        ebs = mapping.get("Ebs") or {}
        snapshot_id = str(ebs.get("SnapshotId") or "")
        if snapshot_id and snapshot_id != "None" and snapshot_id not in snapshot_ids:
            snapshot_ids.append(snapshot_id)
    return snapshot_ids


def describe_image(ami_id: str, *, region: str) -> dict | None:
    """Return the `describe-images` entry for one AMI, or None if it is gone."""
    try:
        response = run_json_cmd(aws_ec2_command("describe-images", "--image-ids", ami_id, region=region))
    except AmiCiError as exc:
        if any(code in str(exc) for code in NOT_FOUND_CODES):
            return None
        raise
    images = response.get("Images") or []
    return images[0] if images else None


def teardown_image(ami_id: str, *, region: str = "") -> list[str]:
    """
    Deregister one AMI and delete its snapshots.

    Snapshot ids are read BEFORE deregistering, because a deregistered image
    can no longer be described. Returns the snapshot ids that were deleted.
    """
    image = describe_image(ami_id, region=region)
    if image is None:
        print(f"AMI {ami_id} not found; nothing to delete")
        return []

    snapshot_ids = snapshot_ids_from_image(image)

    print(f"Deregistering AMI {ami_id}")
    run_cmd(aws_ec2_command("deregister-image", "--image-id", ami_id, region=region))

    for snapshot_id in snapshot_ids:
        print(f"Deleting Snapshot {snapshot_id}")
        run_cmd(aws_ec2_command("delete-snapshot", "--snapshot-id", snapshot_id, region=region))

    if not snapshot_ids:
        print(f"AMI {ami_id} had no EBS snapshots")
    return snapshot_ids


def main() -> None:
    ami_id = optional_env("AMI_ID").strip()
    # The build step exports the region the image was actually built in;
    # it can differ from AWS_REGION when `region` is overridden in PACKER_VARS.
    region = optional_env("AMI_REGION").strip() or optional_env("AWS_REGION")

    # Empty AMI_ID means the build never produced an image.
    if not ami_id:
        print("AMI_ID is empty; skipping teardown")
        return

    deleted = teardown_image(ami_id, region=region)
    write_github_outputs({"deleted_snapshots": " ".join(deleted)})


if __name__ == "__main__":
    main()
