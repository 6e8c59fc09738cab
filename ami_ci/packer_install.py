"""
Script: ami_ci/packer_install.py
What: Installs one pinned Packer release on the runner.
Doing: Downloads the release zip from releases.hashicorp.com, checks its SHA-256, and unpacks `packer` into the install dir.
Why: Builds must use the same Packer version every run, not whatever the runner image ships.
Goal: Leave an exact, verified `packer` binary on PATH for the build step.
"""

from __future__ import annotations

import hashlib
import os
import platform
import shutil
import tempfile
import urllib.request
import zipfile
from pathlib import Path

from ami_ci.common import (
    AmiCiError,
    append_github_path,
    optional_env,
    run_cmd,
    write_github_outputs,
)


DEFAULT_PACKER_VERSION = "1.8.3"
RELEASES_BASE_URL = "https://releases.hashicorp.com/packer"

OS_NAMES = {"linux": "linux", "darwin": "darwin"}
ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


def release_platform(system: str, machine: str) -> tuple[str, str]:
    """Map `platform.system()` / `platform.machine()` to HashiCorp release names."""
    os_name = OS_NAMES.get(system.lower())
    arch = ARCH_NAMES.get(machine.lower())
    if not os_name or not arch:
        raise AmiCiError(f"No Packer release for platform {system}/{machine}")
    return os_name, arch


def release_urls(version: str, os_name: str, arch: str) -> tuple[str, str]:
    """Return `(zip_url, sha256sums_url)` for one Packer release."""
    base = f"{RELEASES_BASE_URL}/{version}"
    zip_name = f"packer_{version}_{os_name}_{arch}.zip"
    return f"{base}/{zip_name}", f"{base}/packer_{version}_SHA256SUMS"


def expected_checksum(sums_text: str, file_name: str) -> str:
    """
    Find the checksum for `file_name` in a `SHA256SUMS` document.

    Each line looks like `<hex digest>  <file name>`.
    """
    for line in sums_text.splitlines():
        parts = line.split()
        if len(parts) == 2 and parts[1] == file_name:
            return parts[0].lower()
    raise AmiCiError(f"No checksum entry for {file_name}")


def sha256_of(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def installed_version(binary: Path) -> str:
    """
    Return the version reported by an existing `packer` binary, or empty string.

    `packer version` prints `Packer v1.8.3` on the first line.
    """
    if not binary.exists():
        return ""
    try:
        output = run_cmd([str(binary), "version"])
    except (AmiCiError, OSError):
        return ""
    first_line = output.strip().splitlines()[0] if output.strip() else ""
    return first_line.removeprefix("Packer v").strip()


def _download(url: str, destination: Path) -> None:
    try:
        with urllib.request.urlopen(url, timeout=60) as response, destination.open("wb") as handle:
            shutil.copyfileobj(response, handle)
    except OSError as exc:
        raise AmiCiError(f"Download failed: {url}\n{exc}") from exc


def extract_packer_binary(zip_path: Path, destination_dir: Path) -> Path:
    """Extract only the `packer` member from a release zip."""
    with zipfile.ZipFile(zip_path) as archive:
        if "packer" not in archive.namelist():
            raise AmiCiError(f"Release archive {zip_path.name} does not contain a packer binary")
        extracted = Path(archive.extract("packer", destination_dir))
    extracted.chmod(0o755)
    return extracted


def install_packer(version: str, install_dir: Path, *, os_name: str, arch: str) -> Path:
    """
    Download, verify, and install one Packer release.

    Nothing is written to `install_dir` until the checksum matches.
    """
    zip_url, sums_url = release_urls(version, os_name, arch)
    zip_name = zip_url.rsplit("/", 1)[1]

    with tempfile.TemporaryDirectory() as temp_dir:
        work = Path(temp_dir)
        zip_path = work / zip_name
        sums_path = work / "SHA256SUMS"
        _download(sums_url, sums_path)
        _download(zip_url, zip_path)

        expected = expected_checksum(sums_path.read_text(encoding="utf-8"), zip_name)
        actual = sha256_of(zip_path)
        if actual != expected:
            raise AmiCiError(f"Checksum mismatch for {zip_name}: expected {expected}, got {actual}")

        binary = extract_packer_binary(zip_path, work / "unpacked")
        install_dir.mkdir(parents=True, exist_ok=True)
        target = install_dir / "packer"
        shutil.move(str(binary), str(target))
    return target


def main() -> None:
    version = optional_env("PACKER_VERSION", DEFAULT_PACKER_VERSION)
    install_dir = Path(
        optional_env("PACKER_INSTALL_DIR") or os.path.expanduser("~/.local/bin")
    )
    target = install_dir / "packer"

    # Reuse an existing binary only when it is the exact pinned version.
    current = installed_version(target)
    if current == version:
        print(f"Packer {version} already installed at {target}")
    else:
        os_name, arch = release_platform(platform.system(), platform.machine())
        print(f"Installing Packer {version} ({os_name}_{arch}) into {install_dir}")
        target = install_packer(version, install_dir, os_name=os_name, arch=arch)

    if append_github_path(str(install_dir)):
        print(f"Added {install_dir} to PATH for later steps")
    write_github_outputs({"packer_path": str(target)})
    print(f"Packer ready: {target}")


if __name__ == "__main__":
    main()
