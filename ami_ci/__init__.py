"""
Script: ami_ci package
What: Holds the Python helpers behind the AMI build-check workflow.
Doing: Groups CLI entrypoints and shared utility code in one importable package.
Why: Keeps the Packer install, build, and teardown steps readable and testable instead of inline YAML shell.
Goal: Provide one clear home for the build-then-delete AMI logic.
"""
