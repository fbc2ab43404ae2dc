[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "osinstaller"
version = "0.1.0"
description = "Stream, archive, ISO 9660 and boot-configuration helpers for installing an operating system image"
requires-python = ">=3.10"
dependencies = []
keywords = ["installer", "iso9660", "initrd", "cpio", "bls", "kernel-arguments", "ignition", "xz", "gzip"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Installation/Setup",
    "Topic :: System :: Archiving",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["osinstaller"]

[tool.pytest.ini_options]
addopts = "-ra"
