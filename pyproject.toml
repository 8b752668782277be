[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "runnerscaler"
version = "0.1.0"
description = "Resource models, validation and replica autoscaling logic for self-hosted CI runner fleets"
requires-python = ">=3.10"
dependencies = []
keywords = ["ci", "runners", "autoscaling", "self-hosted", "workflows"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["runnerscaler"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
