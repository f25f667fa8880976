[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cratewarden"
version = "0.1.0"
description = "Checks the sources of packages in a dependency graph against a policy and works out their licenses"
requires-python = ">=3.10"
keywords = ["dependencies", "licenses", "spdx", "policy", "supply-chain", "lint"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Quality Assurance",
]
dependencies = []

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["cratewarden"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
