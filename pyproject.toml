[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pullpropagation"
version = "0.1.0"
description = "Wrap pull-labelled Argo CD Applications in ManifestWork payloads and reflect cluster status reports back onto them"
requires-python = ">=3.10"
dependencies = []
keywords = ["argocd", "gitops", "manifestwork", "multicluster", "reconciler", "propagation"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["pullpropagation"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
