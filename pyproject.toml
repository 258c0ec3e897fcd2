[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kubewire"
version = "0.1.0"
description = "Translate Kubernetes object changes into wire format v2 incident events."
requires-python = ">=3.10"
dependencies = []
keywords = ["kubernetes", "events", "monitoring", "incidents", "deployments", "wire-format"]
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
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kubewire"]

[tool.pytest.ini_options]
addopts = "-ra"
