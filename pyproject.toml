[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ipswkit"
version = "0.1.0"
description = "Reading IPSW firmware archives, IMG3/IMG4 personalization and JSON-to-plist conversion"
requires-python = ">=3.10"
dependencies = []
keywords = ["ipsw", "img3", "img4", "im4m", "firmware", "plist", "json", "restore"]
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
    "Topic :: System :: Recovery Tools",
    "Topic :: System :: Archiving",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ipswkit"]

[tool.pytest.ini_options]
addopts = "-ra"
