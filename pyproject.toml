[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "edcore"
version = "0.1.8"
description = "Core pieces of a terminal text editor: file I/O, edit locks, persistent undo and cursor history, and regex find."
requires-python = ">=3.10"
dependencies = []
keywords = ["editor", "text", "undo", "history", "find", "regex", "lock"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Text Editors",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["edcore"]

[tool.pytest.ini_options]
addopts = "-ra"
