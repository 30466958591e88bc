[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tusstore"
version = "0.1.0"
description = "Storage backend and in-memory locking for resumable (tus) uploads on S3-compatible object stores"
requires-python = ">=3.10"
dependencies = []
keywords = ["tus", "resumable", "upload", "s3", "multipart", "storage", "locking"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tusstore"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
