[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "requester"
version = "0.1.0"
description = "HTTP request helpers with a multi-connection resumable downloader and a block-based parallel uploader"
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = ["http", "download", "upload", "resume", "range", "multipart", "rate-limit"]
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
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["requester"]

[tool.pytest.ini_options]
addopts = "-ra"
