[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sitools"
version = "2.0.0"
description = "HTTP client and WSGI server helpers with retries, request options and JSON codecs, plus Kafka producer and consumer-group wrappers"
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = ["http", "client", "server", "cors", "retry", "hmac", "kafka", "producer", "consumer"]
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
    "Topic :: Software Development :: Libraries",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["sitools"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
