[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mqttcore"
version = "0.1.0"
description = "MQTT v5 packet encoding, property handling, reason codes and a topic subscription trie"
requires-python = ">=3.10"
dependencies = []
keywords = ["mqtt", "mqtt5", "protocol", "topics", "trie", "retained"]
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
    "Topic :: Internet",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["mqttcore"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
