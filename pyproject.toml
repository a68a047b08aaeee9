[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "clusterchat"
version = "0.1.0"
description = "Chat server and terminal client exchanging JSON over TCP, with MySQL storage and Redis pub/sub between server instances"
requires-python = ">=3.10"
keywords = ["chat", "server", "client", "redis", "mysql", "pubsub", "json"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Chat",
]
dependencies = [
    "pymysql",
    "redis",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
clusterchat-server = "clusterchat.server:main"
clusterchat-client = "clusterchat.client:main"

[tool.hatch.build.targets.wheel]
packages = ["clusterchat"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
