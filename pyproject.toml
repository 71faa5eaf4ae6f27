[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tproxykit"
version = "0.1.0"
description = "Transparent proxy (Linux TPROXY) sockets for TCP and UDP"
requires-python = ">=3.10"
dependencies = []
keywords = ["tproxy", "transparent proxy", "ip_transparent", "linux", "networking"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
tproxykit-example = "tproxykit.example:main"

[tool.hatch.build.targets.wheel]
packages = ["tproxykit"]

[tool.pytest.ini_options]
addopts = "-ra"
