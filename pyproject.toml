[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "btfkit"
version = "0.1.0"
description = "Parse, inspect, copy and relocate BPF Type Format (BTF) data"
requires-python = ">=3.10"
dependencies = []
keywords = ["bpf", "ebpf", "btf", "co-re", "elf", "linux", "kernel"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Operating System Kernels :: Linux",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["btfkit"]

[tool.pytest.ini_options]
addopts = "-ra"
